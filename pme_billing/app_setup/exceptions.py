"""
Gestionnaires d'exceptions utilisés par la factory.
- BillingError (taxonomie pme_billing.errors): corps {"error": "<message>"}.
- Autres HTTPException (404 de routage, 429 du rate limit...): corps FastAPI standard {"detail": ...}.
"""
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from pme_billing.errors import BillingError

def register_exception_handlers(app: FastAPI) -> None:
    """
    Enregistre les handlers; le plus spécifique (BillingError) est résolu en premier
    par Starlette via la MRO de l'exception.
    """
    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)
