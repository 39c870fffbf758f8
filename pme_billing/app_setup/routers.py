"""
Registre central des routers.
- Paiements: billing_subscribe, create_payment_intent, payments_callback
- Health: /health, /health/rate-limit
"""
from fastapi import FastAPI
from pme_billing.payments import views as payments_views
from pme_billing.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    # Paiements (chemins racine, compatibles avec les URLs des fonctions historiques)
    app.include_router(payments_views.router)
    # Health & monitoring
    app.include_router(health_router)
