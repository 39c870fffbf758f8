import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from pme_billing.errors import ValidationError
from pme_billing.utils.rate_limit import optional_rate_limit
from pme_billing.utils.security import get_current_user
from pme_billing.payments import callbacks
from pme_billing.payments.checkout import (
    parse_request_payment,
    parse_subscription_request,
    start_request_checkout,
    start_subscription_checkout,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Payments"])


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    return body


# module pme_billing.payments.views
@router.post("/billing_subscribe", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def billing_subscribe(request: Request):
    """
    Abonnement d'une entreprise à un plan.
    - Entrée JSON: { "business_id": "...", "plan_code": "pro", "provider": "paydunya"|"stripe" }
    - Sécurité: Bearer + rôle owner/admin/staff + rate limit (10 req / 60s)
    - Retour: { "payment_url": "...", "ref": "<payment id>" }
    - Erreurs: 400 payload/plan/montant, 401, 403, 500 config, 502 processeur
    """
    command = parse_subscription_request(await _json_body(request))
    user = await run_in_threadpool(get_current_user, request)
    result = await run_in_threadpool(start_subscription_checkout, user, command)
    return JSONResponse(result)


@router.post("/create_payment_intent", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def create_payment_intent(request: Request):
    """
    Paiement d'une demande de service.
    - Entrée JSON: { "request_id": "...", "provider"?: "...", "amount"?: <nombre> }
    - Sécurité: Bearer; client de la demande ou staff de l'entreprise
    - Le montant explicite n'est pris en compte que pour le staff
    """
    command = parse_request_payment(await _json_body(request))
    user = await run_in_threadpool(get_current_user, request)
    result = await run_in_threadpool(start_request_checkout, user, command)
    return JSONResponse(result)


@router.post("/payments_callback")
async def payments_callback_notification(request: Request):
    """
    IPN PayDunya (JSON, enveloppe {data}, ou x-www-form-urlencoded).
    Répond "ok" à tout cas acquitté, appliqué ou non, pour stopper les renvois.
    """
    raw = await request.body()
    payload = callbacks.parse_body(raw, request.headers.get("content-type", ""))
    result = await run_in_threadpool(
        callbacks.handle_notification, payload, request.query_params.get("secret")
    )
    logger.info("payments_callback POST reference=%s applied=%s reason=%s", result.reference, result.applied, result.reason)
    return PlainTextResponse("ok")


@router.get("/payments_callback")
async def payments_callback_redirect(request: Request):
    """Retour navigateur après paiement (success_url / cancel_url / return_url)."""
    params = dict(request.query_params)
    result = await run_in_threadpool(callbacks.handle_redirect, params)
    logger.info("payments_callback GET reference=%s applied=%s reason=%s", result.reference, result.applied, result.reason)
    return PlainTextResponse("ok")
