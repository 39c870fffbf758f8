"""Cas d'usage 'checkout': initiation d'un paiement auprès d'un processeur.
Rôles:
- Valider la demande (abonnement à un plan ou paiement d'une demande de service).
- Autoriser l'appelant (rôle dans l'entreprise ou client de la demande).
- Créer la ligne 'pending' AVANT l'appel au processeur (clé de réconciliation).
- Appeler l'adaptateur puis enregistrer external_ref; en cas d'échec, la ligne
  passe à 'failed' avec l'erreur en metadata et l'appelant reçoit un message générique.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode
from uuid import uuid4
import logging

from pme_billing import config
from pme_billing.auth import service as auth_service
from pme_billing.errors import (
    AuthorizationError,
    ConfigurationError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from pme_billing.payments import repository
from pme_billing.payments.currency import is_valid_amount
from pme_billing.payments.models import (
    CheckoutRequest,
    PaymentStatus,
    Provider,
    RequestMetadata,
    SubscriptionMetadata,
    dump_metadata,
)
from pme_billing.payments.providers import get_adapter

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = Provider.PAYDUNYA
CALLBACK_PATH = "/payments_callback"


@dataclass
class SubscriptionCheckout:
    business_id: str
    plan_code: str
    provider: Provider


@dataclass
class RequestCheckout:
    request_id: str
    provider: Provider
    amount: Optional[float] = None


def _required_str(body: Dict[str, Any], key: str) -> str:
    value = body.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required")
    return value.strip()


def parse_subscription_request(body: Dict[str, Any]) -> SubscriptionCheckout:
    """Valide {business_id, plan_code, provider?} (400 si invalide)."""
    body = body if isinstance(body, dict) else {}
    return SubscriptionCheckout(
        business_id=_required_str(body, "business_id"),
        plan_code=_required_str(body, "plan_code"),
        provider=Provider.parse(body.get("provider"), default=DEFAULT_PROVIDER),
    )


def parse_request_payment(body: Dict[str, Any]) -> RequestCheckout:
    """Valide {request_id, provider?, amount?}; amount doit être un nombre s'il est fourni."""
    body = body if isinstance(body, dict) else {}
    request_id = _required_str(body, "request_id")
    provider = Provider.parse(body.get("provider"), default=DEFAULT_PROVIDER)
    amount = body.get("amount")
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, (int, float))):
        raise ValidationError("amount must be a number")
    return RequestCheckout(request_id=request_id, provider=provider, amount=amount)


def _stored_amount(value: Any) -> Any:
    # Les colonnes numeric peuvent revenir en chaîne selon la configuration PostgREST
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return value


def callback_url() -> str:
    url = f"{config.PUBLIC_BASE_URL}{CALLBACK_PATH}"
    if config.CALLBACK_SECRET:
        url = f"{url}?{urlencode({'secret': config.CALLBACK_SECRET})}"
    return url


def start_subscription_checkout(user: Dict[str, Any], command: SubscriptionCheckout) -> Dict[str, str]:
    """
    Abonnement d'une entreprise à un plan (POST /billing_subscribe).
    - Rôle owner/admin/staff requis dans l'entreprise (403 sinon, aucune ligne créée).
    - Montant: prix mensuel fixe du plan.
    Retour: {"payment_url": ..., "ref": <id du paiement>}
    """
    user_id = user.get("id")
    if not auth_service.is_business_staff(command.business_id, user_id):
        logger.info("billing_subscribe forbidden business_id=%s user_id=%s", command.business_id, user_id)
        raise AuthorizationError("Forbidden")

    plan = repository.get_plan_by_code(command.plan_code)
    if not plan:
        raise NotFoundError("Plan inconnu")

    amount = _stored_amount(plan.get("monthly_price_amount"))
    if not is_valid_amount(amount):
        raise ValidationError("Invalid amount")

    metadata = SubscriptionMetadata(
        plan_code=plan.get("code") or command.plan_code,
        plan_id=str(plan["id"]) if plan.get("id") is not None else None,
        period_days=config.SUBSCRIPTION_PERIOD_DAYS,
    )
    payment = repository.insert_payment(repository.PAYMENTS_TABLE, {
        "id": str(uuid4()),
        "business_id": command.business_id,
        "provider": command.provider.value,
        "amount": amount,
        "currency": (plan.get("currency") or config.DEFAULT_CURRENCY).upper(),
        "status": PaymentStatus.PENDING.value,
        "metadata": dump_metadata(metadata),
        "created_by": user_id,
    })
    return _dispatch_checkout(
        repository.PAYMENTS_TABLE,
        payment,
        command.provider,
        description=f"Abonnement {plan.get('name') or metadata.plan_code}",
    )


def start_request_checkout(user: Dict[str, Any], command: RequestCheckout) -> Dict[str, str]:
    """
    Paiement d'une demande de service (POST /create_payment_intent).
    - Autorisé pour le client de la demande, ou un owner/admin/staff de l'entreprise.
    - Montant: estimation stockée, sauf montant explicite fourni par le staff.
    """
    req = repository.get_service_request(command.request_id)
    if not req:
        raise ValidationError("Invalid request")

    user_id = user.get("id")
    is_customer = req.get("customer_user_id") == user_id
    is_staff = False
    if not is_customer:
        is_staff = auth_service.is_business_staff(req.get("business_id"), user_id)
        if not is_staff:
            logger.info("create_payment_intent forbidden request_id=%s user_id=%s", command.request_id, user_id)
            raise AuthorizationError("Forbidden")

    pay_amount = _stored_amount(req.get("estimate"))
    if is_staff and command.amount is not None:
        pay_amount = command.amount
    if not is_valid_amount(pay_amount):
        raise ValidationError("Invalid amount")

    intent = repository.insert_payment(repository.INTENTS_TABLE, {
        "id": str(uuid4()),
        "business_id": req.get("business_id"),
        "request_id": command.request_id,
        "amount": pay_amount,
        "currency": (req.get("currency") or config.DEFAULT_CURRENCY).upper(),
        # l'enum historique de payment_intents est en majuscules
        "provider": command.provider.value.upper(),
        "status": PaymentStatus.PENDING.value,
        "metadata": dump_metadata(RequestMetadata(request_id=command.request_id)),
        "created_by": user_id,
    })
    return _dispatch_checkout(repository.INTENTS_TABLE, intent, command.provider, description="Commande PME_TPE")


def _dispatch_checkout(table: str, payment: Dict[str, Any], provider: Provider, description: str) -> Dict[str, str]:
    ref = str(payment["id"])
    metadata = dict(payment.get("metadata") or {})

    if not config.PUBLIC_BASE_URL:
        metadata["error"] = "PUBLIC_BASE_URL missing"
        repository.mark_failed(table, ref, metadata)
        logger.error("checkout aborted: PUBLIC_BASE_URL missing ref=%s", ref)
        raise ConfigurationError()

    adapter = get_adapter(provider)
    callback = callback_url()
    return_url, cancel_url = adapter.return_urls(callback, ref)
    request = CheckoutRequest(
        amount=float(payment["amount"]),
        currency=str(payment.get("currency") or config.DEFAULT_CURRENCY),
        description=description,
        reference=ref,
        callback_url=callback,
        return_url=return_url,
        cancel_url=cancel_url,
        business_id=payment.get("business_id"),
    )

    try:
        session = adapter.create_checkout(request)
    except (ProviderError, ConfigurationError) as e:
        logger.error("checkout: %s failure ref=%s: %s", provider.value, ref, e.detail)
        metadata["error"] = str(e.detail)
        repository.mark_failed(table, ref, metadata)
        raise type(e)()
    except Exception as e:
        logger.exception("checkout: %s unexpected failure ref=%s", provider.value, ref)
        metadata["error"] = str(e) or type(e).__name__
        repository.mark_failed(table, ref, metadata)
        raise ProviderError()

    status = repository.mark_initiated(table, ref, session.external_ref)
    logger.info("checkout initiated ref=%s provider=%s status=%s", ref, provider.value, status)
    return {"payment_url": session.url, "ref": ref}
