"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.
"""
import logging
from typing import Any, Dict

import stripe

from pme_billing import config
from pme_billing.errors import ConfigurationError, ProviderError
from pme_billing.payments.currency import to_minor_units
from pme_billing.payments.models import (
    CheckoutRequest,
    CheckoutSession,
    OutcomeStatus,
    Provider,
    ProviderOutcome,
)
from pme_billing.payments.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

# module pme_billing.payments.providers.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l’emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY (ConfigurationError si absent).
    - Timeout réseau explicite, pas de retry automatique.
    """
    if not config.STRIPE_SECRET_KEY:
        raise ConfigurationError("STRIPE_SECRET_KEY manquant")
    stripe.api_key = config.STRIPE_SECRET_KEY
    stripe.max_network_retries = 0
    stripe.default_http_client = stripe.RequestsClient(timeout=config.HTTP_TIMEOUT_SECONDS)
    return stripe

def as_dict(obj: Any) -> Dict[str, Any]:
    # stripe retourne un StripeObject; on le traite comme dict
    if isinstance(obj, dict):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    return to_dict() if callable(to_dict) else dict(obj)

def line_items_for(request: CheckoutRequest) -> list:
    return [
        {
            "quantity": 1,
            "price_data": {
                "currency": request.currency.lower(),
                "unit_amount": to_minor_units(request.amount, request.currency),
                "product_data": {"name": request.description},
            },
        }
    ]

def create_session(request: CheckoutRequest) -> Dict[str, Any]:
    """
    Crée une session Stripe Checkout (mode payment).
    - metadata {reference, business_id}: permet au callback de retrouver le paiement
    Retour: dict session (ex: {"id": "cs_test_...", "url": "https://..."})
    """
    require_stripe()
    session = stripe.checkout.Session.create(
        mode="payment",
        line_items=line_items_for(request),
        success_url=request.return_url or request.callback_url,
        cancel_url=request.cancel_url or request.callback_url,
        client_reference_id=request.reference,
        metadata={"reference": request.reference, "business_id": request.business_id or ""},
    )
    return as_dict(session)

def get_session(session_id: str) -> Dict[str, Any]:
    """Récupère une session Checkout par son identifiant (payment_status, metadata...)."""
    require_stripe()
    return as_dict(stripe.checkout.Session.retrieve(session_id))


class StripeAdapter(ProviderAdapter):
    provider = Provider.STRIPE

    def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        try:
            session = create_session(request)
        except ConfigurationError:
            raise
        except stripe.StripeError as e:
            raise ProviderError(f"Stripe error: {e}")
        url = session.get("url")
        session_id = session.get("id")
        if not url or not session_id:
            raise ProviderError(f"Stripe session incomplete: id={session_id!r}")
        logger.info("stripe checkout created reference=%s session_id=%s", request.reference, session_id)
        return CheckoutSession(url=url, external_ref=session_id)

    def fetch_outcome(self, external_ref: str) -> ProviderOutcome:
        try:
            session = get_session(external_ref)
        except ConfigurationError:
            raise
        except stripe.StripeError as e:
            raise ProviderError(f"Stripe error: {e}")
        metadata = as_dict(session.get("metadata") or {})
        reference = metadata.get("reference") or session.get("client_reference_id")
        status = OutcomeStatus.PAID if session.get("payment_status") == "paid" else OutcomeStatus.FAILED
        return ProviderOutcome(status=status, reference=reference, raw=session)

    def return_urls(self, callback_url: str, reference: str):
        sep = "&" if "?" in callback_url else "?"
        base = f"{callback_url}{sep}provider={self.provider.value}&ref={reference}"
        # {CHECKOUT_SESSION_ID} est substitué par Stripe, ne pas l'encoder
        return f"{base}&session_id={{CHECKOUT_SESSION_ID}}", f"{base}&cancelled=1"
