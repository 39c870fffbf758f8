"""
Adaptateur PayDunya (mobile money, Afrique de l'Ouest).

- Création de facture: POST {base}/checkout-invoice/create
- Confirmation: GET {base}/checkout-invoice/confirm/{token}
- Sandbox vs live: PAYDUNYA_MODE, sinon préfixe "test_" de la clé privée
"""
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional

import httpx

from pme_billing import config
from pme_billing.errors import ConfigurationError, ProviderError
from pme_billing.payments.currency import round_half_up
from pme_billing.payments.models import (
    CheckoutRequest,
    CheckoutSession,
    OutcomeStatus,
    Provider,
    ProviderOutcome,
)
from pme_billing.payments.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

LIVE_BASE_URL = "https://app.paydunya.com/api/v1"
SANDBOX_BASE_URL = "https://app.paydunya.com/sandbox-api/v1"
SUCCESS_CODE = "00"


def resolve_mode(mode: str, private_key: str) -> str:
    """'test' ou 'live'; mode explicite prioritaire, sinon déduit du préfixe de la clé."""
    mode = (mode or "").strip().lower()
    if mode in ("test", "sandbox"):
        return "test"
    if mode in ("live", "prod", "production"):
        return "live"
    return "test" if (private_key or "").startswith("test_") else "live"


def _truncate(data: Any, limit: int) -> str:
    text = data if isinstance(data, str) else json.dumps(data, default=str)
    return text[:limit]


class PayDunyaAdapter(ProviderAdapter):
    provider = Provider.PAYDUNYA

    def _credentials(self) -> Dict[str, str]:
        if not config.PAYDUNYA_PRIVATE_KEY or not config.PAYDUNYA_MASTER_KEY or not config.PAYDUNYA_TOKEN:
            raise ConfigurationError(
                "PayDunya env keys missing (need PAYDUNYA_MASTER_KEY + PAYDUNYA_API_SECRET/PRIVATE_KEY + PAYDUNYA_TOKEN)"
            )
        return {
            "master": config.PAYDUNYA_MASTER_KEY,
            "private": config.PAYDUNYA_PRIVATE_KEY,
            "token": config.PAYDUNYA_TOKEN,
            "public": config.PAYDUNYA_PUBLIC_KEY,
        }

    def base_url(self) -> str:
        mode = resolve_mode(config.PAYDUNYA_MODE, config.PAYDUNYA_PRIVATE_KEY)
        return SANDBOX_BASE_URL if mode == "test" else LIVE_BASE_URL

    def _headers(self) -> Dict[str, str]:
        creds = self._credentials()
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "PAYDUNYA-MASTER-KEY": creds["master"],
            "PAYDUNYA-PRIVATE-KEY": creds["private"],
            "PAYDUNYA-TOKEN": creds["token"],
        }
        # Certaines configurations exposent aussi une clé publique
        if creds["public"]:
            headers["PAYDUNYA-PUBLIC-KEY"] = creds["public"]
        return headers

    def _send(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = self._headers()
        try:
            res = httpx.request(method, url, headers=headers, json=payload, timeout=config.HTTP_TIMEOUT_SECONDS)
        except httpx.HTTPError as e:
            raise ProviderError(f"PayDunya transport error: {e}")

        text = res.text
        try:
            data = json.loads(text)
        except ValueError:
            raise ProviderError(f"PayDunya non-JSON response ({res.status_code}): {_truncate(text, 600)}")
        if not isinstance(data, dict):
            raise ProviderError(f"PayDunya unexpected response ({res.status_code}): {_truncate(data, 600)}")

        if not res.is_success or data.get("response_code") != SUCCESS_CODE:
            raise ProviderError(f"PayDunya error ({res.status_code}): {_truncate(data, 1200)}")
        return data

    def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        payload = {
            "invoice": {
                # XOF et la plupart des flux PayDunya attendent un montant entier
                "total_amount": round_half_up(request.amount),
                "description": request.description,
            },
            "store": {
                "name": config.PAYDUNYA_STORE_NAME,
            },
            "actions": {
                "callback_url": request.callback_url,
                "return_url": request.return_url or request.callback_url,
                "cancel_url": request.cancel_url or request.callback_url,
            },
            "custom_data": {
                "reference": request.reference,
            },
        }
        data = self._send("POST", f"{self.base_url()}/checkout-invoice/create", payload)

        url = data.get("response_text")
        if not url or not isinstance(url, str):
            raise ProviderError(f"PayDunya missing response_text: {_truncate(data, 1200)}")
        token = data.get("token")
        external_ref = token if isinstance(token, str) and token else url
        logger.info("paydunya checkout created reference=%s", request.reference)
        return CheckoutSession(url=url, external_ref=external_ref)

    def fetch_outcome(self, external_ref: str) -> ProviderOutcome:
        data = self._send("GET", f"{self.base_url()}/checkout-invoice/confirm/{external_ref}")
        status = str(data.get("status") or "").lower()
        reference = (data.get("custom_data") or {}).get("reference")
        if status == "completed":
            outcome = OutcomeStatus.PAID
        elif status in ("cancelled", "failed"):
            outcome = OutcomeStatus.FAILED
        else:
            outcome = OutcomeStatus.PENDING
        return ProviderOutcome(status=outcome, reference=reference, raw=data)

    def verify_hash(self, received: Optional[str]) -> bool:
        """Les IPN PayDunya portent hash = sha512(master_key)."""
        expected = hashlib.sha512(self._credentials()["master"].encode("utf-8")).hexdigest()
        return hmac.compare_digest(expected, (received or "").strip().lower())

    def return_urls(self, callback_url: str, reference: str):
        sep = "&" if "?" in callback_url else "?"
        base = f"{callback_url}{sep}provider={self.provider.value}&ref={reference}"
        return base, f"{base}&cancelled=1"
