"""Cas d'usage 'callbacks': réconciliation des notifications des processeurs.

Deux formes physiques, un seul protocole logique:
- POST (IPN PayDunya): {custom_data: {reference}, status}
- GET (redirection navigateur): provider, ref, session_id|token, cancelled

Idempotence: un paiement 'paid' ne l'est qu'une fois. La transition vers 'paid'
est une mise à jour conditionnelle (status IN pending/initiated) dont seul le
gagnant applique les droits; les doublons reçoivent applied=False.
Les références introuvables sont acquittées (200) pour stopper les renvois.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qsl
from uuid import UUID
import json
import logging
import re

from pme_billing import config
from pme_billing.errors import AuthError, BillingError, ConfigurationError, ProviderError, ValidationError
from pme_billing.payments import repository
from pme_billing.payments.entitlements import build_entitlement_row, compute_paid_until
from pme_billing.payments.models import (
    ApplyResult,
    OutcomeStatus,
    PaymentStatus,
    Provider,
    SubscriptionMetadata,
    parse_metadata,
)
from pme_billing.payments.providers import get_adapter
from pme_billing.utils.security import secrets_match

logger = logging.getLogger(__name__)

PAID_STATUSES = {"completed", "success"}
FAILED_STATUSES = {"failed"}

APPLIED = "applied"
PAYMENT_NOT_FOUND = "payment_not_found"
PLAN_NOT_FOUND = "plan_not_found"
ALREADY_PAID = "already_paid"
ALREADY_FAILED = "already_failed"
MARKED_FAILED = "marked_failed"
LEGACY_APPLIED = "legacy_applied"
IGNORED = "ignored"

_FORM_KEY = re.compile(r"\[([^\]]*)\]")


# --- Parsing des notifications ---

def parse_form_payload(raw: bytes) -> Dict[str, Any]:
    """
    Corps x-www-form-urlencoded PayDunya -> dict imbriqué.
    Ex: data[custom_data][reference]=abc -> {"data": {"custom_data": {"reference": "abc"}}}
    """
    result: Dict[str, Any] = {}
    for key, value in parse_qsl(raw.decode("utf-8", errors="replace"), keep_blank_values=True):
        head = key.split("[", 1)[0]
        parts = [head] + _FORM_KEY.findall(key[len(head):])
        node = result
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
    return result


def parse_body(raw: bytes, content_type: str) -> Dict[str, Any]:
    if "application/x-www-form-urlencoded" in (content_type or ""):
        return parse_form_payload(raw)
    try:
        data = json.loads(raw.decode("utf-8") or "null")
    except ValueError:
        raise ValidationError("Invalid payload")
    return data if isinstance(data, dict) else {}


def extract_notification(payload: Dict[str, Any]) -> Tuple[Optional[str], str, Optional[str]]:
    """Retourne (reference, status, hash); accepte l'enveloppe {"data": {...}} de PayDunya."""
    body = payload or {}
    inner = body.get("data")
    if "custom_data" not in body and isinstance(inner, dict):
        body = inner
    custom = body.get("custom_data")
    reference = custom.get("reference") if isinstance(custom, dict) else None
    status = str(body.get("status") or "").strip().lower()
    return (str(reference) if reference else None), status, body.get("hash")


def outcome_from_status(status: str) -> Optional[bool]:
    if status in PAID_STATUSES:
        return True
    if status in FAILED_STATUSES:
        return False
    return None


def _is_reference(value: str) -> bool:
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True


def verify_callback_secret(provided: Optional[str]) -> None:
    if not secrets_match(config.CALLBACK_SECRET, provided):
        raise AuthError("Invalid callback secret")


# --- Points d'entrée ---

def handle_notification(payload: Dict[str, Any], secret: Optional[str] = None) -> ApplyResult:
    """IPN asynchrone (POST): completed/success -> payé, failed -> échec, sinon ignoré."""
    verify_callback_secret(secret)
    reference, status, received_hash = extract_notification(payload)
    if not reference:
        raise ValidationError("Missing ref")

    if received_hash:
        adapter = get_adapter(Provider.PAYDUNYA)
        if not adapter.verify_hash(received_hash):
            logger.warning("payments_callback: bad PayDunya hash reference=%s", reference)
            raise AuthError("Invalid notification hash")

    paid = outcome_from_status(status)
    if paid is None:
        logger.info("payments_callback: status ignored reference=%s status=%s", reference, status)
        return ApplyResult(applied=False, reason=IGNORED, reference=reference)
    return apply_subscription_payment(reference, paid, payload)


def handle_redirect(params: Dict[str, Any]) -> ApplyResult:
    """
    Redirection navigateur (GET).
    - cancelled=1: échec sans interroger le processeur (ref requis)
    - sinon le statut est relu chez le processeur (session_id Stripe, token PayDunya)
    """
    verify_callback_secret(params.get("secret"))
    ref = params.get("ref") or None
    session_id = params.get("session_id") or None
    token = params.get("token") or None
    if ref and "?token=" in ref:
        # PayDunya ajoute "?token=..." à une return_url qui a déjà une query string
        ref, _, token = ref.partition("?token=")
    raw_provider = params.get("provider")
    if raw_provider:
        provider = Provider.parse(raw_provider)
    else:
        provider = Provider.STRIPE if session_id else Provider.PAYDUNYA

    if str(params.get("cancelled") or "").lower() in ("1", "true"):
        if not ref:
            raise ValidationError("Missing ref")
        return apply_subscription_payment(ref, False, {"provider": provider.value, "cancelled": True})

    external_ref = session_id if provider is Provider.STRIPE else token
    if not external_ref:
        raise ValidationError("Missing session_id" if provider is Provider.STRIPE else "Missing token")

    try:
        outcome = get_adapter(provider).fetch_outcome(external_ref)
    except (ProviderError, ConfigurationError) as e:
        logger.error("payments_callback: %s lookup failed ref=%s: %s", provider.value, ref, e.detail)
        raise BillingError("Processor lookup failed")

    reference = outcome.reference or ref
    if not reference:
        raise ValidationError("Missing ref")
    if ref and outcome.reference and ref != outcome.reference:
        logger.warning("payments_callback: ref mismatch query=%s processor=%s", ref, outcome.reference)

    if outcome.status is OutcomeStatus.PENDING:
        return ApplyResult(applied=False, reason=IGNORED, reference=reference)

    raw = {
        "provider": provider.value,
        "external_ref": external_ref,
        "status": outcome.status.value,
        "payment_status": outcome.raw.get("payment_status") or outcome.raw.get("status"),
    }
    return apply_subscription_payment(reference, outcome.status is OutcomeStatus.PAID, raw)


# --- Réconciliation ---

def apply_subscription_payment(reference: str, paid: bool, raw_payload: Dict[str, Any]) -> ApplyResult:
    """
    Applique l'issue d'un paiement d'abonnement, exactement une fois.
    Étapes: résolution -> trace du payload -> échec éventuel -> idempotence ->
    plan -> échéance -> droits -> audit (best-effort) -> paid.
    """
    if not reference or not _is_reference(reference):
        logger.info("payments_callback: unresolvable reference=%r", reference)
        return ApplyResult(applied=False, reason=PAYMENT_NOT_FOUND, reference=reference)

    payment = repository.get_payment(repository.PAYMENTS_TABLE, reference)
    if payment is None:
        return _apply_legacy(repository.INTENTS_TABLE, reference, paid, raw_payload)

    metadata = dict(payment.get("metadata") or {})
    metadata["provider_payload"] = raw_payload
    # Trace seulement tant que le paiement est ouvert: la metadata d'un paiement clos est finale
    repository.update_metadata(repository.PAYMENTS_TABLE, reference, metadata, only_open=True)

    meta = parse_metadata(metadata)
    if not isinstance(meta, SubscriptionMetadata):
        return _apply_legacy(repository.PAYMENTS_TABLE, reference, paid, raw_payload, row=payment)

    status = payment.get("status")
    if not paid:
        metadata["failed_at"] = _now().isoformat()
        changed = repository.mark_failed(repository.PAYMENTS_TABLE, reference, metadata)
        logger.info("payment failed reference=%s changed=%s", reference, changed)
        return ApplyResult(applied=False, reason=MARKED_FAILED if changed else _closed_reason(status), reference=reference)

    if status == PaymentStatus.PAID.value:
        return ApplyResult(applied=False, reason=ALREADY_PAID, reference=reference)
    if status == PaymentStatus.FAILED.value:
        logger.warning("payments_callback: paid outcome on failed payment reference=%s", reference)
        return ApplyResult(applied=False, reason=ALREADY_FAILED, reference=reference)

    plan = repository.get_plan_by_code(meta.plan_code)
    if not plan:
        logger.error("payments_callback: plan_not_found reference=%s plan_code=%s", reference, meta.plan_code)
        return ApplyResult(applied=False, reason=PLAN_NOT_FOUND, reference=reference)

    if repository.claim_paid(repository.PAYMENTS_TABLE, reference) is None:
        return ApplyResult(applied=False, reason=ALREADY_PAID, reference=reference)

    business_id = payment.get("business_id")
    now = _now()
    try:
        current = repository.get_entitlement(business_id) or {}
        paid_until = compute_paid_until(now, meta.period_days, current.get("orders_paid_until"))
        repository.upsert_entitlement(build_entitlement_row(business_id, plan, paid_until, now))
    except Exception:
        repository.release_claim(repository.PAYMENTS_TABLE, reference, status)
        raise

    try:
        repository.insert_subscription_snapshot({
            "business_id": business_id,
            "provider": payment.get("provider"),
            "status": "active",
            "provider_customer_id": payment.get("created_by"),
            "provider_subscription_id": payment.get("external_ref") or reference,
            "product_id": plan.get("code") or meta.plan_code,
            "current_period_start": now.isoformat(),
            "current_period_end": paid_until.isoformat(),
            "last_verified_at": now.isoformat(),
        })
    except Exception as e:
        logger.exception("payments_callback: subscription snapshot failed reference=%s", reference)
        metadata["subscription_audit_error"] = str(getattr(e, "detail", "") or e)

    metadata["paid_at"] = now.isoformat()
    metadata["orders_paid_until"] = paid_until.isoformat()
    repository.update_metadata(repository.PAYMENTS_TABLE, reference, metadata)
    logger.info("payment applied reference=%s business_id=%s plan=%s", reference, business_id, meta.plan_code)
    return ApplyResult(applied=True, reason=APPLIED, reference=reference)


def _apply_legacy(table: str, reference: str, paid: bool, raw_payload: Dict[str, Any], row: Optional[Dict[str, Any]] = None) -> ApplyResult:
    """
    Flux historique (demandes de service): la procédure apply_payment_reference
    applique la référence côté base; elle est idempotente par contrat.
    """
    if row is None:
        row = repository.get_payment(table, reference)
        if row is None:
            logger.info("payments_callback: payment_not_found reference=%s", reference)
            return ApplyResult(applied=False, reason=PAYMENT_NOT_FOUND, reference=reference)
        metadata = dict(row.get("metadata") or {})
        metadata["provider_payload"] = raw_payload
        repository.update_metadata(table, reference, metadata, only_open=True)
    else:
        metadata = dict(row.get("metadata") or {})
        metadata["provider_payload"] = raw_payload

    status = row.get("status")
    if not paid:
        metadata["failed_at"] = _now().isoformat()
        changed = repository.mark_failed(table, reference, metadata)
        return ApplyResult(applied=False, reason=MARKED_FAILED if changed else _closed_reason(status), reference=reference)
    if status == PaymentStatus.PAID.value:
        return ApplyResult(applied=False, reason=ALREADY_PAID, reference=reference)
    if status == PaymentStatus.FAILED.value:
        logger.warning("payments_callback: paid outcome on failed legacy payment table=%s reference=%s", table, reference)
        return ApplyResult(applied=False, reason=ALREADY_FAILED, reference=reference)

    repository.apply_payment_reference(reference)
    logger.info("payments_callback: legacy reference applied table=%s reference=%s", table, reference)
    return ApplyResult(applied=False, reason=LEGACY_APPLIED, reference=reference)


def _closed_reason(status: Optional[str]) -> str:
    return ALREADY_PAID if status == PaymentStatus.PAID.value else ALREADY_FAILED


def _now() -> datetime:
    return datetime.now(timezone.utc)
