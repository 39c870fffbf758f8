"""
Accès aux données pour la feature 'payments' (client service-role Supabase).

Tables: plans, service_requests, payments, payment_intents, entitlements,
subscriptions; procédure apply_payment_reference (flux historique).
Les erreurs du store sont remontées en PersistenceError, sauf les motifs de
compatibilité de schéma gérés ici par un second essai à champs réduits.
"""
from typing import Any, Dict, List, Optional
import logging

import pme_billing.infra.supabase_client as supabase_client
from pme_billing.errors import PersistenceError
from pme_billing.payments import schema
from pme_billing.payments.models import OPEN_STATUSES, PaymentStatus

logger = logging.getLogger(__name__)

PAYMENTS_TABLE = "payments"
INTENTS_TABLE = "payment_intents"

# module pme_billing.payments.repository
def _table(name: str):
    return supabase_client.get_service_supabase().table(name)

def _first(res) -> Optional[Dict[str, Any]]:
    rows = (res.data if res is not None else None) or []
    if isinstance(rows, list):
        return rows[0] if rows else None
    return rows or None

def _fail(action: str, e: Exception, **ctx) -> PersistenceError:
    logger.exception("payments.repository.%s failed %s", action, ctx)
    return PersistenceError(f"Erreur de persistance ({action})", cause=e)

# --- Référentiel ---

def get_plan_by_code(code: str) -> Optional[Dict[str, Any]]:
    try:
        res = _table("plans").select("*").eq("code", code).limit(1).execute()
    except Exception as e:
        raise _fail("get_plan_by_code", e, code=code)
    return _first(res)

def get_service_request(request_id: str) -> Optional[Dict[str, Any]]:
    """
    Charge la demande de service et normalise le montant estimé sous la clé 'estimate'.
    - Colonne récente: total_estimate; ancienne: total_amount.
    - Repli sur l'ancienne colonne uniquement si la récente n'existe pas.
    """
    columns = schema.estimate_columns()
    for i, column in enumerate(columns):
        try:
            res = (
                _table("service_requests")
                .select(f"id, business_id, customer_user_id, {column}, currency")
                .eq("id", request_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            is_last = i == len(columns) - 1
            if not is_last and schema.is_missing_column_error(e, column):
                logger.info("service_requests.%s absent, repli sur l'ancien schéma", column)
                continue
            raise _fail("get_service_request", e, request_id=request_id)
        row = _first(res)
        if row is None:
            return None
        row = dict(row)
        row["estimate"] = row.get(column)
        return row
    return None

# --- Paiements (payments / payment_intents) ---

def insert_payment(table: str, row: Dict[str, Any]) -> Dict[str, Any]:
    try:
        res = _table(table).insert(row).execute()
    except Exception as e:
        raise _fail("insert_payment", e, table=table, business_id=row.get("business_id"))
    return _first(res) or dict(row)

def get_payment(table: str, reference: str) -> Optional[Dict[str, Any]]:
    try:
        res = _table(table).select("*").eq("id", reference).limit(1).execute()
    except Exception as e:
        raise _fail("get_payment", e, table=table, reference=reference)
    return _first(res)

def update_metadata(table: str, payment_id: str, metadata: Dict[str, Any], only_open: bool = False) -> bool:
    """
    Réécrit la colonne metadata.
    - only_open=True: uniquement si le statut est encore pending/initiated, pour
      qu'une trace tardive n'écrase pas la metadata finale d'un paiement clos.
    Retourne True si une ligne a été modifiée.
    """
    try:
        query = _table(table).update({"metadata": metadata}).eq("id", payment_id)
        if only_open:
            query = query.in_("status", list(OPEN_STATUSES))
        res = query.execute()
    except Exception as e:
        raise _fail("update_metadata", e, table=table, payment_id=payment_id)
    return bool(res.data)

def mark_initiated(table: str, payment_id: str, external_ref: str) -> str:
    """
    Enregistre external_ref et passe le statut à 'initiated'.
    - Si le domaine de statut ne connaît pas 'initiated', conserve 'pending'.
    Retourne le statut effectivement écrit.
    """
    supported = schema.supports_initiated()
    if supported is not False:
        try:
            (
                _table(table)
                .update({"external_ref": external_ref, "status": PaymentStatus.INITIATED.value})
                .eq("id", payment_id)
                .execute()
            )
            return PaymentStatus.INITIATED.value
        except Exception as e:
            if supported or not schema.is_status_domain_error(e, PaymentStatus.INITIATED.value):
                raise _fail("mark_initiated", e, table=table, payment_id=payment_id)
            logger.info("statut 'initiated' refusé par %s, conservation de 'pending'", table)
    try:
        _table(table).update({"external_ref": external_ref}).eq("id", payment_id).execute()
    except Exception as e:
        raise _fail("mark_initiated", e, table=table, payment_id=payment_id)
    return PaymentStatus.PENDING.value

def mark_failed(table: str, payment_id: str, metadata: Dict[str, Any]) -> bool:
    """Transition conditionnelle vers 'failed' (depuis pending/initiated uniquement)."""
    try:
        res = (
            _table(table)
            .update({"status": PaymentStatus.FAILED.value, "metadata": metadata})
            .eq("id", payment_id)
            .in_("status", list(OPEN_STATUSES))
            .execute()
        )
    except Exception as e:
        raise _fail("mark_failed", e, table=table, payment_id=payment_id)
    return bool(res.data)

def claim_paid(table: str, payment_id: str) -> Optional[Dict[str, Any]]:
    """
    Transition atomique non-payé -> 'paid' (UPDATE ... WHERE status IN open).
    Retourne la ligne mise à jour, ou None si un autre traitement l'a déjà réclamée.
    """
    try:
        res = (
            _table(table)
            .update({"status": PaymentStatus.PAID.value})
            .eq("id", payment_id)
            .in_("status", list(OPEN_STATUSES))
            .execute()
        )
    except Exception as e:
        raise _fail("claim_paid", e, table=table, payment_id=payment_id)
    return _first(res)

def release_claim(table: str, payment_id: str, previous_status: str) -> None:
    """Annule une réclamation 'paid' dont l'application des droits a échoué."""
    try:
        (
            _table(table)
            .update({"status": previous_status})
            .eq("id", payment_id)
            .eq("status", PaymentStatus.PAID.value)
            .execute()
        )
    except Exception:
        logger.exception("payments.repository.release_claim failed payment_id=%s", payment_id)

def apply_payment_reference(reference: str) -> Any:
    """Procédure historique idempotente (flux payment_intents / demandes de service)."""
    try:
        res = supabase_client.get_service_supabase().rpc("apply_payment_reference", {"ref": reference}).execute()
    except Exception as e:
        raise _fail("apply_payment_reference", e, reference=reference)
    return res.data

# --- Droits (entitlements) et audit (subscriptions) ---

def get_entitlement(business_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = _table("entitlements").select("*").eq("business_id", business_id).limit(1).execute()
    except Exception as e:
        raise _fail("get_entitlement", e, business_id=business_id)
    return _first(res)

def upsert_entitlement(row: Dict[str, Any]) -> List[str]:
    """
    Upsert (business_id unique) de la ligne de droits.
    - Si orders_paid_until n'existe pas (ancien schéma), réessaie sans cette colonne.
    Retourne la liste des colonnes écrites.
    """
    with_paid_until = schema.entitlement_has_paid_until()
    payload = dict(row)
    if with_paid_until is False:
        payload.pop("orders_paid_until", None)
    try:
        _table("entitlements").upsert(payload, on_conflict="business_id").execute()
        return sorted(payload)
    except Exception as e:
        retry = (
            with_paid_until is None
            and "orders_paid_until" in payload
            and schema.is_missing_column_error(e, "orders_paid_until")
        )
        if not retry:
            raise _fail("upsert_entitlement", e, business_id=row.get("business_id"))
        logger.info("entitlements.orders_paid_until absent, upsert sans cette colonne")
    payload.pop("orders_paid_until", None)
    try:
        _table("entitlements").upsert(payload, on_conflict="business_id").execute()
    except Exception as e:
        raise _fail("upsert_entitlement", e, business_id=row.get("business_id"))
    return sorted(payload)

def insert_subscription_snapshot(row: Dict[str, Any]) -> None:
    try:
        _table("subscriptions").insert(row).execute()
    except Exception as e:
        raise _fail("insert_subscription_snapshot", e, business_id=row.get("business_id"))
