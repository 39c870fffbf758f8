"""
Projection plan -> droits de l'entreprise (fonction pure, sans accès DB).
"""
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class EntitlementFlags:
    can_receive_orders: bool
    can_run_ads: bool
    visibility_multiplier: float

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


PLAN_FLAGS = {
    "free": EntitlementFlags(can_receive_orders=False, can_run_ads=False, visibility_multiplier=1.0),
    "pro": EntitlementFlags(can_receive_orders=True, can_run_ads=False, visibility_multiplier=1.1),
    "premium": EntitlementFlags(can_receive_orders=True, can_run_ads=True, visibility_multiplier=1.3),
}
DEFAULT_FLAGS = EntitlementFlags(can_receive_orders=True, can_run_ads=False, visibility_multiplier=1.0)


def flags_for_plan(plan_code: str) -> EntitlementFlags:
    return PLAN_FLAGS.get((plan_code or "").strip().lower(), DEFAULT_FLAGS)


def _parse_ts(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str) and value:
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def compute_paid_until(now: datetime, period_days: int, current: Any = None) -> datetime:
    """
    now + max(1, period_days) jours, sans jamais reculer une échéance déjà acquise.
    """
    candidate = now + timedelta(days=max(1, int(period_days or 0)))
    existing = _parse_ts(current)
    if existing and existing > candidate:
        return existing
    return candidate


def build_entitlement_row(business_id: str, plan: Dict[str, Any], paid_until: datetime, now: datetime) -> Dict[str, Any]:
    row = {
        "business_id": business_id,
        "plan_id": plan.get("id"),
        "orders_paid_until": paid_until.isoformat(),
        "updated_at": now.isoformat(),
    }
    row.update(flags_for_plan(plan.get("code") or "").as_dict())
    return row
