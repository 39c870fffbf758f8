"""
Module 'payments' (feature-first): point d'entrée public.
Réunit types, devises, adaptateurs processeurs, repository BD et services
(initiation du checkout, réconciliation des callbacks, droits d'abonnement).
"""

from .models import (
    Provider,
    PaymentStatus,
    OutcomeStatus,
    SubscriptionMetadata,
    RequestMetadata,
    UnknownMetadata,
    parse_metadata,
    ApplyResult,
)
from .currency import ZERO_DECIMAL_CURRENCIES, is_zero_decimal, to_minor_units, is_valid_amount
from .entitlements import flags_for_plan, compute_paid_until, build_entitlement_row
from .providers import get_adapter
from .checkout import start_subscription_checkout, start_request_checkout
from .callbacks import apply_subscription_payment, handle_notification, handle_redirect

__all__ = [
    # models
    "Provider",
    "PaymentStatus",
    "OutcomeStatus",
    "SubscriptionMetadata",
    "RequestMetadata",
    "UnknownMetadata",
    "parse_metadata",
    "ApplyResult",
    # currency
    "ZERO_DECIMAL_CURRENCIES",
    "is_zero_decimal",
    "to_minor_units",
    "is_valid_amount",
    # entitlements
    "flags_for_plan",
    "compute_paid_until",
    "build_entitlement_row",
    # providers
    "get_adapter",
    # services
    "start_subscription_checkout",
    "start_request_checkout",
    "apply_subscription_payment",
    "handle_notification",
    "handle_redirect",
]
