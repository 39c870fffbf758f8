"""
Types de la feature 'payments': providers, statuts, metadata typées.

La colonne metadata (jsonb) est lue comme une union typée:
- SubscriptionMetadata: paiement d'abonnement (plan_code, période)
- RequestMetadata: paiement lié à une demande de service
- UnknownMetadata: forme inconnue, conservée telle quelle (compat ascendante)
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError

from pme_billing.errors import ValidationError


class Provider(str, Enum):
    PAYDUNYA = "paydunya"
    STRIPE = "stripe"

    @classmethod
    def parse(cls, raw: Any, default: "Provider" = None) -> "Provider":
        """Accepte 'PAYDUNYA' / 'paydunya' / ' Stripe '; lève ValidationError sinon."""
        if raw is None or raw == "":
            if default is None:
                raise ValidationError("provider is required")
            return default
        if not isinstance(raw, str):
            raise ValidationError("Unsupported provider")
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise ValidationError("Unsupported provider")


class PaymentStatus(str, Enum):
    PENDING = "pending"
    INITIATED = "initiated"
    PAID = "paid"
    FAILED = "failed"


# Statuts depuis lesquels une transition vers paid/failed est encore permise
OPEN_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.INITIATED.value)


class OutcomeStatus(str, Enum):
    PAID = "paid"
    FAILED = "failed"
    PENDING = "pending"


class SubscriptionMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    purpose: Literal["subscription"] = "subscription"
    plan_code: str
    plan_id: Optional[str] = None
    period_days: int = 30


class RequestMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    purpose: Literal["request"] = "request"
    request_id: str


class UnknownMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    purpose: Optional[str] = None


PaymentMetadata = Union[SubscriptionMetadata, RequestMetadata, UnknownMetadata]


def parse_metadata(raw: Optional[Dict[str, Any]]) -> PaymentMetadata:
    data = dict(raw or {})
    purpose = data.get("purpose")
    try:
        if purpose == "subscription":
            return SubscriptionMetadata.model_validate(data)
        if purpose == "request":
            return RequestMetadata.model_validate(data)
    except PydanticValidationError:
        pass
    return UnknownMetadata.model_validate(data)


def dump_metadata(meta: PaymentMetadata) -> Dict[str, Any]:
    return meta.model_dump(exclude_none=True)


@dataclass
class CheckoutRequest:
    amount: float
    currency: str
    description: str
    reference: str
    callback_url: str
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
    business_id: Optional[str] = None


@dataclass
class CheckoutSession:
    url: str
    external_ref: str


@dataclass
class ProviderOutcome:
    status: OutcomeStatus
    reference: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ApplyResult:
    """Résultat d'une réconciliation: applied=True uniquement pour la première application payée."""
    applied: bool
    reason: str
    reference: Optional[str] = None
