"""
Registre des adaptateurs: ajouter un processeur = ajouter une valeur à Provider
et son adaptateur ici.
"""
from typing import Dict

from pme_billing.payments.models import Provider
from .base import ProviderAdapter
from .paydunya import PayDunyaAdapter
from .stripe_client import StripeAdapter

ADAPTERS: Dict[Provider, ProviderAdapter] = {
    Provider.PAYDUNYA: PayDunyaAdapter(),
    Provider.STRIPE: StripeAdapter(),
}

def get_adapter(provider: Provider) -> ProviderAdapter:
    return ADAPTERS[Provider(provider)]

__all__ = ["ADAPTERS", "get_adapter", "ProviderAdapter", "PayDunyaAdapter", "StripeAdapter"]
