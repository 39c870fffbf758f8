"""Contrat commun des adaptateurs de processeurs de paiement."""
from abc import ABC, abstractmethod

from pme_billing.payments.models import CheckoutRequest, CheckoutSession, Provider, ProviderOutcome


class ProviderAdapter(ABC):
    """
    Un adaptateur par processeur, sélectionné via l'énumération Provider.
    - create_checkout: crée la page de paiement hébergée, lève ProviderError/ConfigurationError
    - fetch_outcome: lit le statut faisant autorité côté processeur (jamais le client)
    """

    provider: Provider

    @abstractmethod
    def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        ...

    @abstractmethod
    def fetch_outcome(self, external_ref: str) -> ProviderOutcome:
        ...

    def return_urls(self, callback_url: str, reference: str):
        """(return_url, cancel_url) propres au processeur; None = défaut de l'adaptateur."""
        return None, None
