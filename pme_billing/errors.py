"""
Taxonomie des erreurs du service de facturation.

Chaque erreur est une HTTPException avec un statut et un message par défaut:
les services lèvent directement l'erreur métier, FastAPI la convertit en
réponse via le handler enregistré dans app_setup.exceptions ({"error": ...}).
"""
from typing import Optional
from fastapi import HTTPException


class BillingError(HTTPException):
    status_code = 500
    default_detail = "Erreur interne"

    def __init__(self, detail: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(
            status_code=status_code or type(self).status_code,
            detail=detail or self.default_detail,
        )


class ValidationError(BillingError):
    status_code = 400
    default_detail = "Requête invalide"


class AuthError(BillingError):
    status_code = 401
    default_detail = "Unauthorized"


class AuthorizationError(BillingError):
    status_code = 403
    default_detail = "Forbidden"


class NotFoundError(BillingError):
    status_code = 400
    default_detail = "Ressource introuvable"


class ProviderError(BillingError):
    """Échec du processeur de paiement (le détail reste côté logs/metadata)."""
    status_code = 502
    default_detail = "Paiement indisponible. Réessaie dans un instant."


class ConfigurationError(BillingError):
    status_code = 500
    default_detail = "Payment provider not configured"


class PersistenceError(BillingError):
    status_code = 500
    default_detail = "Erreur de persistance"

    def __init__(self, detail: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(detail)
        self.cause = cause
