import hmac
from fastapi import Request, Depends
from typing import Optional, Dict, Any
from pme_billing.errors import AuthError, ConfigurationError

def bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None

def get_current_user(request: Request) -> Dict[str, Any]:
    # Appels API uniquement: jeton Bearer obligatoire (pas de cookie de session)
    token = bearer_token(request)
    if not token:
        raise AuthError("Unauthorized")

    try:
        from pme_billing.auth.service import get_user_from_token as _svc_get_user_from_token
        user = _svc_get_user_from_token(token)
    except (AuthError, ConfigurationError):
        raise
    except Exception:
        raise AuthError("Unauthorized")
    if not user.get("id"):
        raise AuthError("Unauthorized")
    return user

def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user

def secrets_match(expected: str, provided: Optional[str]) -> bool:
    """Comparaison à temps constant; un secret vide côté serveur désactive la vérification."""
    if not expected:
        return True
    return hmac.compare_digest(expected.encode("utf-8"), (provided or "").encode("utf-8"))
