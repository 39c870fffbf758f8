from typing import Optional, Dict, Any
from pme_billing.auth import repository
from pme_billing.auth.repository import STAFF_ROLES

def get_user_from_token(access_token: str) -> Dict[str, Any]:
    """Normalise l'utilisateur issu de supabase.auth.get_user(access_token):
    - Retourne {id, email, metadata, token}
    """
    raw = repository.get_user_from_access_token(access_token)
    return {
        "id": raw.get("id"),
        "email": raw.get("email"),
        "metadata": raw.get("user_metadata") or {},
        "token": access_token,
    }

def business_role(business_id: str, user_id: str) -> Optional[str]:
    role = repository.get_member_role(business_id, user_id)
    return str(role).lower() if role else None

def is_business_staff(business_id: str, user_id: str) -> bool:
    """Vrai si l'utilisateur a un rôle owner/admin/staff dans l'entreprise."""
    return business_role(business_id, user_id) in STAFF_ROLES
