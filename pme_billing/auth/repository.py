from typing import Optional, Dict, Any
import logging
from pme_billing.infra import supabase_client
from pme_billing.errors import PersistenceError

logger = logging.getLogger(__name__)

STAFF_ROLES = ("owner", "admin", "staff")

# --- Auth (supabase.auth.*) ---

def get_user_from_access_token(access_token: str) -> Dict[str, Any]:
    """Récupère et normalise l’utilisateur depuis supabase.auth.get_user(access_token)."""
    res = supabase_client.get_supabase().auth.get_user(access_token)
    user = getattr(res, "user", None) or {}
    if not isinstance(user, dict):
        user = {
            "id": getattr(user, "id", None),
            "email": getattr(user, "email", None),
            "user_metadata": getattr(user, "user_metadata", None),
        }
    return user or {}

# --- Table business_members (rôles par entreprise) ---

def get_member_role(business_id: str, user_id: str) -> Optional[str]:
    """
    Rôle de l'utilisateur dans l'entreprise (owner/admin/staff/customer...).
    - Retourne None si l'utilisateur n'est pas membre.
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("business_members")
            .select("role")
            .eq("business_id", business_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("auth.repository.get_member_role failed business_id=%s user_id=%s", business_id, user_id)
        raise PersistenceError("Lecture des membres impossible", cause=e)
    rows = res.data or []
    if not rows:
        return None
    return (rows[0] or {}).get("role")
