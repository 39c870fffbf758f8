from typing import Optional
from supabase import create_client, Client
from pme_billing import config
from pme_billing.errors import ConfigurationError

_supabase: Optional[Client] = None
_service_supabase: Optional[Client] = None

def get_supabase() -> Client:
    """Client 'anon': utilisé pour valider les jetons utilisateurs (GoTrue)."""
    global _supabase
    if _supabase is None:
        if not config.SUPABASE_URL or not config.SUPABASE_ANON:
            raise ConfigurationError("SUPABASE_URL/SUPABASE_ANON_KEY manquants")
        _supabase = create_client(config.SUPABASE_URL, config.SUPABASE_ANON)
    return _supabase

def get_service_supabase() -> Client:
    """Client service-role (bypass RLS): toutes les écritures de paiement passent par lui."""
    global _service_supabase
    if _service_supabase is None:
        if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_KEY:
            raise ConfigurationError("SUPABASE_SERVICE_KEY manquant pour get_service_supabase()")
        _service_supabase = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_KEY)
    return _service_supabase
