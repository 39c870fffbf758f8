# pme_billing.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du service de facturation.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, PayDunya, Stripe)
- Expose l'URL publique utilisée pour construire les callbacks des providers
- Expose les drapeaux de compatibilité de schéma (auto | valeur explicite)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _first_env(*names: str) -> str:
    """Retourne la première variable non vide parmi des alias historiques."""
    for name in names:
        value = _clean_env(os.getenv(name) or "")
        if value:
            return value
    return ""

def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name) or "") or default)
    except ValueError:
        return default

def _float_env(name: str, default: float) -> float:
    try:
        return float(_clean_env(os.getenv(name) or "") or default)
    except ValueError:
        return default

# Supabase: URL et clés (anon pour l'auth, service pour les écritures)
SUPABASE_URL = _first_env("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL")
SUPABASE_ANON = _first_env("SUPABASE_ANON_KEY", "SUPABASE_KEY")
SUPABASE_SERVICE_KEY = _first_env("SUPABASE_SERVICE_KEY", "SUPABASE_SERVICE_ROLE_KEY")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# URL publique du service (callbacks/retours providers) et secret partagé
PUBLIC_BASE_URL = _clean_env(os.getenv("PUBLIC_BASE_URL") or "").rstrip("/")
CALLBACK_SECRET = _clean_env(os.getenv("CALLBACK_SECRET") or "")

# PayDunya: plusieurs noms de variables ont coexisté selon les déploiements
PAYDUNYA_MASTER_KEY = _first_env("PAYDUNYA_MASTER_KEY")
PAYDUNYA_PRIVATE_KEY = _first_env("PAYDUNYA_API_SECRET", "PAYDUNYA_PRIVATE_KEY")
PAYDUNYA_PUBLIC_KEY = _first_env("PAYDUNYA_API_KEY", "PAYDUNYA_PUBLIC_KEY")
PAYDUNYA_TOKEN = _first_env("PAYDUNYA_TOKEN", "PAYDUNYA_API_TOKEN")
PAYDUNYA_MODE = _clean_env(os.getenv("PAYDUNYA_MODE") or "").lower()
PAYDUNYA_STORE_NAME = _clean_env(os.getenv("PAYDUNYA_STORE_NAME") or "PME_TPE")

# Stripe
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")

# Facturation
DEFAULT_CURRENCY = (_clean_env(os.getenv("DEFAULT_CURRENCY") or "") or "XOF").upper()
SUBSCRIPTION_PERIOD_DAYS = _int_env("SUBSCRIPTION_PERIOD_DAYS", 30)
HTTP_TIMEOUT_SECONDS = _float_env("HTTP_TIMEOUT_SECONDS", 15.0)

# Compatibilité schéma: "auto" = détection par code d'erreur PostgREST/SQLSTATE
# - SCHEMA_REQUEST_ESTIMATE_COLUMN: auto | total_estimate | total_amount
# - SCHEMA_SUPPORTS_INITIATED: auto | true | false
# - SCHEMA_ENTITLEMENT_PAID_UNTIL: auto | true | false
SCHEMA_REQUEST_ESTIMATE_COLUMN = (_clean_env(os.getenv("SCHEMA_REQUEST_ESTIMATE_COLUMN") or "") or "auto").lower()
SCHEMA_SUPPORTS_INITIATED = (_clean_env(os.getenv("SCHEMA_SUPPORTS_INITIATED") or "") or "auto").lower()
SCHEMA_ENTITLEMENT_PAID_UNTIL = (_clean_env(os.getenv("SCHEMA_ENTITLEMENT_PAID_UNTIL") or "") or "auto").lower()

# CORS / hosts
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "*").split(",") if h.strip()]
