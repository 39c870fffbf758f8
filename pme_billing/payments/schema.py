"""
Compatibilité de schéma (anciennes bases encore en production).

Chaque capacité est pilotée par un drapeau de configuration explicite; la
valeur "auto" tente la forme récente puis se replie sur l'ancienne forme
uniquement pour la classe d'erreur attendue (code SQLSTATE / PostgREST).
"""
from pme_billing import config

UNDEFINED_COLUMN_CODES = {"42703", "PGRST204"}
STATUS_DOMAIN_CODES = {"22P02", "23514"}


def _error_code(err: BaseException) -> str:
    code = getattr(err, "code", None)
    if code is None and err.args and isinstance(err.args[0], dict):
        code = err.args[0].get("code")
    return str(code or "")


def _error_message(err: BaseException) -> str:
    msg = getattr(err, "message", None)
    if not isinstance(msg, str):
        msg = str(err)
    return msg.lower()


def is_missing_column_error(err: BaseException, column: str) -> bool:
    code = _error_code(err)
    msg = _error_message(err)
    col = column.lower()
    if code in UNDEFINED_COLUMN_CODES:
        return col in msg or not msg
    return f'column "{col}" does not exist' in msg or f"'{col}' column" in msg


def is_status_domain_error(err: BaseException, value: str) -> bool:
    code = _error_code(err)
    msg = _error_message(err)
    if code == "23514":
        return "status" in msg or not msg
    if code in STATUS_DOMAIN_CODES:
        return value.lower() in msg or "enum" in msg
    return "invalid input value for enum" in msg and value.lower() in msg


def _flag(value: str):
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    return None


def estimate_columns():
    """Colonnes d'estimation à essayer, dans l'ordre (la plus récente d'abord)."""
    forced = config.SCHEMA_REQUEST_ESTIMATE_COLUMN
    if forced in ("total_estimate", "total_amount"):
        return [forced]
    return ["total_estimate", "total_amount"]


def supports_initiated():
    """True/False si forcé par configuration, None pour la détection automatique."""
    return _flag(config.SCHEMA_SUPPORTS_INITIATED)


def entitlement_has_paid_until():
    return _flag(config.SCHEMA_ENTITLEMENT_PAID_UNTIL)
