"""
Conversion des montants vers les unités attendues par les processeurs.
"""
from decimal import Decimal, ROUND_HALF_UP
import math

# Devises sans sous-unité côté Stripe (montant envoyé en unités entières)
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})

def is_zero_decimal(currency: str) -> bool:
    return (currency or "").strip().upper() in ZERO_DECIMAL_CURRENCIES

def round_half_up(value: float) -> int:
    # str() évite les artefacts binaires (ex: 1.005 * 100)
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def to_minor_units(amount: float, currency: str) -> int:
    """
    Montant Stripe (unit_amount):
    - devise zéro-décimale (XOF, XAF, JPY...): montant arrondi
    - sinon: centimes, arrondi de amount * 100
    """
    if is_zero_decimal(currency):
        return round_half_up(amount)
    return round_half_up(Decimal(str(amount)) * 100)

def is_valid_amount(amount) -> bool:
    """Nombre (pas un booléen), fini et strictement positif."""
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return False
    return math.isfinite(amount) and amount > 0
