from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

D = Decimal

ZERO = D("0")
HUNDRED = D("100")

# ISO-4217 minor units; everything not listed uses 2
_MINOR_UNITS = {
    "JPY": 0,
    "HUF": 0,
    "KRW": 0,
    "ISK": 0,
}


def minor_units(currency: str) -> int:
    return _MINOR_UNITS.get((currency or "").upper(), 2)


def qmoney(x: Decimal, currency: str = "PLN") -> Decimal:
    exp = D(1).scaleb(-minor_units(currency))
    return x.quantize(exp, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Decimal via str() so floats from YAML don't leak binary noise."""
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    return D(str(value))


def percent_of(amount: Decimal, pct: Decimal) -> Decimal:
    return amount * pct / HUNDRED
