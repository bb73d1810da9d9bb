"""Money helpers for the storefront.

Amounts are whole pesos (ARS) as stored by the content backend. Rounding
follows the storefront rule: half away from zero, per line, never banker's
rounding.
"""

from __future__ import annotations

import math
from typing import Any, Optional


def to_number(value: Any, default: float = 0.0) -> float:
    """Coerce a backend value (int, float, numeric string) to float."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def round_half_up(value: float) -> int:
    """Round to the nearest whole peso, halves going up."""
    return int(math.floor(value + 0.5))


def price_with_off(price: float, off: Optional[float] = None) -> float:
    """Unit price after a percentage discount, rounded when a discount applies."""
    if off is not None and off > 0:
        return round_half_up(price * (1 - off / 100))
    return price


def format_ars(amount: Any) -> str:
    """Format an amount the es-AR way: $ 1.234,50."""
    number = to_number(amount)
    sign = "-" if number < 0 else ""
    whole, _, cents = f"{abs(number):,.2f}".partition(".")
    return f"{sign}$ {whole.replace(',', '.')},{cents}"
