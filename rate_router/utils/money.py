"""
Fixed-point money helpers.

All amounts inside the routing pipeline are integer cents. Provider payloads
arrive as floats or strings in dollars and are converted once, at the edge.
"""
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")


def to_cents(value: Any) -> Optional[int]:
    """
    Convert a dollar amount to integer cents.

    Accepts Decimal, int, float, or strings like "$1,234.50". Floats go
    through str() so 4.1 becomes 410, not 409. Returns None for empty input.

    Raises:
        ValueError: if the value is not a number
    """
    if value is None:
        return None

    if isinstance(value, str):
        value = re.sub(r"[$,\s]", "", value)
        if value == "":
            return None

    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, (int, float)):
            amount = Decimal(str(value))
        else:
            amount = Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid money amount: {value!r}") from e

    if not amount.is_finite():
        raise ValueError(f"Invalid money amount: {value!r}")

    return int(amount.quantize(CENT, rounding=ROUND_HALF_UP) * 100)


def round_cents(value: Decimal) -> int:
    """Round a fractional cent amount half-up to whole cents."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

