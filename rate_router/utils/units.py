"""
Weight and length normalization.

Weights are carried as integer grams; lengths as Decimal inches.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Tuple, Union

Number = Union[int, float, Decimal, str]

GRAMS_PER_UNIT = {
    "g": Decimal("1"),
    "gram": Decimal("1"),
    "grams": Decimal("1"),
    "kg": Decimal("1000"),
    "kilogram": Decimal("1000"),
    "kilograms": Decimal("1000"),
    "oz": Decimal("28.349523125"),
    "ounce": Decimal("28.349523125"),
    "ounces": Decimal("28.349523125"),
    "lb": Decimal("453.59237"),
    "lbs": Decimal("453.59237"),
    "pound": Decimal("453.59237"),
    "pounds": Decimal("453.59237"),
}

INCHES_PER_UNIT = {
    "in": Decimal("1"),
    "inch": Decimal("1"),
    "inches": Decimal("1"),
    "cm": Decimal("1") / Decimal("2.54"),
    "centimeter": Decimal("1") / Decimal("2.54"),
    "centimeters": Decimal("1") / Decimal("2.54"),
}


def _decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"Not a number: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Not a number: {value!r}")
    return amount


def to_grams(value: Number, unit: str = "g") -> int:
    """
    Convert a weight to whole grams (half-up).

    Raises:
        ValueError: on an unknown unit, a non-numeric value, or a negative weight
    """
    factor = GRAMS_PER_UNIT.get((unit or "g").strip().lower())
    if factor is None:
        raise ValueError(f"Unknown weight unit: {unit!r}")
    amount = _decimal(value)
    if amount < 0:
        raise ValueError(f"Weight must not be negative: {value!r}")
    return int((amount * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def pounds_to_grams(value: Number) -> int:
    return to_grams(value, "lb")


def grams_to_ounces(grams: int) -> Decimal:
    return (Decimal(grams) / GRAMS_PER_UNIT["oz"]).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def grams_to_pounds(grams: int) -> Decimal:
    return (Decimal(grams) / GRAMS_PER_UNIT["lb"]).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_inches(value: Number, unit: str = "in") -> Decimal:
    """Convert a length to inches, rounded to hundredths."""
    factor = INCHES_PER_UNIT.get((unit or "in").strip().lower())
    if factor is None:
        raise ValueError(f"Unknown length unit: {unit!r}")
    return (_decimal(value) * factor).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def inches_to_tuple(length: Number, width: Number, height: Number) -> Tuple[Decimal, Decimal, Decimal]:
    return (to_inches(length), to_inches(width), to_inches(height))
