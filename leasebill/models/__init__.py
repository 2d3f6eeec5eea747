from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(value: Decimal | int | str) -> Decimal:
    """Round to 2 places, halves away from zero: 2613.333 -> 2613.33, 0.005 -> 0.01"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    """Money as stored: Decimal('1600.00') -> 160000"""
    return int(round_money(value) * 100)


def from_cents(cents: int | None) -> Decimal:
    if cents is None:
        return ZERO
    return (Decimal(cents) / 100).quantize(CENT)


def to_decimal_str(value: Decimal | None) -> str | None:
    """Readings and rates keep their full precision as text."""
    if value is None:
        return None
    return str(value)


def from_decimal_str(text: str | None) -> Decimal | None:
    if text is None or text == "":
        return None
    return Decimal(text)


def format_money(value: Decimal) -> str:
    """Format a money amount for display: Decimal('2850') -> '2,850.00'"""
    return f"{round_money(value):,.2f}"


def parse_money(text: str) -> Decimal | None:
    """Parse an operator-entered amount. Returns None on invalid input.

    Accepts formats like '2850', '2850.00', '2,850.00'.
    """
    text = text.strip().replace(",", "")
    if not text:
        return None
    try:
        return round_money(Decimal(text))
    except InvalidOperation:
        return None
