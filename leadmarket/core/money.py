"""Conversions between major-unit Decimal amounts and stored integer cents."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> int:
    """Decimal major units -> integer minor units (2 dp, half-up)."""
    return int((amount.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def parse_amount(value: Any) -> Decimal | None:
    """
    Lenient parse of an amount coming from outside (request body, webhook metadata).
    Returns None for anything that is not a finite number with at most two decimals.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite() or amount != amount.quantize(CENT, rounding=ROUND_HALF_UP):
            return None
    except (InvalidOperation, ValueError):
        return None
    return amount


def format_amount(amount: Decimal) -> str:
    return str(amount.quantize(CENT))
