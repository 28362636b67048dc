"""Decimal rounding helpers.

Rounding directions differ per statutory rule:
- money lines: 2 dp, half away from zero
- EPF: up to the next whole ringgit
- SOCSO / EIS: up to the next 5 sen (applied when tables are built)
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")
RINGGIT = Decimal("1")
HALF = Decimal("0.5")


def round_to_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def ceil_to_ringgit(amount: Decimal) -> Decimal:
    """Round amount up to the next whole ringgit, returned with 2 dp."""
    if amount <= 0:
        return Decimal("0.00")
    return amount.to_integral_value(rounding=ROUND_CEILING).quantize(CENTS)


def floor_to_half(amount: Decimal) -> Decimal:
    """Round down to the nearest 0.5."""
    return (amount / HALF).to_integral_value(rounding=ROUND_FLOOR) * HALF


def round_to_half(amount: Decimal) -> Decimal:
    """Round half-up to the nearest 0.5."""
    return (amount / HALF).to_integral_value(rounding=ROUND_HALF_UP) * HALF


def to_decimal(value: object, default: Decimal = Decimal("0")) -> Decimal:
    """Coerce a stored value (None, int, str, Decimal) to Decimal."""
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
