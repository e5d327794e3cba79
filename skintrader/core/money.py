"""Fixed-point money helpers.

Every amount the engine compares or stores goes through ``money`` so that
rounding is defined in exactly one place: two decimal places, half-up.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
RATIO = Decimal("0.0001")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | str | int | float) -> Decimal:
    """Convert a raw value to Decimal without going through binary float math."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        msg = f"not a decimal amount: {value!r}"
        raise ValueError(msg) from exc


def money(value: Decimal | str | int | float) -> Decimal:
    """Quantize to cents, ROUND_HALF_UP."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Divide and keep four decimal places (e.g. 0.2113)."""
    return (numerator / denominator).quantize(RATIO, rounding=ROUND_HALF_UP)


def pct(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Percentage of ``numerator / denominator`` rounded to two places.

    The ratio is carried at four places first, so 7.50 / 35.50 gives 21.13.
    """
    return money(ratio(numerator, denominator) * HUNDRED)


def pct_to_fraction(percent: Decimal) -> Decimal:
    """10 -> 0.1000"""
    return (to_decimal(percent) / HUNDRED).quantize(RATIO, rounding=ROUND_HALF_UP)
