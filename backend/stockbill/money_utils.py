"""
Money helpers.

Amounts are stored as integer cents and tax rates as integer basis points
(1% = 100 bps). Client input arrives as decimal numbers or strings and is
rounded half-up to the storage unit; output is a float with 2 places.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


class MoneyParseError(ValueError):
    pass


def to_decimal(value) -> Decimal:
    if isinstance(value, bool):
        raise MoneyParseError("Boolean is not a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, TypeError):
        raise MoneyParseError(f"Invalid number: {value!r}")
    if not d.is_finite():
        raise MoneyParseError(f"Invalid number: {value!r}")
    return d


def _round_half_up(d: Decimal, original) -> int:
    try:
        return int(d.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        # More digits than the decimal context can hold
        raise MoneyParseError(f"Number out of range: {original!r}")


def decimal_to_cents(value) -> int:
    d = to_decimal(value)
    return _round_half_up(d * 100, value)


def cents_to_amount(cents: int | None) -> float | None:
    if cents is None:
        return None
    return float((Decimal(cents) / 100).quantize(Decimal("0.01")))


def percent_to_bps(value) -> int:
    return decimal_to_cents(value)


def bps_to_percent(bps: int | None) -> float | None:
    return cents_to_amount(bps)


def apply_rate_cents(amount_cents: int, rate_bps: int) -> int:
    """amount * rate, rounded half-up to whole cents."""
    raw = Decimal(amount_cents) * Decimal(rate_bps) / Decimal(10_000)
    return _round_half_up(raw, amount_cents)


def divide_cents(total_cents: int, divisor: int) -> int:
    if not divisor:
        return 0
    raw = Decimal(total_cents) / Decimal(divisor)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
