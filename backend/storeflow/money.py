# Overview: Integer minor-unit money helpers (cents) and proration.

"""
Money invariants (authoritative):

- Every stored amount is an integer number of minor units (cents).
- Major units (e.g. "150.00") only exist at the caller boundary and are
  converted with a fixed factor of 100, rounding half-up.
- prorate() always returns shares that sum exactly to the total. The full
  rounding remainder lands on the last share.
- divide_half_up() is the single rounding rule for per-unit averages.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Sequence

from .errors import ValidationError

MINOR_UNITS_PER_MAJOR = 100


def to_minor_units(value) -> int:
    """Convert a major-unit amount (int, str, Decimal, float) to integer cents."""
    if value is None or isinstance(value, bool):
        raise ValidationError("amount is required")
    try:
        # str() first so floats like 0.1 convert by their shortest repr
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"invalid amount: {value!r}")
    cents = (amount * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def to_major_units(cents: int) -> Decimal:
    return (Decimal(int(cents)) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))


def divide_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded half-up; 0 when the denominator is 0."""
    if denominator == 0:
        return 0
    if denominator < 0:
        numerator, denominator = -numerator, -denominator
    return (2 * numerator + denominator) // (2 * denominator)


def prorate(total: int, weights: Sequence[int]) -> list[int]:
    """
    Distribute `total` across `weights` so the shares sum exactly to `total`.

    Each share is total * weight // sum(weights); the remainder is added to
    the last share. With all-zero weights the whole total goes to the last.
    """
    if total < 0:
        raise ValidationError("total must be >= 0")
    if any(w < 0 for w in weights):
        raise ValidationError("weights must be >= 0")
    if not weights:
        if total:
            raise ValidationError("cannot prorate a non-zero total over no weights")
        return []

    weight_sum = sum(weights)
    if weight_sum == 0:
        shares = [0] * len(weights)
    else:
        shares = [total * w // weight_sum for w in weights]

    shares[-1] += total - sum(shares)
    return shares
