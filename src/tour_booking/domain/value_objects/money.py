"""Fixed-point money helpers.

Amounts are integer minor units (cents). Decimal is only used for the
intermediate products of rates and multipliers, and every conversion back to
minor units goes through banker's rounding.
"""

from decimal import Decimal, ROUND_HALF_EVEN
from typing import List, Optional, Sequence, Union

Numeric = Union[int, str, Decimal]

_CENT = Decimal("0.01")
_UNIT = Decimal("1")


def to_minor_units(amount: Numeric) -> int:
    """Convert a major-unit amount such as ``"125.50"`` to cents."""
    if isinstance(amount, float):
        raise TypeError("Floating point amounts are not accepted for money")
    value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
    return int((value / _CENT).quantize(_UNIT, rounding=ROUND_HALF_EVEN))


def from_minor_units(cents: int) -> Decimal:
    """Major-unit Decimal for display and serialization."""
    return (Decimal(cents) * _CENT).quantize(_CENT)


def round_half_even(value: Decimal) -> int:
    """Round a fractional number of cents to whole cents."""
    return int(value.quantize(_UNIT, rounding=ROUND_HALF_EVEN))


def apply_rate(cents: int, rate: Numeric) -> int:
    """Multiply an amount by a rate (multiplier or fraction)."""
    return round_half_even(Decimal(cents) * Decimal(str(rate)))


def clamp(cents: int, minimum: Optional[int], maximum: Optional[int]) -> int:
    """Clamp to whichever of the bounds are set."""
    if minimum is not None and cents < minimum:
        cents = minimum
    if maximum is not None and cents > maximum:
        cents = maximum
    return cents


def percentage_of(total: int, percent: Numeric) -> int:
    return round_half_even(Decimal(total) * Decimal(str(percent)) / Decimal(100))


def split_installments(total: int, leading_percentages: Sequence[Numeric]) -> List[int]:
    """Split ``total`` into installments.

    ``leading_percentages`` gives every installment except the last. Each of
    those is rounded on its own and the final installment takes whatever is
    left, so the parts always add up to ``total`` exactly.
    """
    parts = [percentage_of(total, percent) for percent in leading_percentages]
    if sum(parts) > total:
        raise ValueError("Installment percentages exceed the total")
    parts.append(total - sum(parts))
    return parts


def format_minor_units(cents: int, currency: str = "USD") -> str:
    return f"{from_minor_units(cents)} {currency}"
