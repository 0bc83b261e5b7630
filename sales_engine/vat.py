"""
VAT split for tax-inclusive KRW amounts.

SUPPLY_DIV_11: supply = round_half_up(total / 1.1), vat = total - supply.
VAT is never rounded on its own, so supply + vat == total holds exactly,
negative totals included.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from .models import VatPolicy

ZERO = Decimal("0")
_UNIT = Decimal("1")
_VAT_DIVISOR = Decimal("1.1")

Number = Union[Decimal, int, str, None]


def to_decimal(value: Number) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value: Decimal) -> Decimal:
    """Round to whole currency units, ties away from zero."""
    return value.quantize(_UNIT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class VatBreakdown:
    supply: Decimal
    vat: Decimal
    total: Decimal


def apply_vat(gross: Number, policy: Optional[VatPolicy] = VatPolicy.SUPPLY_DIV_11, negate: bool = False) -> VatBreakdown:
    """
    Split a gross amount into supply and VAT.

    Args:
        gross: Tax-inclusive amount (None counts as zero)
        policy: VAT policy; None is treated as SUPPLY_DIV_11
        negate: Negate the gross before splitting (commission lines)

    Returns:
        VatBreakdown with whole-unit supply, vat and total
    """
    total = round_half_up(to_decimal(gross))
    if negate and total:
        total = -total

    if policy == VatPolicy.NO_VAT:
        return VatBreakdown(supply=total, vat=ZERO, total=total)

    supply = round_half_up(total / _VAT_DIVISOR)
    return VatBreakdown(supply=supply, vat=total - supply, total=total)
