"""Pure money and leave-day rules shared by billing, payroll deduction and leave rollover."""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple

from dateutil.relativedelta import relativedelta

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def to_decimal(val) -> Decimal:
    if val is None:
        return ZERO
    return val if isinstance(val, Decimal) else Decimal(str(val))


def money(val) -> Decimal:
    """Quantize to 2 decimal places (half up)."""
    return to_decimal(val).quantize(CENT, rounding=ROUND_HALF_UP)


def apply_percent_discount(amount, percent) -> Decimal:
    """amount * (1 - percent/100), never negative. A missing percent means no discount."""
    discounted = to_decimal(amount) * (1 - to_decimal(percent) / HUNDRED)
    return max(ZERO, discounted)


def percent_of(amount, percent) -> Decimal:
    return to_decimal(amount) * to_decimal(percent) / HUNDRED


def cap_to_available(requested, available) -> Decimal:
    """Cap a deduction to what is left; a negative remainder counts as nothing left."""
    return min(to_decimal(requested), max(ZERO, to_decimal(available)))


def carry_forward_with_cap(
    previous_available,
    is_carry_forward: bool,
    max_carry_forward_days: Optional[int],
) -> Decimal:
    """
    Days carried from the immediately preceding period.
    previous_available is None when no balance existed for that period.
    A cap of None or 0 means uncapped.
    """
    if not is_carry_forward or previous_available is None:
        return ZERO
    available = to_decimal(previous_available)
    if available <= 0:
        return ZERO
    if max_carry_forward_days:
        return min(available, Decimal(max_carry_forward_days))
    return available


def total_payable(tuition_fee, admission_fee, miscellaneous_charges, fine, previous_dues) -> Decimal:
    return (
        to_decimal(tuition_fee)
        + to_decimal(admission_fee)
        + to_decimal(miscellaneous_charges)
        + to_decimal(fine)
        + to_decimal(previous_dues)
    )


def remaining_dues(total, paid) -> Decimal:
    return max(ZERO, to_decimal(total) - to_decimal(paid))


def previous_period(year: int, month: int) -> Tuple[int, int]:
    prev = date(year, month, 1) - relativedelta(months=1)
    return prev.year, prev.month


def next_period(year: int, month: int) -> Tuple[int, int]:
    nxt = date(year, month, 1) + relativedelta(months=1)
    return nxt.year, nxt.month


def months_between(from_year: int, from_month: int, to_year: int, to_month: int) -> int:
    """Whole billing months strictly between two periods (0 when adjacent or reversed)."""
    gap = (to_year - from_year) * 12 + to_month - from_month - 1
    return max(0, gap)
