"""Apportion a full-period amount to the days actually covered.

Both strategies share the overlap computation and differ only in the divisor:
the calendar length of the month the billing period starts in, or a flat 30.
Neither clamps the result, so a 31-day overlap under the thirty-day strategy
yields slightly more than the full amount.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from leasebill.exceptions import InvalidPeriodError, ValidationError
from leasebill.models import CENT, ZERO, round_money
from leasebill.models.billing_setting import ProrationMethod
from leasebill.models.period import days_in_month, overlap

THIRTY_DAY_DIVISOR = 30


def proration_divisor(billing_period_start: date, method: ProrationMethod) -> int:
    if method == ProrationMethod.THIRTY_DAY_MONTH:
        return THIRTY_DAY_DIVISOR
    return days_in_month(billing_period_start)


def overlap_days(
    billing_period_start: date,
    billing_period_end: date,
    effective_start: date,
    effective_end: date,
) -> int:
    if billing_period_end < billing_period_start:
        raise InvalidPeriodError(
            f"Billing period {billing_period_start}..{billing_period_end} is empty", field="billing_period_end"
        )
    if effective_end < effective_start:
        raise InvalidPeriodError(
            f"Effective end {effective_end} is before effective start {effective_start}", field="effective_end"
        )
    hit = overlap(billing_period_start, billing_period_end, effective_start, effective_end)
    if hit is None:
        return 0
    return (hit[1] - hit[0]).days + 1


def prorate(
    full_amount: Decimal,
    billing_period_start: date,
    billing_period_end: date,
    effective_start: date,
    effective_end: date,
    method: ProrationMethod = ProrationMethod.ACTUAL_DAYS_IN_MONTH,
) -> Decimal:
    """``full_amount * overlap_days / divisor``, rounded half away from zero."""
    if full_amount < 0:
        raise ValidationError(f"Amount to prorate must not be negative, got {full_amount}", field="full_amount")
    days = overlap_days(billing_period_start, billing_period_end, effective_start, effective_end)
    if days == 0:
        return ZERO
    divisor = proration_divisor(billing_period_start, method)
    amount = round_money(Decimal(full_amount) * days / divisor)
    if amount == ZERO and full_amount > 0:
        # A covered day is never billed at zero.
        return CENT
    return amount
