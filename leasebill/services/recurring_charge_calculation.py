from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from pydantic import BaseModel

from leasebill.models import ZERO, round_money
from leasebill.models.billing_setting import ProrationMethod
from leasebill.models.charge import ChargeFrequency, RecurringCharge
from leasebill.models.lease import Lease
from leasebill.models.period import BillingPeriod, days_in_month, overlap
from leasebill.repositories.base import RecurringChargeRepository
from leasebill.services.proration import prorate

logger = logging.getLogger(__name__)


class RecurringChargeLineItem(BaseModel):
    charge_id: int
    charge_type: str
    description: str
    frequency: ChargeFrequency
    period_start: date
    period_end: date
    full_amount: Decimal
    amount: Decimal
    tax_rate: Decimal = Decimal("0")
    tax_amount: Decimal = ZERO
    is_prorated: bool


class RecurringChargeCalculation(BaseModel):
    line_items: list[RecurringChargeLineItem] = []

    @property
    def total_amount(self) -> Decimal:
        return round_money(sum((item.amount for item in self.line_items), ZERO))


def compute_tax(amount: Decimal, tax_rate: Decimal) -> Decimal:
    if not tax_rate:
        return ZERO
    return round_money(amount * tax_rate / 100)


def anniversary_in(charge: RecurringCharge, period: BillingPeriod) -> date | None:
    """The charge's anniversary falling inside ``period``, if any.

    A start on the 29th-31st falls back to the last day of shorter months.
    """
    start = charge.start_date
    for year in range(period.start.year, period.end.year + 1):
        last_day = days_in_month(date(year, start.month, 1))
        anniversary = date(year, start.month, min(start.day, last_day))
        if not period.contains(anniversary) or anniversary < start:
            continue
        if charge.end_date is not None and anniversary > charge.end_date:
            continue
        return anniversary
    return None


class RecurringChargeCalculationService:
    def __init__(self, charge_repo: RecurringChargeRepository) -> None:
        self.charge_repo = charge_repo

    def calculate_charges(
        self,
        lease: Lease,
        period: BillingPeriod,
        method: ProrationMethod = ProrationMethod.ACTUAL_DAYS_IN_MONTH,
    ) -> RecurringChargeCalculation:
        period.validate_bounds()
        charges = self.charge_repo.get_recurring_charges(lease.id, period)
        return self.calculate_from_charges(charges, period, method)

    @staticmethod
    def calculate_from_charges(
        charges: list[RecurringCharge],
        period: BillingPeriod,
        method: ProrationMethod,
    ) -> RecurringChargeCalculation:
        items: list[RecurringChargeLineItem] = []
        for charge in charges:
            if not charge.is_active:
                continue
            hit = overlap(period.start, period.end, charge.start_date, charge.end_date)
            if hit is None:
                continue
            start, end = hit
            is_prorated = start != period.start or end != period.end

            if charge.frequency == ChargeFrequency.ANNUAL and anniversary_in(charge, period) is None:
                logger.debug("Annual charge %s not due in %s", charge.id, period.label)
                continue

            if charge.frequency == ChargeFrequency.ANNUAL and not is_prorated:
                amount = round_money(charge.amount)
            else:
                amount = prorate(charge.amount, period.start, period.end, start, end, method)

            items.append(
                RecurringChargeLineItem(
                    charge_id=charge.id,
                    charge_type=charge.charge_type,
                    description=charge.label,
                    frequency=charge.frequency,
                    period_start=start,
                    period_end=end,
                    full_amount=charge.amount,
                    amount=amount,
                    tax_rate=charge.tax_rate,
                    tax_amount=compute_tax(amount, charge.tax_rate),
                    is_prorated=is_prorated,
                )
            )
        return RecurringChargeCalculation(line_items=items)
