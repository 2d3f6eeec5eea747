from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal

from pydantic import BaseModel

from leasebill.constants import format_month
from leasebill.models import ZERO, round_money
from leasebill.models.billing_setting import ProrationMethod
from leasebill.models.lease import Lease, LeaseTerm
from leasebill.models.period import BillingPeriod, overlap
from leasebill.repositories.base import LeaseRepository
from leasebill.services.proration import prorate

logger = logging.getLogger(__name__)


class RentLineItem(BaseModel):
    lease_term_id: int
    description: str
    period_start: date
    period_end: date
    full_amount: Decimal
    amount: Decimal
    is_prorated: bool


class RentCalculation(BaseModel):
    line_items: list[RentLineItem] = []

    @property
    def total_amount(self) -> Decimal:
        return round_money(sum((item.amount for item in self.line_items), ZERO))


def term_segments(terms: list[LeaseTerm]) -> list[tuple[LeaseTerm, date, date | None]]:
    """Each term with the range it is actually in force.

    A term ends the day before the next one starts, or at its own
    ``effective_to`` if that comes first.
    """
    ordered = sorted(terms, key=lambda t: t.effective_from)
    segments: list[tuple[LeaseTerm, date, date | None]] = []
    for i, term in enumerate(ordered):
        end = term.effective_to
        if i + 1 < len(ordered):
            superseded = ordered[i + 1].effective_from - timedelta(days=1)
            end = superseded if end is None else min(end, superseded)
        if end is not None and end < term.effective_from:
            continue
        segments.append((term, term.effective_from, end))
    return segments


def _describe(period: BillingPeriod, start: date, end: date) -> str:
    if start == period.start and end == period.end:
        return f"Rent {format_month(period.start.year, period.start.month)}"
    return f"Rent {start.isoformat()} to {end.isoformat()}"


class RentCalculationService:
    def __init__(self, lease_repo: LeaseRepository) -> None:
        self.lease_repo = lease_repo

    def calculate_rent(
        self,
        lease: Lease,
        period: BillingPeriod,
        method: ProrationMethod = ProrationMethod.ACTUAL_DAYS_IN_MONTH,
    ) -> RentCalculation:
        """One prorated line per rent term in force during the lease's share of ``period``."""
        period.validate_bounds()
        tenancy = overlap(period.start, period.end, lease.start_date, lease.end_date)
        if tenancy is None:
            logger.debug("Lease %s has no tenancy in %s", lease.id, period.label)
            return RentCalculation()

        terms = self.lease_repo.get_lease_terms(lease.id, period)
        return self.calculate_from_terms(terms, period, tenancy, method)

    @staticmethod
    def calculate_from_terms(
        terms: list[LeaseTerm],
        period: BillingPeriod,
        tenancy: tuple[date, date],
        method: ProrationMethod,
    ) -> RentCalculation:
        items: list[RentLineItem] = []
        for term, term_start, term_end in term_segments(terms):
            hit = overlap(tenancy[0], tenancy[1], term_start, term_end)
            if hit is None:
                continue
            start, end = hit
            amount = prorate(term.monthly_rent, period.start, period.end, start, end, method)
            items.append(
                RentLineItem(
                    lease_term_id=term.id,
                    description=_describe(period, start, end),
                    period_start=start,
                    period_end=end,
                    full_amount=term.monthly_rent,
                    amount=amount,
                    is_prorated=start != period.start or end != period.end,
                )
            )
        return RentCalculation(line_items=items)
