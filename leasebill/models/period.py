from __future__ import annotations

import calendar
from datetime import date, timedelta

from pydantic import BaseModel, ConfigDict

from leasebill.constants import MAX_BILLING_DAY
from leasebill.exceptions import InvalidPeriodError


def days_in_month(day: date) -> int:
    return calendar.monthrange(day.year, day.month)[1]


def overlap(
    start_a: date, end_a: date | None, start_b: date, end_b: date | None
) -> tuple[date, date] | None:
    """Intersection of two inclusive date ranges; ``None`` end means open-ended."""
    start = max(start_a, start_b)
    ends = [d for d in (end_a, end_b) if d is not None]
    if not ends:
        raise InvalidPeriodError("At least one range must be bounded")
    end = min(ends)
    if end < start:
        return None
    return start, end


class BillingPeriod(BaseModel):
    """Inclusive calendar span an invoice covers."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @classmethod
    def of(cls, start: date, end: date) -> BillingPeriod:
        if end < start:
            raise InvalidPeriodError(f"Billing period end {end} is before start {start}", field="end")
        return cls(start=start, end=end)

    @classmethod
    def for_month(cls, year: int, month: int, billing_day: int = 1) -> BillingPeriod:
        """Period starting on ``billing_day`` of the month and ending the day before the next one."""
        if not 1 <= month <= 12:
            raise InvalidPeriodError(f"Invalid month {month}", field="month")
        if not 1 <= billing_day <= MAX_BILLING_DAY:
            raise InvalidPeriodError(
                f"Billing day must be between 1 and {MAX_BILLING_DAY}, got {billing_day}", field="billing_day"
            )
        start = date(year, month, billing_day)
        next_year, next_month = (year + 1, 1) if month == 12 else (year, month + 1)
        end = date(next_year, next_month, billing_day) - timedelta(days=1)
        return cls(start=start, end=end)

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def label(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"

    def validate_bounds(self) -> None:
        if self.end < self.start:
            raise InvalidPeriodError(f"Billing period {self.label} is empty", field="period")

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def overlap_days(self, start: date, end: date | None) -> int:
        hit = overlap(self.start, self.end, start, end)
        if hit is None:
            return 0
        return (hit[1] - hit[0]).days + 1
