from datetime import date

import pytest

from leasebill.exceptions import InvalidPeriodError, ValidationError
from leasebill.models.period import BillingPeriod, days_in_month, overlap


class TestDaysInMonth:
    def test_february_non_leap(self):
        assert days_in_month(date(2025, 2, 10)) == 28

    def test_february_leap(self):
        assert days_in_month(date(2024, 2, 1)) == 29

    def test_thirty_and_thirty_one(self):
        assert days_in_month(date(2025, 4, 1)) == 30
        assert days_in_month(date(2025, 1, 31)) == 31


class TestOverlap:
    def test_partial(self):
        assert overlap(date(2025, 4, 1), date(2025, 4, 30), date(2025, 4, 15), None) == (
            date(2025, 4, 15),
            date(2025, 4, 30),
        )

    def test_disjoint(self):
        assert overlap(date(2025, 4, 1), date(2025, 4, 30), date(2025, 5, 1), date(2025, 5, 31)) is None

    def test_single_day(self):
        assert overlap(date(2025, 4, 1), date(2025, 4, 30), date(2025, 3, 1), date(2025, 4, 1)) == (
            date(2025, 4, 1),
            date(2025, 4, 1),
        )

    def test_both_open_rejected(self):
        with pytest.raises(InvalidPeriodError):
            overlap(date(2025, 4, 1), None, date(2025, 4, 1), None)


class TestBillingPeriod:
    def test_for_month(self):
        period = BillingPeriod.for_month(2025, 4)
        assert period.start == date(2025, 4, 1)
        assert period.end == date(2025, 4, 30)
        assert period.days == 30

    def test_for_month_december(self):
        period = BillingPeriod.for_month(2025, 12)
        assert period.end == date(2025, 12, 31)

    def test_for_month_with_billing_day(self):
        period = BillingPeriod.for_month(2025, 1, billing_day=15)
        assert period.start == date(2025, 1, 15)
        assert period.end == date(2025, 2, 14)

    def test_for_month_rejects_day_29(self):
        with pytest.raises(InvalidPeriodError):
            BillingPeriod.for_month(2025, 1, billing_day=29)

    def test_for_month_rejects_bad_month(self):
        with pytest.raises(InvalidPeriodError):
            BillingPeriod.for_month(2025, 13)

    def test_of_rejects_inverted(self):
        with pytest.raises(InvalidPeriodError) as exc_info:
            BillingPeriod.of(date(2025, 4, 30), date(2025, 4, 1))
        assert isinstance(exc_info.value, ValidationError)

    def test_validate_bounds(self):
        period = BillingPeriod(start=date(2025, 4, 30), end=date(2025, 4, 1))
        with pytest.raises(InvalidPeriodError):
            period.validate_bounds()

    def test_contains(self):
        period = BillingPeriod.for_month(2025, 4)
        assert period.contains(date(2025, 4, 1))
        assert period.contains(date(2025, 4, 30))
        assert not period.contains(date(2025, 5, 1))

    def test_overlap_days(self):
        period = BillingPeriod.for_month(2025, 4)
        assert period.overlap_days(date(2025, 4, 15), None) == 16
        assert period.overlap_days(date(2025, 6, 1), None) == 0

    def test_label(self):
        assert BillingPeriod.for_month(2025, 4).label == "2025-04-01..2025-04-30"

    def test_frozen(self):
        period = BillingPeriod.for_month(2025, 4)
        with pytest.raises(Exception):
            period.start = date(2025, 5, 1)
