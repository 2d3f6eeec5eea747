from leasebill.constants import MAX_BILLING_DAY, MONTH_NAMES, format_month


class TestMonthNames:
    def test_all_twelve_months(self):
        assert len(MONTH_NAMES) == 12

    def test_first_and_last(self):
        assert MONTH_NAMES[1] == "Jan"
        assert MONTH_NAMES[12] == "Dec"


class TestFormatMonth:
    def test_standard(self):
        assert format_month(2025, 4) == "Apr 2025"

    def test_unknown_month(self):
        assert format_month(2025, 13) == "13 2025"


def test_billing_day_cap():
    assert MAX_BILLING_DAY == 28
