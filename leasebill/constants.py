from zoneinfo import ZoneInfo

from leasebill.settings import settings

TZ = ZoneInfo(settings.timezone)

MONTH_NAMES = {
    1: "Jan",
    2: "Feb",
    3: "Mar",
    4: "Apr",
    5: "May",
    6: "Jun",
    7: "Jul",
    8: "Aug",
    9: "Sep",
    10: "Oct",
    11: "Nov",
    12: "Dec",
}

# Document kinds sharing the numbering store.
SEQUENCE_INVOICE = "invoice"
SEQUENCE_CREDIT_NOTE = "credit_note"

MAX_BILLING_DAY = 28


def format_month(year: int, month: int) -> str:
    return f"{MONTH_NAMES.get(month, str(month))} {year}"
