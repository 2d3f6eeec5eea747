from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from leasebill.constants import MAX_BILLING_DAY


class ProrationMethod(str, Enum):
    ACTUAL_DAYS_IN_MONTH = "actual_days_in_month"
    THIRTY_DAY_MONTH = "thirty_day_month"


class BillingSetting(BaseModel):
    id: int | None = None
    lease_id: int
    # Capped at 28 so every month, February included, has the day.
    billing_day: int = Field(default=1, ge=1, le=MAX_BILLING_DAY)
    payment_term_days: int | None = Field(default=None, ge=0)
    proration_method: ProrationMethod = ProrationMethod.ACTUAL_DAYS_IN_MONTH
    auto_generate: bool = True
    is_active: bool = True
    invoice_prefix: str = ""
    payment_instructions: str = ""
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = ""
    updated_by: str = ""
