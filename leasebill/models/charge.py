from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

RENT_CHARGE_TYPE = "RENT"
UTILITY_CHARGE_PREFIX = "UTIL"


class ChargeFrequency(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class RecurringCharge(BaseModel):
    id: int | None = None
    uuid: str = ""
    lease_id: int
    charge_type: str  # code, e.g. 'MAINT', 'PARKING'
    description: str = ""
    amount: Decimal = Field(ge=0)
    frequency: ChargeFrequency = ChargeFrequency.MONTHLY
    start_date: date
    end_date: date | None = None
    is_active: bool = True
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0)  # percent
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = ""
    updated_by: str = ""

    @property
    def label(self) -> str:
        return self.description or self.charge_type
