from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from leasebill.exceptions import DataError
from leasebill.models.period import BillingPeriod


class UtilityType(str, Enum):
    ELECTRICITY = "electricity"
    WATER = "water"
    GAS = "gas"
    INTERNET = "internet"
    OTHER = "other"


class RateSlab(BaseModel):
    """Per-unit rate for consumption within ``[from_units, to_units)``."""

    id: int | None = None
    slab_order: int = 0
    from_units: Decimal = Field(ge=0)
    to_units: Decimal | None = None  # None = open-ended final tier
    rate_per_unit: Decimal = Field(ge=0)
    fixed_charge: Decimal | None = Field(default=None, ge=0)


class UtilityRatePlan(BaseModel):
    id: int | None = None
    uuid: str = ""
    org_id: int
    utility_type: UtilityType
    name: str
    effective_from: date
    effective_to: date | None = None
    is_active: bool = True
    slabs: list[RateSlab] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def ordered_slabs(self) -> list[RateSlab]:
        """Slabs sorted by lower bound, rejected if they overlap or leave a tier unbounded mid-plan."""
        if not self.slabs:
            raise DataError(f"Rate plan '{self.name}' has no slabs", {"rate_plan_id": self.id})
        slabs = sorted(self.slabs, key=lambda s: (s.from_units, s.slab_order))
        for i, slab in enumerate(slabs):
            is_last = i == len(slabs) - 1
            if slab.to_units is None:
                if not is_last:
                    raise DataError(
                        f"Rate plan '{self.name}': only the last slab may be open-ended",
                        {"rate_plan_id": self.id, "slab_order": slab.slab_order},
                    )
                continue
            if slab.to_units <= slab.from_units:
                raise DataError(
                    f"Rate plan '{self.name}': slab {slab.from_units}-{slab.to_units} is empty",
                    {"rate_plan_id": self.id, "slab_order": slab.slab_order},
                )
            if not is_last and slabs[i + 1].from_units < slab.to_units:
                raise DataError(
                    f"Rate plan '{self.name}': slabs {slab.from_units}-{slab.to_units} "
                    f"and {slabs[i + 1].from_units}- overlap",
                    {"rate_plan_id": self.id, "slab_order": slab.slab_order},
                )
        return slabs


class UtilityStatement(BaseModel):
    """One reading or direct bill for a lease, utility and period.

    ``version`` numbers the corrections of the same lease/utility/period;
    ``row_version`` is the optimistic-concurrency token of this row.
    """

    id: int | None = None
    uuid: str = ""
    lease_id: int
    utility_type: UtilityType
    period_start: date
    period_end: date
    is_meter_based: bool = False
    previous_reading: Decimal | None = None
    current_reading: Decimal | None = None
    meter_rollover: bool = False
    meter_capacity: Decimal | None = None
    direct_bill_amount: Decimal | None = None
    rate_plan_id: int | None = None
    units_consumed: Decimal | None = None
    total_amount: Decimal = Decimal("0.00")
    version: int = 1
    is_final: bool = False
    notes: str = ""
    row_version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = ""
    updated_by: str = ""

    @property
    def period(self) -> BillingPeriod:
        return BillingPeriod(start=self.period_start, end=self.period_end)
