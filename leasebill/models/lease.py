from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class LeaseStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ENDED = "ended"
    TERMINATED = "terminated"


class LeaseTerm(BaseModel):
    """Rent in force from ``effective_from``; superseded by the next term."""

    id: int | None = None
    lease_id: int | None = None
    effective_from: date
    effective_to: date | None = None
    monthly_rent: Decimal = Field(ge=0)
    notes: str = ""
    created_at: datetime | None = None


class Lease(BaseModel):
    id: int | None = None
    uuid: str = ""
    org_id: int
    lease_number: str = ""
    unit_label: str = ""
    tenant_name: str = ""
    status: LeaseStatus = LeaseStatus.ACTIVE
    start_date: date
    end_date: date | None = None
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = ""
    updated_by: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == LeaseStatus.ACTIVE

    @property
    def label(self) -> str:
        return self.lease_number or f"lease {self.id}"
