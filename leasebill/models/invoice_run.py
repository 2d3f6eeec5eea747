from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel


class InvoiceRunStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"


class InvoiceRunItem(BaseModel):
    id: int | None = None
    run_id: int | None = None
    lease_id: int
    invoice_id: int | None = None
    is_success: bool = False
    error_message: str | None = None
    processed_at: datetime | None = None


class InvoiceRun(BaseModel):
    id: int | None = None
    uuid: str = ""
    org_id: int
    run_number: str = ""
    period_start: date
    period_end: date
    status: InvoiceRunStatus = InvoiceRunStatus.PENDING
    total_leases: int = 0
    success_count: int = 0
    failure_count: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    items: list[InvoiceRunItem] = []
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = ""
    updated_by: str = ""

    @property
    def processed_count(self) -> int:
        return self.success_count + self.failure_count

    @property
    def failed_items(self) -> list[InvoiceRunItem]:
        return [item for item in self.items if not item.is_success]
