from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel

from leasebill.models import ZERO


class CreditNoteReason(str, Enum):
    REFUND = "refund"
    DISCOUNT = "discount"
    ADJUSTMENT = "adjustment"
    CORRECTION = "correction"


class CreditNoteStatus(str, Enum):
    ISSUED = "issued"


class CreditNoteLineRequest(BaseModel):
    """One invoice line to credit and by how much (tax-exclusive share is derived)."""

    invoice_line_id: int
    amount: Decimal
    notes: str = ""


class CreditNoteLine(BaseModel):
    id: int | None = None
    credit_note_id: int | None = None
    invoice_line_id: int
    line_number: int = 0
    description: str = ""
    # Signed negative: a credit note reduces what the tenant owes.
    amount: Decimal
    tax_amount: Decimal = ZERO
    total_amount: Decimal
    notes: str = ""


class CreditNote(BaseModel):
    id: int | None = None
    uuid: str = ""
    org_id: int
    invoice_id: int
    credit_note_number: str = ""
    reason: CreditNoteReason
    status: CreditNoteStatus = CreditNoteStatus.ISSUED
    notes: str = ""
    total_amount: Decimal = ZERO
    issued_at: datetime | None = None
    lines: list[CreditNoteLine] = []
    created_at: datetime | None = None
    created_by: str = ""
