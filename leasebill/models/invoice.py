from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel

from leasebill.exceptions import InvoiceImmutableError
from leasebill.models import ZERO, round_money
from leasebill.models.period import BillingPeriod


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    VOIDED = "voided"


class LineSource(str, Enum):
    LEASE_TERM = "lease_term"
    RECURRING_CHARGE = "recurring_charge"
    UTILITY_STATEMENT = "utility_statement"


class InvoiceLine(BaseModel):
    id: int | None = None
    invoice_id: int | None = None
    line_number: int = 0
    charge_type: str
    description: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal
    amount: Decimal
    tax_rate: Decimal = Decimal("0")  # percent
    tax_amount: Decimal = ZERO
    total_amount: Decimal
    source: LineSource
    source_ref_id: int
    period_start: date | None = None
    period_end: date | None = None


class Invoice(BaseModel):
    id: int | None = None
    uuid: str = ""
    org_id: int
    lease_id: int
    invoice_number: str = ""
    status: InvoiceStatus = InvoiceStatus.DRAFT
    invoice_date: date | None = None
    due_date: date | None = None
    period_start: date
    period_end: date
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    credited_amount: Decimal = ZERO
    payment_instructions: str = ""
    notes: str = ""
    issued_at: datetime | None = None
    voided_at: datetime | None = None
    void_reason: str = ""
    lines: list[InvoiceLine] = []
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = ""
    updated_by: str = ""

    @property
    def period(self) -> BillingPeriod:
        return BillingPeriod(start=self.period_start, end=self.period_end)

    @property
    def balance_amount(self) -> Decimal:
        return round_money(self.total_amount - self.paid_amount)

    @property
    def effective_balance(self) -> Decimal:
        """What the tenant still owes once issued credit notes are applied."""
        return round_money(self.balance_amount - self.credited_amount)

    @property
    def is_editable(self) -> bool:
        return self.status == InvoiceStatus.DRAFT

    def replace_lines(self, lines: list[InvoiceLine]) -> None:
        """Swap the whole line set and renumber it. Draft only."""
        if not self.is_editable:
            raise InvoiceImmutableError(self.status)
        self.lines = [line.model_copy(update={"line_number": i}) for i, line in enumerate(lines, start=1)]
        self.recalculate_totals()

    def recalculate_totals(self) -> None:
        self.subtotal = round_money(sum((line.amount for line in self.lines), ZERO))
        self.tax_amount = round_money(sum((line.tax_amount for line in self.lines), ZERO))
        self.total_amount = round_money(sum((line.total_amount for line in self.lines), ZERO))

    def get_line(self, line_id: int) -> InvoiceLine | None:
        for line in self.lines:
            if line.id == line_id:
                return line
        return None
