from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal

from leasebill.exceptions import NotFoundError, ValidationError
from leasebill.models import ZERO, round_money
from leasebill.models.audit_log import AuditEventType
from leasebill.models.context import OperationContext
from leasebill.models.credit_note import (
    CreditNote,
    CreditNoteLine,
    CreditNoteLineRequest,
    CreditNoteReason,
    CreditNoteStatus,
)
from leasebill.models.invoice import Invoice, InvoiceStatus
from leasebill.repositories.base import CreditNoteRepository, InvoiceRepository
from leasebill.services.audit_service import AuditService
from leasebill.services.numbering import CreditNoteNumberGenerator
from leasebill.services.serializers import serialize_credit_note, serialize_invoice

logger = logging.getLogger(__name__)

CREDITABLE_STATUSES = frozenset(
    {
        InvoiceStatus.ISSUED,
        InvoiceStatus.PARTIALLY_PAID,
        InvoiceStatus.PAID,
        InvoiceStatus.OVERDUE,
    }
)


class CreditNoteService:
    def __init__(
        self,
        invoice_repo: InvoiceRepository,
        credit_note_repo: CreditNoteRepository,
        number_generator: CreditNoteNumberGenerator,
        audit_service: AuditService | None = None,
    ) -> None:
        self.invoice_repo = invoice_repo
        self.credit_note_repo = credit_note_repo
        self.number_generator = number_generator
        self.audit_service = audit_service

    def issue_credit_note(
        self,
        invoice_id: int,
        lines: list[CreditNoteLineRequest],
        reason: CreditNoteReason,
        ctx: OperationContext,
        notes: str = "",
    ) -> CreditNote:
        """Issue a correction against an issued invoice.

        Every requested line is checked against what remains un-credited on
        the matching invoice line before anything is written, so a rejected
        request leaves both the invoice and the credit note ledger untouched.
        The original invoice lines are never modified; only the invoice's
        ``credited_amount`` grows, in the same transaction as the note insert.
        """
        invoice = self.invoice_repo.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        note_lines = self.build_lines(invoice, lines)
        credited = sum((-line.total_amount for line in note_lines), ZERO)

        now = ctx.now()
        number = self.number_generator.generate(invoice.org_id, now.year)

        before = serialize_invoice(invoice)
        updated = invoice.model_copy(
            update={"credited_amount": round_money(invoice.credited_amount + credited)},
            deep=True,
        )
        note = self.credit_note_repo.create(
            CreditNote(
                org_id=invoice.org_id,
                invoice_id=invoice.id,
                credit_note_number=number,
                reason=reason,
                status=CreditNoteStatus.ISSUED,
                notes=notes,
                total_amount=round_money(-credited),
                issued_at=now,
                lines=note_lines,
            ),
            ctx,
            invoice=updated,
        )
        saved_invoice = self.invoice_repo.get_by_id(invoice.id)
        logger.info(
            "Credit note %s issued against invoice %s: %s (%s)",
            note.credit_note_number,
            invoice.invoice_number,
            note.total_amount,
            reason.value,
        )
        if self.audit_service is not None:
            self.audit_service.safe_log(
                AuditEventType.CREDIT_NOTE_ISSUE,
                ctx=ctx,
                entity_type="credit_note",
                entity_id=note.id,
                entity_uuid=note.uuid,
                new_state=serialize_credit_note(note),
                metadata={
                    "invoice_id": str(invoice.id),
                    "invoice_before": before,
                    "invoice_after": serialize_invoice(saved_invoice),
                },
            )
        return note

    def build_lines(self, invoice: Invoice, requests: list[CreditNoteLineRequest]) -> list[CreditNoteLine]:
        if invoice.status not in CREDITABLE_STATUSES:
            raise ValidationError(
                f"Cannot credit invoice {invoice.invoice_number} in status '{invoice.status.value}'",
                field="invoice_id",
            )
        if not requests:
            raise ValidationError("A credit note needs at least one line", field="lines")

        already = self.credit_note_repo.credited_by_line(invoice.id)
        requested: dict[int, Decimal] = defaultdict(lambda: ZERO)
        for request in requests:
            amount = round_money(request.amount)
            if amount <= 0:
                raise ValidationError(
                    f"Credit amount must be positive, got {amount}",
                    field="amount",
                )
            if invoice.get_line(request.invoice_line_id) is None:
                raise ValidationError(
                    f"Line {request.invoice_line_id} does not belong to invoice {invoice.invoice_number}",
                    field="invoice_line_id",
                )
            requested[request.invoice_line_id] += amount

        for line_id, amount in requested.items():
            line = invoice.get_line(line_id)
            remaining = round_money(line.total_amount - already.get(line_id, ZERO))
            if amount > remaining:
                raise ValidationError(
                    f"Credit {amount} exceeds remaining {remaining} on line {line.line_number} "
                    f"of invoice {invoice.invoice_number}",
                    field="amount",
                )

        note_lines = []
        for number, request in enumerate(requests, start=1):
            line = invoice.get_line(request.invoice_line_id)
            total = round_money(request.amount)
            tax = ZERO
            if line.tax_amount and line.total_amount:
                tax = round_money(total * line.tax_amount / line.total_amount)
            note_lines.append(
                CreditNoteLine(
                    invoice_line_id=line.id,
                    line_number=number,
                    description=f"Credit: {line.description}",
                    amount=-(total - tax),
                    tax_amount=-tax,
                    total_amount=-total,
                    notes=request.notes,
                )
            )
        return note_lines

    def get_credit_note(self, note_id: int) -> CreditNote:
        note = self.credit_note_repo.get_by_id(note_id)
        if note is None:
            raise NotFoundError("CreditNote", note_id)
        return note

    def list_for_invoice(self, invoice_id: int) -> list[CreditNote]:
        return self.credit_note_repo.list_by_invoice(invoice_id)
