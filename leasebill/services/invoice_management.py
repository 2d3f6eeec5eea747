from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from leasebill.exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from leasebill.models import ZERO, round_money
from leasebill.models.audit_log import AuditEventType
from leasebill.models.context import OperationContext
from leasebill.models.invoice import Invoice
from leasebill.repositories.base import InvoiceRepository
from leasebill.services.audit_service import AuditService
from leasebill.services.invoice_lifecycle import InvoiceEvent, transition
from leasebill.services.serializers import serialize_invoice

logger = logging.getLogger(__name__)


class InvoiceManagementService:
    """Owns every status change of an invoice after generation.

    Each operation reads the invoice, resolves the next status through the
    transition table and writes it back with a version check, so two callers
    racing on the same invoice cannot both succeed.
    """

    def __init__(self, invoice_repo: InvoiceRepository, audit_service: AuditService | None = None) -> None:
        self.invoice_repo = invoice_repo
        self.audit_service = audit_service

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.invoice_repo.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    def _load(self, invoice_id: int, expected_version: int | None) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if expected_version is not None and invoice.version != expected_version:
            raise ConcurrencyConflict(
                f"Invoice {invoice_id} is at version {invoice.version}, expected {expected_version}",
                {"invoice_id": invoice_id, "expected_version": expected_version, "version": invoice.version},
            )
        return invoice

    def _save(self, before: Invoice, after: Invoice, event_type: str, ctx: OperationContext, **metadata) -> Invoice:
        saved = self.invoice_repo.update(after, ctx)
        if self.audit_service is not None:
            self.audit_service.safe_log(
                event_type,
                ctx=ctx,
                entity_type="invoice",
                entity_id=saved.id,
                entity_uuid=saved.uuid,
                previous_state=serialize_invoice(before),
                new_state=serialize_invoice(saved),
                metadata={k: str(v) for k, v in metadata.items()},
            )
        return saved

    def issue(self, invoice_id: int, ctx: OperationContext, expected_version: int | None = None) -> Invoice:
        invoice = self._load(invoice_id, expected_version)
        status = transition(invoice.status, InvoiceEvent.ISSUE)
        if not invoice.lines:
            raise ValidationError(f"Invoice {invoice.invoice_number} has no lines", field="lines")
        if invoice.total_amount <= 0:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} total must be positive, got {invoice.total_amount}",
                field="total_amount",
            )

        now = ctx.now()
        updated = invoice.model_copy(update={"status": status, "issued_at": now}, deep=True)
        if updated.invoice_date is None:
            updated.invoice_date = now.date()
        if updated.due_date is None:
            updated.due_date = updated.invoice_date
        saved = self._save(invoice, updated, AuditEventType.INVOICE_ISSUE, ctx)
        logger.info("Invoice %s issued: total=%s", saved.invoice_number, saved.total_amount)
        return saved

    def void(
        self,
        invoice_id: int,
        reason: str,
        ctx: OperationContext,
        expected_version: int | None = None,
    ) -> Invoice:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to void an invoice", field="reason")
        invoice = self._load(invoice_id, expected_version)
        status = transition(invoice.status, InvoiceEvent.VOID)
        updated = invoice.model_copy(
            update={"status": status, "voided_at": ctx.now(), "void_reason": reason},
            deep=True,
        )
        saved = self._save(invoice, updated, AuditEventType.INVOICE_VOID, ctx, reason=reason)
        logger.info("Invoice %s voided: %s", saved.invoice_number, reason)
        return saved

    def mark_overdue(self, invoice_id: int, ctx: OperationContext, as_of: date | None = None) -> Invoice:
        """Called back by the overdue detection job once the due date has passed unpaid."""
        invoice = self.get_invoice(invoice_id)
        status = transition(invoice.status, InvoiceEvent.MARK_OVERDUE)
        as_of = as_of or ctx.now().date()
        if invoice.due_date is None or invoice.due_date >= as_of:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} is not past due on {as_of.isoformat()}",
                field="due_date",
            )
        if invoice.effective_balance <= 0:
            raise ValidationError(f"Invoice {invoice.invoice_number} has no balance outstanding", field="balance")
        updated = invoice.model_copy(update={"status": status}, deep=True)
        saved = self._save(invoice, updated, AuditEventType.INVOICE_MARK_OVERDUE, ctx, as_of=as_of)
        logger.info("Invoice %s marked overdue (due %s)", saved.invoice_number, saved.due_date)
        return saved

    def record_payment(self, invoice_id: int, amount: Decimal, ctx: OperationContext) -> Invoice:
        """Apply a settled payment reported by the payments collaborator."""
        amount = round_money(amount)
        if amount <= 0:
            raise ValidationError(f"Payment amount must be positive, got {amount}", field="amount")
        invoice = self.get_invoice(invoice_id)
        if amount > invoice.effective_balance:
            raise ValidationError(
                f"Payment {amount} exceeds outstanding balance {invoice.effective_balance} "
                f"on invoice {invoice.invoice_number}",
                field="amount",
            )
        paid = round_money(invoice.paid_amount + amount)
        remaining = invoice.total_amount - paid - invoice.credited_amount
        event = InvoiceEvent.PAY_FULL if remaining <= 0 else InvoiceEvent.PAY_PARTIAL
        status = transition(invoice.status, event)
        updated = invoice.model_copy(update={"status": status, "paid_amount": paid}, deep=True)
        saved = self._save(invoice, updated, AuditEventType.INVOICE_PAYMENT, ctx, amount=amount)
        logger.info(
            "Payment %s recorded on invoice %s: status=%s balance=%s",
            amount,
            saved.invoice_number,
            saved.status.value,
            saved.balance_amount,
        )
        return saved

    def reverse_payment(self, invoice_id: int, amount: Decimal, ctx: OperationContext) -> Invoice:
        """Undo part or all of a payment, e.g. a bounced transfer."""
        amount = round_money(amount)
        if amount <= 0:
            raise ValidationError(f"Reversal amount must be positive, got {amount}", field="amount")
        invoice = self.get_invoice(invoice_id)
        if amount > invoice.paid_amount:
            raise ValidationError(
                f"Reversal {amount} exceeds paid amount {invoice.paid_amount} on invoice {invoice.invoice_number}",
                field="amount",
            )
        paid = round_money(invoice.paid_amount - amount)
        event = InvoiceEvent.REVERSE_FULL if paid == ZERO else InvoiceEvent.REVERSE_PARTIAL
        status = transition(invoice.status, event)
        updated = invoice.model_copy(update={"status": status, "paid_amount": paid}, deep=True)
        saved = self._save(invoice, updated, AuditEventType.INVOICE_PAYMENT_REVERSE, ctx, amount=amount)
        logger.info("Payment reversal %s on invoice %s: status=%s", amount, saved.invoice_number, saved.status.value)
        return saved

    def list_past_due(self, as_of: date, org_id: int | None = None) -> list[Invoice]:
        return self.invoice_repo.list_past_due(as_of, org_id)
