"""Serializers that convert billing aggregates to JSON-safe dicts.

These are the shapes handed to callers above the billing core and the
snapshots stored in audit log state fields. Decimals become strings with two
places, dates and datetimes become ISO 8601 strings.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from leasebill.models.credit_note import CreditNote
from leasebill.models.invoice import Invoice, InvoiceLine
from leasebill.models.invoice_run import InvoiceRun, InvoiceRunItem
from leasebill.models.utility import UtilityStatement


def _dt(val: date | datetime | None) -> str | None:
    """Convert date/datetime to ISO string, or None."""
    if val is None:
        return None
    return val.isoformat()


def _money(val: Decimal | None) -> str | None:
    if val is None:
        return None
    return f"{val:.2f}"


def _num(val: Decimal | None) -> str | None:
    if val is None:
        return None
    return str(val)


def _enum(val) -> str:
    return val.value if hasattr(val, "value") else str(val)


def serialize_invoice_line(line: InvoiceLine) -> dict:
    return {
        "id": line.id,
        "line_number": line.line_number,
        "charge_type": line.charge_type,
        "description": line.description,
        "quantity": _num(line.quantity),
        "unit_price": _num(line.unit_price),
        "amount": _money(line.amount),
        "tax_rate": _num(line.tax_rate),
        "tax_amount": _money(line.tax_amount),
        "total_amount": _money(line.total_amount),
        "source": _enum(line.source),
        "source_ref_id": line.source_ref_id,
        "period_start": _dt(line.period_start),
        "period_end": _dt(line.period_end),
    }


def serialize_invoice(invoice: Invoice) -> dict:
    """Serialize an Invoice (with lines and derived balances)."""
    return {
        "id": invoice.id,
        "uuid": invoice.uuid,
        "org_id": invoice.org_id,
        "lease_id": invoice.lease_id,
        "invoice_number": invoice.invoice_number,
        "status": _enum(invoice.status),
        "invoice_date": _dt(invoice.invoice_date),
        "due_date": _dt(invoice.due_date),
        "period_start": _dt(invoice.period_start),
        "period_end": _dt(invoice.period_end),
        "subtotal": _money(invoice.subtotal),
        "tax_amount": _money(invoice.tax_amount),
        "total_amount": _money(invoice.total_amount),
        "paid_amount": _money(invoice.paid_amount),
        "balance_amount": _money(invoice.balance_amount),
        "credited_amount": _money(invoice.credited_amount),
        "effective_balance": _money(invoice.effective_balance),
        "issued_at": _dt(invoice.issued_at),
        "voided_at": _dt(invoice.voided_at),
        "void_reason": invoice.void_reason,
        "lines": [serialize_invoice_line(line) for line in invoice.lines],
        "version": invoice.version,
    }


def serialize_invoice_run_item(item: InvoiceRunItem) -> dict:
    return {
        "lease_id": item.lease_id,
        "invoice_id": item.invoice_id,
        "is_success": item.is_success,
        "error_message": item.error_message,
        "processed_at": _dt(item.processed_at),
    }


def serialize_invoice_run(run: InvoiceRun, include_items: bool = True) -> dict:
    """Serialize an InvoiceRun with progress counters and, optionally, per-lease items."""
    data = {
        "id": run.id,
        "uuid": run.uuid,
        "org_id": run.org_id,
        "run_number": run.run_number,
        "period_start": _dt(run.period_start),
        "period_end": _dt(run.period_end),
        "status": _enum(run.status),
        "total_leases": run.total_leases,
        "success_count": run.success_count,
        "failure_count": run.failure_count,
        "processed_count": run.processed_count,
        "error_message": run.error_message,
        "started_at": _dt(run.started_at),
        "completed_at": _dt(run.completed_at),
    }
    if include_items:
        data["items"] = [serialize_invoice_run_item(item) for item in run.items]
    return data


def serialize_credit_note(note: CreditNote) -> dict:
    return {
        "id": note.id,
        "uuid": note.uuid,
        "org_id": note.org_id,
        "invoice_id": note.invoice_id,
        "credit_note_number": note.credit_note_number,
        "reason": _enum(note.reason),
        "status": _enum(note.status),
        "notes": note.notes,
        "total_amount": _money(note.total_amount),
        "issued_at": _dt(note.issued_at),
        "lines": [
            {
                "invoice_line_id": line.invoice_line_id,
                "line_number": line.line_number,
                "description": line.description,
                "amount": _money(line.amount),
                "tax_amount": _money(line.tax_amount),
                "total_amount": _money(line.total_amount),
                "notes": line.notes,
            }
            for line in note.lines
        ],
    }


def serialize_utility_statement(statement: UtilityStatement) -> dict:
    return {
        "id": statement.id,
        "lease_id": statement.lease_id,
        "utility_type": _enum(statement.utility_type),
        "period_start": _dt(statement.period_start),
        "period_end": _dt(statement.period_end),
        "is_meter_based": statement.is_meter_based,
        "previous_reading": _num(statement.previous_reading),
        "current_reading": _num(statement.current_reading),
        "units_consumed": _num(statement.units_consumed),
        "direct_bill_amount": _money(statement.direct_bill_amount),
        "rate_plan_id": statement.rate_plan_id,
        "total_amount": _money(statement.total_amount),
        "version": statement.version,
        "is_final": statement.is_final,
    }
