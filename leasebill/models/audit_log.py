from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class AuditEventType:
    """String constants for all audit event types."""

    # Invoice events
    INVOICE_GENERATE = "invoice.generate"
    INVOICE_ISSUE = "invoice.issue"
    INVOICE_VOID = "invoice.void"
    INVOICE_PAYMENT = "invoice.payment"
    INVOICE_PAYMENT_REVERSE = "invoice.payment_reverse"
    INVOICE_MARK_OVERDUE = "invoice.mark_overdue"

    # Invoice run events
    INVOICE_RUN_COMPLETE = "invoice_run.complete"

    # Credit note events
    CREDIT_NOTE_ISSUE = "credit_note.issue"

    # Utility statement events
    UTILITY_STATEMENT_RECORD = "utility_statement.record"
    UTILITY_STATEMENT_FINALIZE = "utility_statement.finalize"


class AuditLog(BaseModel):
    id: int | None = None
    uuid: str = ""
    event_type: str
    actor_id: int | None = None
    actor_username: str = ""
    source: str = ""  # 'cli', 'job' or 'system'
    entity_type: str = ""
    entity_id: int | None = None
    entity_uuid: str = ""
    previous_state: dict | None = None  # JSON (None for creates)
    new_state: dict | None = None
    metadata: dict = {}
    created_at: datetime | None = None
