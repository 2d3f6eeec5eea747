"""Invoice status transitions as a table.

``transition`` is pure: it never touches storage and either returns the next
status or raises ``InvalidTransition``, leaving the caller's invoice untouched.
"""

from __future__ import annotations

from enum import Enum

from leasebill.exceptions import InvalidTransition
from leasebill.models.invoice import InvoiceStatus


class InvoiceEvent(str, Enum):
    ISSUE = "issue"
    PAY_PARTIAL = "pay_partial"
    PAY_FULL = "pay_full"
    REVERSE_PARTIAL = "reverse_partial"
    REVERSE_FULL = "reverse_full"
    MARK_OVERDUE = "mark_overdue"
    VOID = "void"


S = InvoiceStatus
E = InvoiceEvent

TRANSITIONS: dict[InvoiceStatus, dict[InvoiceEvent, InvoiceStatus]] = {
    S.DRAFT: {
        E.ISSUE: S.ISSUED,
        E.VOID: S.VOIDED,
    },
    S.ISSUED: {
        E.PAY_PARTIAL: S.PARTIALLY_PAID,
        E.PAY_FULL: S.PAID,
        E.MARK_OVERDUE: S.OVERDUE,
        E.VOID: S.VOIDED,
    },
    S.PARTIALLY_PAID: {
        E.PAY_PARTIAL: S.PARTIALLY_PAID,
        E.PAY_FULL: S.PAID,
        E.REVERSE_PARTIAL: S.PARTIALLY_PAID,
        E.REVERSE_FULL: S.ISSUED,
        E.MARK_OVERDUE: S.OVERDUE,
        E.VOID: S.VOIDED,
    },
    S.PAID: {
        E.REVERSE_PARTIAL: S.PARTIALLY_PAID,
        E.REVERSE_FULL: S.ISSUED,
        E.VOID: S.VOIDED,
    },
    # Overdue stays overdue until fully settled.
    S.OVERDUE: {
        E.PAY_PARTIAL: S.OVERDUE,
        E.PAY_FULL: S.PAID,
        E.REVERSE_PARTIAL: S.OVERDUE,
        E.REVERSE_FULL: S.OVERDUE,
        E.VOID: S.VOIDED,
    },
    S.VOIDED: {},
}

del S, E


def transition(current: InvoiceStatus, event: InvoiceEvent) -> InvoiceStatus:
    try:
        return TRANSITIONS[current][event]
    except KeyError:
        raise InvalidTransition(current, event) from None


def can_transition(current: InvoiceStatus, event: InvoiceEvent) -> bool:
    return event in TRANSITIONS.get(current, {})


def allowed_events(current: InvoiceStatus) -> list[InvoiceEvent]:
    return list(TRANSITIONS.get(current, {}))
