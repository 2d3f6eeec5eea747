"""Typed failures raised by the billing core.

Callers can tell retryable conflicts apart from rejected input and from bad
source data without parsing messages.
"""

from __future__ import annotations

from typing import Any


class BillingError(Exception):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(BillingError, ValueError):
    """Input rejected before any calculation or write happened."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class InvalidPeriodError(ValidationError):
    pass


class DuplicateFinalStatementError(ValidationError):
    pass


class NotFoundError(BillingError, LookupError):
    def __init__(self, resource: str, identifier: Any = None) -> None:
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id={identifier} not found"
        super().__init__(message, {"resource": resource, "id": identifier})


class DataError(BillingError):
    """Source data is inconsistent; surfaced as-is, never coerced."""


class NegativeConsumptionError(DataError):
    def __init__(self, previous: Any, current: Any) -> None:
        super().__init__(
            f"Current reading {current} is below previous reading {previous}",
            {"previous_reading": str(previous), "current_reading": str(current)},
        )


class MissingRatePlanError(DataError):
    pass


class ConcurrencyConflict(BillingError):
    """A stale version or a lost insert race. Re-read and retry."""


def _label(value: Any) -> str:
    return str(getattr(value, "value", value))


class InvalidTransition(BillingError):
    def __init__(self, current: Any, event: Any, message: str | None = None) -> None:
        self.current = current
        self.event = event
        super().__init__(
            message or f"Cannot apply '{_label(event)}' to an invoice in status '{_label(current)}'",
            {"current": _label(current), "event": _label(event)},
        )


class InvoiceImmutableError(InvalidTransition):
    def __init__(self, current: Any) -> None:
        super().__init__(
            current,
            "edit_lines",
            f"Invoice lines are immutable once the invoice leaves draft (status '{_label(current)}')",
        )
