from __future__ import annotations

import logging

from leasebill.constants import SEQUENCE_CREDIT_NOTE, SEQUENCE_INVOICE
from leasebill.repositories.base import NumberSequenceRepository
from leasebill.settings import settings

logger = logging.getLogger(__name__)


def format_document_number(prefix: str, year: int, value: int) -> str:
    return f"{prefix}-{year}-{value:06d}"


class DocumentNumberGenerator:
    """
    Generates sequential document numbers in format: PREFIX-YYYY-NNNNNN

    Examples:
        INV-2026-000001
        CN-2026-000042

    The sequence is shared per organization, document kind and year, so
    numbers keep increasing even when leases use different prefixes. A
    number taken by a write that later fails is not reused.
    """

    def __init__(self, sequence_repo: NumberSequenceRepository, kind: str, default_prefix: str) -> None:
        self.sequence_repo = sequence_repo
        self.kind = kind
        self.default_prefix = default_prefix

    def generate(self, org_id: int, year: int, prefix: str | None = None) -> str:
        value = self.sequence_repo.next_value(org_id, self.kind, year)
        number = format_document_number(prefix or self.default_prefix, year, value)
        logger.debug("Allocated %s number %s for org %s", self.kind, number, org_id)
        return number


class InvoiceNumberGenerator(DocumentNumberGenerator):
    def __init__(self, sequence_repo: NumberSequenceRepository) -> None:
        super().__init__(sequence_repo, SEQUENCE_INVOICE, settings.invoice_prefix)


class CreditNoteNumberGenerator(DocumentNumberGenerator):
    def __init__(self, sequence_repo: NumberSequenceRepository) -> None:
        super().__init__(sequence_repo, SEQUENCE_CREDIT_NOTE, settings.credit_note_prefix)
