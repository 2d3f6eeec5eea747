from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal

from leasebill.models.audit_log import AuditLog
from leasebill.models.billing_setting import BillingSetting
from leasebill.models.charge import RecurringCharge
from leasebill.models.context import OperationContext
from leasebill.models.credit_note import CreditNote
from leasebill.models.invoice import Invoice
from leasebill.models.invoice_run import InvoiceRun, InvoiceRunItem
from leasebill.models.lease import Lease, LeaseTerm
from leasebill.models.organization import Organization
from leasebill.models.period import BillingPeriod
from leasebill.models.utility import UtilityRatePlan, UtilityStatement, UtilityType


class OrganizationRepository(ABC):
    @abstractmethod
    def create(self, org: Organization) -> Organization: ...

    @abstractmethod
    def get_by_id(self, org_id: int) -> Organization | None: ...

    @abstractmethod
    def list_all(self) -> list[Organization]: ...


class LeaseRepository(ABC):
    @abstractmethod
    def create(self, lease: Lease, ctx: OperationContext) -> Lease: ...

    @abstractmethod
    def get_by_id(self, lease_id: int) -> Lease | None: ...

    @abstractmethod
    def get_active_leases(self, org_id: int, as_of: date) -> list[Lease]:
        """Active leases whose tenancy has started by ``as_of`` and not ended before it."""

    @abstractmethod
    def add_term(self, term: LeaseTerm) -> LeaseTerm: ...

    @abstractmethod
    def get_lease_terms(self, lease_id: int, period: BillingPeriod) -> list[LeaseTerm]:
        """Terms in force at any point of ``period``, ordered by ``effective_from``."""


class BillingSettingRepository(ABC):
    @abstractmethod
    def get_by_lease(self, lease_id: int) -> BillingSetting | None: ...

    @abstractmethod
    def upsert(self, setting: BillingSetting, ctx: OperationContext) -> BillingSetting: ...


class RecurringChargeRepository(ABC):
    @abstractmethod
    def create(self, charge: RecurringCharge, ctx: OperationContext) -> RecurringCharge: ...

    @abstractmethod
    def get_recurring_charges(self, lease_id: int, period: BillingPeriod) -> list[RecurringCharge]:
        """Active charges whose date range intersects ``period``."""


class UtilityRatePlanRepository(ABC):
    @abstractmethod
    def create(self, plan: UtilityRatePlan) -> UtilityRatePlan: ...

    @abstractmethod
    def get_by_id(self, plan_id: int) -> UtilityRatePlan | None: ...

    @abstractmethod
    def get_rate_plan(self, org_id: int, utility_type: UtilityType, as_of: date) -> UtilityRatePlan | None:
        """Latest active plan in effect on ``as_of``."""


class UtilityStatementRepository(ABC):
    @abstractmethod
    def create(self, statement: UtilityStatement, ctx: OperationContext) -> UtilityStatement: ...

    @abstractmethod
    def get_by_id(self, statement_id: int) -> UtilityStatement | None: ...

    @abstractmethod
    def list_versions(
        self, lease_id: int, utility_type: UtilityType, period: BillingPeriod
    ) -> list[UtilityStatement]: ...

    @abstractmethod
    def get_final(self, lease_id: int, utility_type: UtilityType, period: BillingPeriod) -> UtilityStatement | None: ...

    @abstractmethod
    def list_final_for_period(self, lease_id: int, period: BillingPeriod) -> list[UtilityStatement]:
        """Final statements whose period overlaps ``period``."""

    @abstractmethod
    def update(self, statement: UtilityStatement, ctx: OperationContext) -> UtilityStatement:
        """Compare-and-swap on ``row_version``."""


class InvoiceRepository(ABC):
    @abstractmethod
    def create(self, invoice: Invoice, ctx: OperationContext) -> Invoice:
        """Insert a new invoice; a duplicate lease+period raises ``ConcurrencyConflict``."""

    @abstractmethod
    def get_by_id(self, invoice_id: int) -> Invoice | None: ...

    @abstractmethod
    def get_by_number(self, org_id: int, invoice_number: str) -> Invoice | None:
        """Numbers are unique per organization only."""

    @abstractmethod
    def get_by_lease_and_period(self, lease_id: int, period: BillingPeriod) -> Invoice | None: ...

    @abstractmethod
    def update(self, invoice: Invoice, ctx: OperationContext) -> Invoice:
        """Compare-and-swap on ``version``; lines are rewritten only while Draft."""

    @abstractmethod
    def list_past_due(self, as_of: date, org_id: int | None = None) -> list[Invoice]:
        """Issued or partially paid invoices due before ``as_of`` with an open balance."""


class CreditNoteRepository(ABC):
    @abstractmethod
    def create(self, note: CreditNote, ctx: OperationContext, invoice: Invoice | None = None) -> CreditNote:
        """Insert the note. With ``invoice``, its ``credited_amount`` is written in the same
        transaction (compare-and-swap on ``version``) and both roll back together."""

    @abstractmethod
    def get_by_id(self, note_id: int) -> CreditNote | None: ...

    @abstractmethod
    def list_by_invoice(self, invoice_id: int) -> list[CreditNote]: ...

    @abstractmethod
    def credited_by_line(self, invoice_id: int) -> dict[int, Decimal]:
        """Invoice line id -> total already credited (positive Decimal)."""


class InvoiceRunRepository(ABC):
    @abstractmethod
    def create(self, run: InvoiceRun, ctx: OperationContext) -> InvoiceRun: ...

    @abstractmethod
    def get_by_id(self, run_id: int) -> InvoiceRun | None: ...

    @abstractmethod
    def get_by_org_and_period(self, org_id: int, period: BillingPeriod) -> InvoiceRun | None: ...

    @abstractmethod
    def list_by_org(self, org_id: int, limit: int = 20) -> list[InvoiceRun]: ...

    @abstractmethod
    def update(self, run: InvoiceRun, ctx: OperationContext) -> InvoiceRun:
        """Compare-and-swap on ``version``; items are saved separately."""

    @abstractmethod
    def save_item(self, item: InvoiceRunItem) -> InvoiceRunItem:
        """Insert or replace the item for (run, lease)."""

    @abstractmethod
    def list_items(self, run_id: int) -> list[InvoiceRunItem]: ...


class NumberSequenceRepository(ABC):
    @abstractmethod
    def next_value(self, org_id: int, kind: str, year: int) -> int:
        """Atomically advance and return the sequence for (org, kind, year)."""


class AuditLogRepository(ABC):
    @abstractmethod
    def create(self, audit_log: AuditLog) -> AuditLog: ...

    @abstractmethod
    def list_by_entity(self, entity_type: str, entity_id: int) -> list[AuditLog]: ...

    @abstractmethod
    def list_recent(self, limit: int = 50) -> list[AuditLog]: ...
