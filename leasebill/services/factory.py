"""Service constructors wired to the SQLAlchemy repositories.

Repositories pick up the calling thread's connection, so a service built
inside an invoice-run worker writes through that worker's own connection.
"""

from leasebill.repositories.factory import (
    get_audit_log_repository,
    get_billing_setting_repository,
    get_credit_note_repository,
    get_invoice_repository,
    get_invoice_run_repository,
    get_lease_repository,
    get_number_sequence_repository,
    get_organization_repository,
    get_rate_plan_repository,
    get_recurring_charge_repository,
    get_utility_statement_repository,
)
from leasebill.services.audit_service import AuditService
from leasebill.services.billing_job import MonthlyBillingJob
from leasebill.services.credit_note_service import CreditNoteService
from leasebill.services.invoice_generation import InvoiceGenerationService
from leasebill.services.invoice_management import InvoiceManagementService
from leasebill.services.invoice_run import InvoiceRunService
from leasebill.services.numbering import CreditNoteNumberGenerator, InvoiceNumberGenerator
from leasebill.services.recurring_charge_calculation import RecurringChargeCalculationService
from leasebill.services.rent_calculation import RentCalculationService
from leasebill.services.utility_calculation import UtilityCalculationService
from leasebill.services.utility_statement_service import UtilityStatementService


def get_audit_service() -> AuditService:
    return AuditService(get_audit_log_repository())


def get_utility_calculation_service() -> UtilityCalculationService:
    return UtilityCalculationService(get_rate_plan_repository())


def get_invoice_generation_service() -> InvoiceGenerationService:
    lease_repo = get_lease_repository()
    return InvoiceGenerationService(
        lease_repo=lease_repo,
        setting_repo=get_billing_setting_repository(),
        invoice_repo=get_invoice_repository(),
        statement_repo=get_utility_statement_repository(),
        rent_service=RentCalculationService(lease_repo),
        charge_service=RecurringChargeCalculationService(get_recurring_charge_repository()),
        utility_service=get_utility_calculation_service(),
        number_generator=InvoiceNumberGenerator(get_number_sequence_repository()),
        audit_service=get_audit_service(),
    )


def get_invoice_run_service() -> InvoiceRunService:
    from leasebill.db import close_connection

    return InvoiceRunService(
        lease_repo=get_lease_repository(),
        setting_repo=get_billing_setting_repository(),
        run_repo=get_invoice_run_repository(),
        generation_service_factory=get_invoice_generation_service,
        audit_service=get_audit_service(),
        release_worker_resources=close_connection,
    )


def get_invoice_management_service() -> InvoiceManagementService:
    return InvoiceManagementService(get_invoice_repository(), get_audit_service())


def get_credit_note_service() -> CreditNoteService:
    return CreditNoteService(
        invoice_repo=get_invoice_repository(),
        credit_note_repo=get_credit_note_repository(),
        number_generator=CreditNoteNumberGenerator(get_number_sequence_repository()),
        audit_service=get_audit_service(),
    )


def get_utility_statement_service() -> UtilityStatementService:
    return UtilityStatementService(
        lease_repo=get_lease_repository(),
        statement_repo=get_utility_statement_repository(),
        utility_service=get_utility_calculation_service(),
        audit_service=get_audit_service(),
    )


def get_monthly_billing_job() -> MonthlyBillingJob:
    return MonthlyBillingJob(
        org_repo=get_organization_repository(),
        run_service=get_invoice_run_service(),
        management_service=get_invoice_management_service(),
    )
