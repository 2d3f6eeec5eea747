from leasebill.repositories.base import (
    AuditLogRepository,
    BillingSettingRepository,
    CreditNoteRepository,
    InvoiceRepository,
    InvoiceRunRepository,
    LeaseRepository,
    NumberSequenceRepository,
    OrganizationRepository,
    RecurringChargeRepository,
    UtilityRatePlanRepository,
    UtilityStatementRepository,
)


def get_organization_repository() -> OrganizationRepository:
    from leasebill.db import get_connection
    from leasebill.repositories.sqlalchemy import SQLAlchemyOrganizationRepository

    return SQLAlchemyOrganizationRepository(get_connection())


def get_lease_repository() -> LeaseRepository:
    from leasebill.db import get_connection
    from leasebill.repositories.sqlalchemy import SQLAlchemyLeaseRepository

    return SQLAlchemyLeaseRepository(get_connection())


def get_billing_setting_repository() -> BillingSettingRepository:
    from leasebill.db import get_connection
    from leasebill.repositories.sqlalchemy import SQLAlchemyBillingSettingRepository

    return SQLAlchemyBillingSettingRepository(get_connection())


def get_recurring_charge_repository() -> RecurringChargeRepository:
    from leasebill.db import get_connection
    from leasebill.repositories.sqlalchemy import SQLAlchemyRecurringChargeRepository

    return SQLAlchemyRecurringChargeRepository(get_connection())


def get_rate_plan_repository() -> UtilityRatePlanRepository:
    from leasebill.db import get_connection
    from leasebill.repositories.sqlalchemy import SQLAlchemyUtilityRatePlanRepository

    return SQLAlchemyUtilityRatePlanRepository(get_connection())


def get_utility_statement_repository() -> UtilityStatementRepository:
    from leasebill.db import get_connection
    from leasebill.repositories.sqlalchemy import SQLAlchemyUtilityStatementRepository

    return SQLAlchemyUtilityStatementRepository(get_connection())


def get_invoice_repository() -> InvoiceRepository:
    from leasebill.db import get_connection
    from leasebill.repositories.sqlalchemy import SQLAlchemyInvoiceRepository

    return SQLAlchemyInvoiceRepository(get_connection())


def get_credit_note_repository() -> CreditNoteRepository:
    from leasebill.db import get_connection
    from leasebill.repositories.sqlalchemy import SQLAlchemyCreditNoteRepository

    return SQLAlchemyCreditNoteRepository(get_connection())


def get_invoice_run_repository() -> InvoiceRunRepository:
    from leasebill.db import get_connection
    from leasebill.repositories.sqlalchemy import SQLAlchemyInvoiceRunRepository

    return SQLAlchemyInvoiceRunRepository(get_connection())


def get_number_sequence_repository() -> NumberSequenceRepository:
    from leasebill.db import get_connection
    from leasebill.repositories.sqlalchemy import SQLAlchemyNumberSequenceRepository

    return SQLAlchemyNumberSequenceRepository(get_connection())


def get_audit_log_repository() -> AuditLogRepository:
    from leasebill.db import get_connection
    from leasebill.repositories.sqlalchemy import SQLAlchemyAuditLogRepository

    return SQLAlchemyAuditLogRepository(get_connection())
