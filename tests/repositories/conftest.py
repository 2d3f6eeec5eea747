import pytest
from sqlalchemy import Connection

from leasebill.models.lease import Lease
from leasebill.models.organization import Organization
from leasebill.repositories.sqlalchemy import (
    SQLAlchemyAuditLogRepository,
    SQLAlchemyBillingSettingRepository,
    SQLAlchemyCreditNoteRepository,
    SQLAlchemyInvoiceRepository,
    SQLAlchemyInvoiceRunRepository,
    SQLAlchemyLeaseRepository,
    SQLAlchemyNumberSequenceRepository,
    SQLAlchemyOrganizationRepository,
    SQLAlchemyRecurringChargeRepository,
    SQLAlchemyUtilityRatePlanRepository,
    SQLAlchemyUtilityStatementRepository,
)


@pytest.fixture()
def org_repo(db_connection: Connection) -> SQLAlchemyOrganizationRepository:
    return SQLAlchemyOrganizationRepository(db_connection)


@pytest.fixture()
def lease_repo(db_connection: Connection) -> SQLAlchemyLeaseRepository:
    return SQLAlchemyLeaseRepository(db_connection)


@pytest.fixture()
def setting_repo(db_connection: Connection) -> SQLAlchemyBillingSettingRepository:
    return SQLAlchemyBillingSettingRepository(db_connection)


@pytest.fixture()
def charge_repo(db_connection: Connection) -> SQLAlchemyRecurringChargeRepository:
    return SQLAlchemyRecurringChargeRepository(db_connection)


@pytest.fixture()
def rate_plan_repo(db_connection: Connection) -> SQLAlchemyUtilityRatePlanRepository:
    return SQLAlchemyUtilityRatePlanRepository(db_connection)


@pytest.fixture()
def statement_repo(db_connection: Connection) -> SQLAlchemyUtilityStatementRepository:
    return SQLAlchemyUtilityStatementRepository(db_connection)


@pytest.fixture()
def invoice_repo(db_connection: Connection) -> SQLAlchemyInvoiceRepository:
    return SQLAlchemyInvoiceRepository(db_connection)


@pytest.fixture()
def credit_note_repo(db_connection: Connection) -> SQLAlchemyCreditNoteRepository:
    return SQLAlchemyCreditNoteRepository(db_connection)


@pytest.fixture()
def run_repo(db_connection: Connection) -> SQLAlchemyInvoiceRunRepository:
    return SQLAlchemyInvoiceRunRepository(db_connection)


@pytest.fixture()
def sequence_repo(db_connection: Connection) -> SQLAlchemyNumberSequenceRepository:
    return SQLAlchemyNumberSequenceRepository(db_connection)


@pytest.fixture()
def audit_repo(db_connection: Connection) -> SQLAlchemyAuditLogRepository:
    return SQLAlchemyAuditLogRepository(db_connection)


@pytest.fixture()
def org(org_repo) -> Organization:
    return org_repo.create(Organization(name="Harbor Properties"))


@pytest.fixture()
def lease(lease_repo, org, sample_lease, ctx) -> Lease:
    return lease_repo.create(sample_lease(id=None, org_id=org.id), ctx)
