from unittest.mock import MagicMock, patch

from leasebill.services.audit_service import AuditService
from leasebill.services.billing_job import MonthlyBillingJob
from leasebill.services.credit_note_service import CreditNoteService
from leasebill.services.factory import (
    get_audit_service,
    get_credit_note_service,
    get_invoice_generation_service,
    get_invoice_management_service,
    get_invoice_run_service,
    get_monthly_billing_job,
    get_utility_statement_service,
)
from leasebill.services.invoice_generation import InvoiceGenerationService
from leasebill.services.invoice_management import InvoiceManagementService
from leasebill.services.invoice_run import InvoiceRunService
from leasebill.services.utility_statement_service import UtilityStatementService


class TestServiceFactory:
    @patch("leasebill.db.get_connection")
    def test_get_audit_service(self, mock_conn):
        mock_conn.return_value = MagicMock()
        assert isinstance(get_audit_service(), AuditService)

    @patch("leasebill.db.get_connection")
    def test_generation_service_shares_lease_repo(self, mock_conn):
        mock_conn.return_value = MagicMock()
        service = get_invoice_generation_service()
        assert isinstance(service, InvoiceGenerationService)
        assert service.rent_service.lease_repo is service.lease_repo
        assert service.audit_service is not None

    @patch("leasebill.db.get_connection")
    def test_run_service_builds_generation_per_call(self, mock_conn):
        from leasebill.db import close_connection

        mock_conn.return_value = MagicMock()
        service = get_invoice_run_service()
        assert isinstance(service, InvoiceRunService)
        assert service.generation_service_factory is get_invoice_generation_service
        assert service.release_worker_resources is close_connection

    @patch("leasebill.db.get_connection")
    def test_other_services(self, mock_conn):
        mock_conn.return_value = MagicMock()
        assert isinstance(get_invoice_management_service(), InvoiceManagementService)
        assert isinstance(get_credit_note_service(), CreditNoteService)
        assert isinstance(get_utility_statement_service(), UtilityStatementService)

    @patch("leasebill.db.get_connection")
    def test_monthly_billing_job(self, mock_conn):
        mock_conn.return_value = MagicMock()
        job = get_monthly_billing_job()
        assert isinstance(job, MonthlyBillingJob)
        assert isinstance(job.run_service, InvoiceRunService)
