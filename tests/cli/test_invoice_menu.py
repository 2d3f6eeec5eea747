from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

from leasebill.cli.invoice_menu import _parse_month
from leasebill.exceptions import InvalidTransition, ValidationError
from leasebill.models.invoice import Invoice, InvoiceStatus
from leasebill.models.invoice_run import InvoiceRun, InvoiceRunItem, InvoiceRunStatus
from leasebill.models.organization import Organization
from leasebill.models.period import BillingPeriod


def _org_repo():
    repo = MagicMock()
    repo.list_all.return_value = [
        Organization(id=1, name="Harbor Properties"),
        Organization(id=2, name="Closed", is_active=False),
    ]
    return repo


def _run(**overrides):
    defaults = dict(
        id=5,
        org_id=1,
        run_number="RUN-202504-ABCDEFGH",
        period_start=date(2025, 4, 1),
        period_end=date(2025, 4, 30),
        status=InvoiceRunStatus.COMPLETED_WITH_ERRORS,
        total_leases=2,
        success_count=1,
        failure_count=1,
        error_message="Lease 2: Lease L-002 has no active billing setting",
        items=[
            InvoiceRunItem(run_id=5, lease_id=1, invoice_id=10, is_success=True),
            InvoiceRunItem(run_id=5, lease_id=2, error_message="Lease L-002 has no active billing setting"),
        ],
    )
    defaults.update(overrides)
    return InvoiceRun(**defaults)


def _invoice(**overrides):
    defaults = dict(
        id=10,
        org_id=1,
        lease_id=1,
        invoice_number="INV-2025-000001",
        period_start=date(2025, 4, 1),
        period_end=date(2025, 4, 30),
        total_amount=Decimal("1600.00"),
        version=3,
    )
    defaults.update(overrides)
    return Invoice(**defaults)


class TestParseMonth:
    def test_valid(self):
        assert _parse_month("2025-04") == (2025, 4)

    def test_padded(self):
        assert _parse_month(" 2025-12 ") == (2025, 12)

    def test_invalid(self):
        assert _parse_month("April") is None
        assert _parse_month("2025-13") is None
        assert _parse_month("") is None
        assert _parse_month(None) is None


class TestRunBillingMenu:
    @patch("leasebill.cli.invoice_menu.questionary")
    def test_runs_selected_month(self, mock_q):
        from leasebill.cli.invoice_menu import run_billing_menu

        run_service = MagicMock()
        run_service.run_monthly_billing.return_value = _run()
        mock_q.select.return_value.ask.return_value = "1 - Harbor Properties"
        mock_q.text.return_value.ask.return_value = "2025-04"
        mock_q.confirm.return_value.ask.return_value = True

        run_billing_menu(_org_repo(), run_service)

        org_id, period, ctx = run_service.run_monthly_billing.call_args.args
        assert org_id == 1
        assert period == BillingPeriod.for_month(2025, 4)
        assert ctx.source == "cli"

    @patch("leasebill.cli.invoice_menu.questionary")
    def test_inactive_orgs_hidden(self, mock_q):
        from leasebill.cli.invoice_menu import run_billing_menu

        mock_q.select.return_value.ask.return_value = "Back"

        run_billing_menu(_org_repo(), MagicMock())

        choices = mock_q.select.call_args.kwargs["choices"]
        assert choices == ["1 - Harbor Properties", "Back"]

    @patch("leasebill.cli.invoice_menu.questionary")
    def test_no_organizations(self, mock_q):
        from leasebill.cli.invoice_menu import run_billing_menu

        org_repo = MagicMock()
        org_repo.list_all.return_value = []

        run_billing_menu(org_repo, MagicMock())
        mock_q.select.assert_not_called()

    @patch("leasebill.cli.invoice_menu.questionary")
    def test_invalid_month(self, mock_q):
        from leasebill.cli.invoice_menu import run_billing_menu

        run_service = MagicMock()
        mock_q.select.return_value.ask.return_value = "1 - Harbor Properties"
        mock_q.text.return_value.ask.return_value = "nope"

        run_billing_menu(_org_repo(), run_service)
        run_service.run_monthly_billing.assert_not_called()

    @patch("leasebill.cli.invoice_menu.questionary")
    def test_not_confirmed(self, mock_q):
        from leasebill.cli.invoice_menu import run_billing_menu

        run_service = MagicMock()
        mock_q.select.return_value.ask.return_value = "1 - Harbor Properties"
        mock_q.text.return_value.ask.return_value = "2025-04"
        mock_q.confirm.return_value.ask.return_value = False

        run_billing_menu(_org_repo(), run_service)
        run_service.run_monthly_billing.assert_not_called()


class TestShowRunMenu:
    @patch("leasebill.cli.invoice_menu.questionary")
    def test_shows_items(self, mock_q):
        from leasebill.cli.invoice_menu import show_run_menu

        run = _run()
        run_service = MagicMock()
        run_service.list_runs.return_value = [run]
        run_service.get_run.return_value = run
        mock_q.select.return_value.ask.side_effect = [
            "1 - Harbor Properties",
            "RUN-202504-ABCDEFGH (completed_with_errors)",
        ]

        show_run_menu(_org_repo(), run_service)
        run_service.get_run.assert_called_once_with(5)

    @patch("leasebill.cli.invoice_menu.questionary")
    def test_no_runs(self, mock_q):
        from leasebill.cli.invoice_menu import show_run_menu

        run_service = MagicMock()
        run_service.list_runs.return_value = []
        mock_q.select.return_value.ask.return_value = "1 - Harbor Properties"

        show_run_menu(_org_repo(), run_service)
        run_service.get_run.assert_not_called()

    @patch("leasebill.cli.invoice_menu.questionary")
    def test_back(self, mock_q):
        from leasebill.cli.invoice_menu import show_run_menu

        run_service = MagicMock()
        run_service.list_runs.return_value = [_run()]
        mock_q.select.return_value.ask.side_effect = ["1 - Harbor Properties", "Back"]

        show_run_menu(_org_repo(), run_service)
        run_service.get_run.assert_not_called()


class TestIssueInvoiceMenu:
    @patch("leasebill.cli.invoice_menu.questionary")
    def test_issue_with_expected_version(self, mock_q):
        from leasebill.cli.invoice_menu import issue_invoice_menu

        service = MagicMock()
        service.get_invoice.return_value = _invoice()
        service.issue.return_value = _invoice(status=InvoiceStatus.ISSUED, version=4)
        mock_q.text.return_value.ask.return_value = "10"
        mock_q.confirm.return_value.ask.return_value = True

        issue_invoice_menu(service)

        args, kwargs = service.issue.call_args
        assert args[0] == 10
        assert kwargs["expected_version"] == 3

    @patch("leasebill.cli.invoice_menu.questionary")
    def test_invalid_id(self, mock_q):
        from leasebill.cli.invoice_menu import issue_invoice_menu

        service = MagicMock()
        mock_q.text.return_value.ask.return_value = "abc"

        issue_invoice_menu(service)
        service.get_invoice.assert_not_called()

    @patch("leasebill.cli.invoice_menu.questionary")
    def test_declined(self, mock_q):
        from leasebill.cli.invoice_menu import issue_invoice_menu

        service = MagicMock()
        service.get_invoice.return_value = _invoice()
        mock_q.text.return_value.ask.return_value = "10"
        mock_q.confirm.return_value.ask.return_value = False

        issue_invoice_menu(service)
        service.issue.assert_not_called()

    @patch("leasebill.cli.invoice_menu.questionary")
    def test_billing_error_is_reported(self, mock_q):
        from leasebill.cli.invoice_menu import issue_invoice_menu

        service = MagicMock()
        service.get_invoice.return_value = _invoice()
        service.issue.side_effect = InvalidTransition(InvoiceStatus.VOIDED, "issue")
        mock_q.text.return_value.ask.return_value = "10"
        mock_q.confirm.return_value.ask.return_value = True

        issue_invoice_menu(service)


class TestVoidInvoiceMenu:
    @patch("leasebill.cli.invoice_menu.questionary")
    def test_void(self, mock_q):
        from leasebill.cli.invoice_menu import void_invoice_menu

        service = MagicMock()
        service.void.return_value = _invoice(status=InvoiceStatus.VOIDED)
        mock_q.text.return_value.ask.side_effect = ["10", "Duplicate"]

        void_invoice_menu(service)

        args = service.void.call_args.args
        assert args[:2] == (10, "Duplicate")

    @patch("leasebill.cli.invoice_menu.questionary")
    def test_reason_required(self, mock_q):
        from leasebill.cli.invoice_menu import void_invoice_menu

        service = MagicMock()
        mock_q.text.return_value.ask.side_effect = ["10", ""]

        void_invoice_menu(service)
        service.void.assert_not_called()

    @patch("leasebill.cli.invoice_menu.questionary")
    def test_billing_error_is_reported(self, mock_q):
        from leasebill.cli.invoice_menu import void_invoice_menu

        service = MagicMock()
        service.void.side_effect = ValidationError("A reason is required to void an invoice", field="reason")
        mock_q.text.return_value.ask.side_effect = ["10", "  "]

        void_invoice_menu(service)


class TestMarkOverdueMenu:
    @patch("leasebill.cli.invoice_menu.questionary")
    def test_confirmed(self, mock_q):
        from leasebill.cli.invoice_menu import mark_overdue_menu

        job = MagicMock()
        job.mark_overdue.return_value = 3
        mock_q.confirm.return_value.ask.return_value = True

        mark_overdue_menu(job)
        job.mark_overdue.assert_called_once_with()

    @patch("leasebill.cli.invoice_menu.questionary")
    def test_declined(self, mock_q):
        from leasebill.cli.invoice_menu import mark_overdue_menu

        job = MagicMock()
        mock_q.confirm.return_value.ask.return_value = False

        mark_overdue_menu(job)
        job.mark_overdue.assert_not_called()
