import questionary
from rich.console import Console

from leasebill.cli.invoice_menu import (
    issue_invoice_menu,
    mark_overdue_menu,
    run_billing_menu,
    show_run_menu,
    void_invoice_menu,
)
from leasebill.repositories.base import OrganizationRepository
from leasebill.repositories.factory import get_organization_repository
from leasebill.services.billing_job import MonthlyBillingJob
from leasebill.services.factory import get_invoice_management_service, get_monthly_billing_job
from leasebill.services.invoice_management import InvoiceManagementService

console = Console()


def _build_services() -> tuple[OrganizationRepository, MonthlyBillingJob, InvoiceManagementService]:
    return (
        get_organization_repository(),
        get_monthly_billing_job(),
        get_invoice_management_service(),
    )


def main_menu() -> None:
    org_repo, job, management_service = _build_services()

    console.print()
    console.print("[bold]Lease Billing[/bold]", style="cyan")
    console.print()

    while True:
        choice = questionary.select(
            "Main Menu",
            choices=[
                "Run Monthly Billing",
                "Show Invoice Run",
                "Issue Invoice",
                "Void Invoice",
                "Mark Overdue Invoices",
                "Exit",
            ],
        ).ask()

        if choice is None or choice == "Exit":
            console.print("[bold]Goodbye![/bold]")
            break
        elif choice == "Run Monthly Billing":
            run_billing_menu(org_repo, job.run_service)
        elif choice == "Show Invoice Run":
            show_run_menu(org_repo, job.run_service)
        elif choice == "Issue Invoice":
            issue_invoice_menu(management_service)
        elif choice == "Void Invoice":
            void_invoice_menu(management_service)
        elif choice == "Mark Overdue Invoices":
            mark_overdue_menu(job)
