from __future__ import annotations

from datetime import date

import questionary
from rich.console import Console
from rich.table import Table

from leasebill.exceptions import BillingError
from leasebill.models import format_money
from leasebill.models.context import OperationContext
from leasebill.models.period import BillingPeriod
from leasebill.repositories.base import OrganizationRepository
from leasebill.services.billing_job import MonthlyBillingJob
from leasebill.services.invoice_management import InvoiceManagementService
from leasebill.services.invoice_run import InvoiceRunService

console = Console()

CLI_SOURCE = "cli"


def _cli_context() -> OperationContext:
    return OperationContext(actor_username="operator", source=CLI_SOURCE)


def _parse_month(text: str) -> tuple[int, int] | None:
    """'2025-04' -> (2025, 4)"""
    try:
        year_str, month_str = (text or "").strip().split("-")
        year, month = int(year_str), int(month_str)
    except ValueError:
        return None
    if not 1 <= month <= 12:
        return None
    return year, month


def _ask_invoice_id() -> int | None:
    text = questionary.text("Invoice ID:").ask()
    if not text or not text.strip().isdigit():
        console.print("[yellow]Operation cancelled.[/yellow]")
        return None
    return int(text.strip())


def _select_organization(org_repo: OrganizationRepository):
    organizations = [org for org in org_repo.list_all() if org.is_active]
    if not organizations:
        console.print("[yellow]No organizations registered.[/yellow]")
        return None
    choices = {f"{org.id} - {org.name}": org for org in organizations}
    choice = questionary.select("Organization:", choices=list(choices.keys()) + ["Back"]).ask()
    if choice is None or choice == "Back":
        return None
    return choices[choice]


def _print_run(run) -> None:
    table = Table(title=f"Invoice run {run.run_number}")
    table.add_column("Period")
    table.add_column("Status", style="bold")
    table.add_column("Leases", justify="right")
    table.add_column("Success", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_row(
        f"{run.period_start.isoformat()} to {run.period_end.isoformat()}",
        run.status.value,
        str(run.total_leases),
        str(run.success_count),
        str(run.failure_count),
    )
    console.print()
    console.print(table)
    if run.error_message:
        console.print(f"[red]{run.error_message}[/red]")


def run_billing_menu(org_repo: OrganizationRepository, run_service: InvoiceRunService) -> None:
    org = _select_organization(org_repo)
    if org is None:
        return

    today = date.today()
    parsed = _parse_month(questionary.text("Billing month (YYYY-MM):", default=f"{today:%Y-%m}").ask())
    if parsed is None:
        console.print("[red]Invalid month.[/red]")
        return
    period = BillingPeriod.for_month(*parsed)

    confirm = questionary.confirm(f"Generate draft invoices for {org.name}, {period.label}?", default=True).ask()
    if not confirm:
        return

    with console.status("Generating invoices..."):
        run = run_service.run_monthly_billing(org.id, period, _cli_context())
    _print_run(run)


def show_run_menu(org_repo: OrganizationRepository, run_service: InvoiceRunService) -> None:
    org = _select_organization(org_repo)
    if org is None:
        return
    runs = run_service.list_runs(org.id)
    if not runs:
        console.print("[yellow]No invoice runs for this organization.[/yellow]")
        return

    choices = {f"{run.run_number} ({run.status.value})": run for run in runs}
    choice = questionary.select("Select a run:", choices=list(choices.keys()) + ["Back"]).ask()
    if choice is None or choice == "Back":
        return

    run = run_service.get_run(choices[choice].id)
    _print_run(run)

    table = Table(title="Leases")
    table.add_column("Lease", style="dim")
    table.add_column("Invoice")
    table.add_column("Result")
    for item in run.items:
        result = "[green]ok[/green]" if item.is_success else f"[red]{item.error_message}[/red]"
        table.add_row(str(item.lease_id), str(item.invoice_id or "-"), result)
    console.print(table)


def issue_invoice_menu(management_service: InvoiceManagementService) -> None:
    invoice_id = _ask_invoice_id()
    if invoice_id is None:
        return
    try:
        invoice = management_service.get_invoice(invoice_id)
        console.print(
            f"  {invoice.invoice_number}: {len(invoice.lines)} lines, total {format_money(invoice.total_amount)}"
        )
        if not questionary.confirm("Issue this invoice? Lines cannot be edited afterwards.", default=False).ask():
            return
        invoice = management_service.issue(invoice_id, _cli_context(), expected_version=invoice.version)
    except BillingError as exc:
        console.print(f"[red]{exc.message}[/red]")
        return
    console.print(f"[green]Invoice {invoice.invoice_number} issued.[/green]")


def void_invoice_menu(management_service: InvoiceManagementService) -> None:
    invoice_id = _ask_invoice_id()
    if invoice_id is None:
        return
    reason = questionary.text("Reason:").ask()
    if not reason:
        console.print("[yellow]A reason is required. Operation cancelled.[/yellow]")
        return
    try:
        invoice = management_service.void(invoice_id, reason, _cli_context())
    except BillingError as exc:
        console.print(f"[red]{exc.message}[/red]")
        return
    console.print(f"[green]Invoice {invoice.invoice_number} voided.[/green]")


def mark_overdue_menu(job: MonthlyBillingJob) -> None:
    if not questionary.confirm("Mark every past-due invoice as overdue?", default=True).ask():
        return
    updated = job.mark_overdue()
    console.print(f"[green]{updated} invoice(s) marked overdue.[/green]")
