from __future__ import annotations

import logging
from datetime import date

from leasebill.models.context import OperationContext
from leasebill.models.invoice_run import InvoiceRun, InvoiceRunStatus
from leasebill.models.period import BillingPeriod
from leasebill.repositories.base import OrganizationRepository
from leasebill.services.invoice_management import InvoiceManagementService
from leasebill.services.invoice_run import InvoiceRunService

logger = logging.getLogger(__name__)


def next_month(today: date) -> BillingPeriod:
    if today.month == 12:
        return BillingPeriod.for_month(today.year + 1, 1)
    return BillingPeriod.for_month(today.year, today.month + 1)


class MonthlyBillingJob:
    """Scheduler entry points: monthly invoice runs and the daily overdue sweep.

    Every organization and every invoice is handled on its own; one failure is
    logged and the sweep moves on to the next.
    """

    SOURCE = "job"

    def __init__(
        self,
        org_repo: OrganizationRepository,
        run_service: InvoiceRunService,
        management_service: InvoiceManagementService,
    ) -> None:
        self.org_repo = org_repo
        self.run_service = run_service
        self.management_service = management_service

    def run_for_organization(
        self, org_id: int, period: BillingPeriod, ctx: OperationContext | None = None
    ) -> InvoiceRun:
        ctx = ctx or OperationContext.system(source=self.SOURCE)
        logger.info("Monthly billing for org %s period %s", org_id, period.label)
        run = self.run_service.run_monthly_billing(org_id, period, ctx)
        if run.status == InvoiceRunStatus.FAILED:
            logger.error("Invoice run %s failed for every lease: %s", run.run_number, run.error_message)
        elif run.failure_count:
            logger.warning("Invoice run %s had %d failures: %s", run.run_number, run.failure_count, run.error_message)
        return run

    def run_for_period(self, period: BillingPeriod, ctx: OperationContext | None = None) -> list[InvoiceRun]:
        ctx = ctx or OperationContext.system(source=self.SOURCE)
        organizations = [org for org in self.org_repo.list_all() if org.is_active]
        if not organizations:
            logger.warning("No organizations found to bill for %s", period.label)
            return []

        runs = []
        failed = []
        for org in organizations:
            try:
                runs.append(self.run_for_organization(org.id, period, ctx))
            except Exception:
                logger.exception("Monthly billing failed for org %s (%s)", org.id, org.name)
                failed.append(org.id)
        logger.info(
            "Monthly billing for %s done: %d organizations, %d failed",
            period.label,
            len(organizations),
            len(failed),
        )
        return runs

    def run_for_current_period(self, today: date | None = None) -> list[InvoiceRun]:
        ctx = OperationContext.system(source=self.SOURCE)
        today = today or ctx.now().date()
        return self.run_for_period(BillingPeriod.for_month(today.year, today.month), ctx)

    def run_for_next_month(self, today: date | None = None, days_before_period_start: int = 5) -> list[InvoiceRun]:
        """Bill next month ahead of time; meant to fire ``days_before_period_start`` days before the 1st."""
        ctx = OperationContext.system(source=self.SOURCE)
        today = today or ctx.now().date()
        period = next_month(today)
        days_until = (period.start - today).days
        if abs(days_until - days_before_period_start) > 1:
            logger.warning(
                "Billing job running outside its window: %d days before %s, expected %d",
                days_until,
                period.start.isoformat(),
                days_before_period_start,
            )
        return self.run_for_period(period, ctx)

    def mark_overdue(self, as_of: date | None = None, org_id: int | None = None) -> int:
        """Move every past-due invoice with an open balance to Overdue; returns how many moved."""
        ctx = OperationContext.system(source=self.SOURCE)
        as_of = as_of or ctx.now().date()
        invoices = self.management_service.list_past_due(as_of, org_id)
        logger.info("Found %d past-due invoices as of %s", len(invoices), as_of.isoformat())

        updated = 0
        for invoice in invoices:
            try:
                self.management_service.mark_overdue(invoice.id, ctx, as_of)
                updated += 1
            except Exception:
                logger.exception("Failed to mark invoice %s overdue", invoice.invoice_number)
        logger.info("Overdue sweep as of %s updated %d invoices", as_of.isoformat(), updated)
        return updated
