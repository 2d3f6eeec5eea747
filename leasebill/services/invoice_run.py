"""Batch invoice generation for every eligible lease of an organization.

Each lease is an independent unit of work: its failure is recorded on its run
item and never stops the others. Leases fan out over a bounded thread pool;
the run row and its items are written from the calling thread only.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from ulid import ULID

from leasebill.exceptions import BillingError, ConcurrencyConflict
from leasebill.logging import log_context
from leasebill.models.audit_log import AuditEventType
from leasebill.models.context import OperationContext
from leasebill.models.invoice_run import InvoiceRun, InvoiceRunItem, InvoiceRunStatus
from leasebill.models.lease import Lease
from leasebill.models.period import BillingPeriod
from leasebill.repositories.base import BillingSettingRepository, InvoiceRunRepository, LeaseRepository
from leasebill.services.audit_service import AuditService
from leasebill.services.invoice_generation import InvoiceGenerationService
from leasebill.services.serializers import serialize_invoice_run
from leasebill.settings import settings

logger = logging.getLogger(__name__)


def make_run_number(period: BillingPeriod) -> str:
    return f"RUN-{period.start:%Y%m}-{str(ULID())[-8:]}"


def summarize_errors(items: list[InvoiceRunItem], limit: int) -> str | None:
    failed = [item for item in items if not item.is_success]
    if not failed:
        return None
    parts = [f"Lease {item.lease_id}: {item.error_message}" for item in failed[:limit]]
    if len(failed) > limit:
        parts.append(f"and {len(failed) - limit} more")
    return "; ".join(parts)


class InvoiceRunService:
    def __init__(
        self,
        lease_repo: LeaseRepository,
        setting_repo: BillingSettingRepository,
        run_repo: InvoiceRunRepository,
        generation_service_factory: Callable[[], InvoiceGenerationService],
        audit_service: AuditService | None = None,
        max_workers: int | None = None,
        error_summary_limit: int | None = None,
        release_worker_resources: Callable[[], None] | None = None,
    ) -> None:
        self.lease_repo = lease_repo
        self.setting_repo = setting_repo
        self.run_repo = run_repo
        self.generation_service_factory = generation_service_factory
        self.audit_service = audit_service
        self.max_workers = max_workers if max_workers is not None else settings.run_max_workers
        self.error_summary_limit = (
            error_summary_limit if error_summary_limit is not None else settings.run_error_summary_limit
        )
        self.release_worker_resources = release_worker_resources

    def eligible_leases(self, org_id: int, period: BillingPeriod) -> list[Lease]:
        """Active leases overlapping the period, minus those with auto-generation switched off.

        A lease with no billing setting stays eligible so the run records why it failed.
        """
        eligible = []
        for lease in self.lease_repo.get_active_leases(org_id, period.end):
            if lease.end_date is not None and lease.end_date < period.start:
                continue
            setting = self.setting_repo.get_by_lease(lease.id)
            if setting is not None and not setting.auto_generate:
                logger.debug("Lease %s skipped: auto-generate disabled", lease.id)
                continue
            eligible.append(lease)
        return eligible

    def run_monthly_billing(
        self,
        org_id: int,
        period: BillingPeriod,
        ctx: OperationContext,
        cancel_event: threading.Event | None = None,
    ) -> InvoiceRun:
        """Generate drafts for every eligible lease; re-running retries only leases without a success."""
        period.validate_bounds()
        run = self._start_run(org_id, period, ctx)

        succeeded = {item.lease_id for item in run.items if item.is_success}
        leases = self.eligible_leases(org_id, period)
        pending = [lease for lease in leases if lease.id not in succeeded]
        total_leases = len(succeeded | {lease.id for lease in leases})
        logger.info(
            "Invoice run %s for org %s period %s: %d eligible, %d already done, %d to process",
            run.run_number,
            org_id,
            period.label,
            len(leases),
            len(succeeded),
            len(pending),
        )

        with log_context(run_number=run.run_number):
            if self.max_workers <= 1:
                cancelled = self._process_inline(run, pending, period, ctx, cancel_event)
            else:
                cancelled = self._process_pooled(run, pending, period, ctx, cancel_event)
            return self._finish_run(run, total_leases, cancelled, ctx)

    def _start_run(self, org_id: int, period: BillingPeriod, ctx: OperationContext) -> InvoiceRun:
        run = self.run_repo.get_by_org_and_period(org_id, period)
        if run is None:
            try:
                return self.run_repo.create(
                    InvoiceRun(
                        org_id=org_id,
                        run_number=make_run_number(period),
                        period_start=period.start,
                        period_end=period.end,
                        status=InvoiceRunStatus.IN_PROGRESS,
                        started_at=ctx.now(),
                    ),
                    ctx,
                )
            except ConcurrencyConflict:
                run = self.run_repo.get_by_org_and_period(org_id, period)
                if run is None:
                    raise
        run.status = InvoiceRunStatus.IN_PROGRESS
        run.started_at = ctx.now()
        run.completed_at = None
        return self.run_repo.update(run, ctx)

    def _generate(
        self, run_number: str, lease_id: int, period: BillingPeriod, ctx: OperationContext
    ) -> InvoiceRunItem:
        with log_context(run_number=run_number, lease_id=lease_id):
            return self._generate_item(lease_id, period, ctx)

    def _generate_item(self, lease_id: int, period: BillingPeriod, ctx: OperationContext) -> InvoiceRunItem:
        try:
            invoice = self.generation_service_factory().generate_draft(lease_id, period, ctx)
        except BillingError as exc:
            logger.warning("Invoice generation failed for lease %s: %s", lease_id, exc.message)
            return InvoiceRunItem(lease_id=lease_id, is_success=False, error_message=exc.message, processed_at=ctx.now())
        except Exception as exc:
            logger.exception("Unexpected error generating invoice for lease %s", lease_id)
            return InvoiceRunItem(
                lease_id=lease_id,
                is_success=False,
                error_message=f"{type(exc).__name__}: {exc}",
                processed_at=ctx.now(),
            )
        return InvoiceRunItem(lease_id=lease_id, invoice_id=invoice.id, is_success=True, processed_at=ctx.now())

    def _generate_in_worker(
        self, run_number: str, lease_id: int, period: BillingPeriod, ctx: OperationContext
    ) -> InvoiceRunItem:
        try:
            return self._generate(run_number, lease_id, period, ctx)
        finally:
            if self.release_worker_resources is not None:
                self.release_worker_resources()

    def _record(self, run: InvoiceRun, item: InvoiceRunItem) -> None:
        item.run_id = run.id
        self.run_repo.save_item(item)

    def _process_inline(
        self,
        run: InvoiceRun,
        leases: list[Lease],
        period: BillingPeriod,
        ctx: OperationContext,
        cancel_event: threading.Event | None,
    ) -> bool:
        for lease in leases:
            if cancel_event is not None and cancel_event.is_set():
                return True
            self._record(run, self._generate(run.run_number, lease.id, period, ctx))
        return False

    def _process_pooled(
        self,
        run: InvoiceRun,
        leases: list[Lease],
        period: BillingPeriod,
        ctx: OperationContext,
        cancel_event: threading.Event | None,
    ) -> bool:
        cancelled = False
        queue = iter(leases)
        in_flight: set[Future[InvoiceRunItem]] = set()
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="invoice-run") as pool:
            while True:
                while not cancelled and len(in_flight) < self.max_workers:
                    if cancel_event is not None and cancel_event.is_set():
                        cancelled = True
                        logger.warning("Invoice run %s cancelled; finishing in-flight leases", run.run_number)
                        break
                    lease = next(queue, None)
                    if lease is None:
                        break
                    in_flight.add(pool.submit(self._generate_in_worker, run.run_number, lease.id, period, ctx))
                if not in_flight:
                    break
                done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    self._record(run, future.result())
        return cancelled

    def _finish_run(self, run: InvoiceRun, total_leases: int, cancelled: bool, ctx: OperationContext) -> InvoiceRun:
        items = self.run_repo.list_items(run.id)
        success = sum(1 for item in items if item.is_success)
        failure = len(items) - success

        if cancelled:
            status = InvoiceRunStatus.CANCELLED
        elif failure == 0:
            status = InvoiceRunStatus.COMPLETED
        elif success == 0:
            status = InvoiceRunStatus.FAILED
        else:
            status = InvoiceRunStatus.COMPLETED_WITH_ERRORS

        run.status = status
        run.total_leases = max(total_leases, len(items))
        run.success_count = success
        run.failure_count = failure
        run.error_message = summarize_errors(items, self.error_summary_limit)
        run.completed_at = ctx.now()
        saved = self.run_repo.update(run, ctx)

        logger.info(
            "Invoice run %s finished: status=%s total=%d success=%d failure=%d",
            saved.run_number,
            saved.status.value,
            saved.total_leases,
            saved.success_count,
            saved.failure_count,
        )
        if self.audit_service is not None:
            self.audit_service.safe_log(
                AuditEventType.INVOICE_RUN_COMPLETE,
                ctx=ctx,
                entity_type="invoice_run",
                entity_id=saved.id,
                entity_uuid=saved.uuid,
                new_state=serialize_invoice_run(saved, include_items=False),
            )
        return saved

    def get_run(self, run_id: int) -> InvoiceRun | None:
        return self.run_repo.get_by_id(run_id)

    def list_runs(self, org_id: int, limit: int = 20) -> list[InvoiceRun]:
        return self.run_repo.list_by_org(org_id, limit)
