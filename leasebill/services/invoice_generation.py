from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

from leasebill.exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from leasebill.models import round_money
from leasebill.models.audit_log import AuditEventType
from leasebill.models.billing_setting import BillingSetting
from leasebill.models.charge import RENT_CHARGE_TYPE, UTILITY_CHARGE_PREFIX
from leasebill.models.context import OperationContext
from leasebill.models.invoice import Invoice, InvoiceLine, InvoiceStatus, LineSource
from leasebill.models.lease import Lease
from leasebill.models.period import BillingPeriod
from leasebill.repositories.base import (
    BillingSettingRepository,
    InvoiceRepository,
    LeaseRepository,
    UtilityStatementRepository,
)
from leasebill.services.audit_service import AuditService
from leasebill.services.numbering import InvoiceNumberGenerator
from leasebill.services.recurring_charge_calculation import RecurringChargeCalculationService
from leasebill.services.rent_calculation import RentCalculationService
from leasebill.services.serializers import serialize_invoice
from leasebill.services.utility_calculation import UtilityCalculationService
from leasebill.settings import settings

logger = logging.getLogger(__name__)

UNIT_PRICE_PLACES = Decimal("0.0001")


class InvoiceGenerationService:
    def __init__(
        self,
        lease_repo: LeaseRepository,
        setting_repo: BillingSettingRepository,
        invoice_repo: InvoiceRepository,
        statement_repo: UtilityStatementRepository,
        rent_service: RentCalculationService,
        charge_service: RecurringChargeCalculationService,
        utility_service: UtilityCalculationService,
        number_generator: InvoiceNumberGenerator,
        audit_service: AuditService | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.lease_repo = lease_repo
        self.setting_repo = setting_repo
        self.invoice_repo = invoice_repo
        self.statement_repo = statement_repo
        self.rent_service = rent_service
        self.charge_service = charge_service
        self.utility_service = utility_service
        self.number_generator = number_generator
        self.audit_service = audit_service
        self.max_retries = max_retries or settings.generation_max_retries

    def generate_draft(self, lease_id: int, period: BillingPeriod, ctx: OperationContext) -> Invoice:
        """Create or refresh the Draft invoice for a lease and period.

        An invoice that already left Draft is returned unchanged. A Draft is
        rebuilt from scratch, so the same inputs always give the same lines.
        Losing a write race re-reads and reapplies up to ``max_retries`` times.
        """
        period.validate_bounds()
        lease = self.lease_repo.get_by_id(lease_id)
        if lease is None:
            raise NotFoundError("Lease", lease_id)
        if not lease.is_active:
            raise ValidationError(f"Lease {lease.label} is not active (status '{lease.status.value}')", field="lease_id")
        setting = self.setting_repo.get_by_lease(lease_id)
        if setting is None or not setting.is_active:
            raise ValidationError(f"Lease {lease.label} has no active billing setting", field="billing_setting")

        existing = self.invoice_repo.get_by_lease_and_period(lease_id, period)
        if existing is not None and existing.status != InvoiceStatus.DRAFT:
            logger.debug("Invoice %s already %s, leaving it unchanged", existing.invoice_number, existing.status.value)
            return existing

        lines = self.build_lines(lease, period, setting)

        attempt = 1
        while True:
            try:
                return self._save_draft(lease, period, setting, lines, ctx)
            except ConcurrencyConflict:
                if attempt >= self.max_retries:
                    raise
                logger.warning(
                    "Concurrent write on draft for lease %s period %s, retrying (%d/%d)",
                    lease_id,
                    period.label,
                    attempt,
                    self.max_retries,
                )
                attempt += 1

    def build_lines(self, lease: Lease, period: BillingPeriod, setting: BillingSetting) -> list[InvoiceLine]:
        """Rent, then recurring charges, then final utility statements, each traced to its source row."""
        method = setting.proration_method
        lines: list[InvoiceLine] = []

        for item in self.rent_service.calculate_rent(lease, period, method).line_items:
            lines.append(
                InvoiceLine(
                    charge_type=RENT_CHARGE_TYPE,
                    description=item.description,
                    quantity=Decimal("1"),
                    unit_price=item.amount,
                    amount=item.amount,
                    total_amount=item.amount,
                    source=LineSource.LEASE_TERM,
                    source_ref_id=item.lease_term_id,
                    period_start=item.period_start,
                    period_end=item.period_end,
                )
            )

        for item in self.charge_service.calculate_charges(lease, period, method).line_items:
            lines.append(
                InvoiceLine(
                    charge_type=item.charge_type,
                    description=item.description,
                    quantity=Decimal("1"),
                    unit_price=item.amount,
                    amount=item.amount,
                    tax_rate=item.tax_rate,
                    tax_amount=item.tax_amount,
                    total_amount=round_money(item.amount + item.tax_amount),
                    source=LineSource.RECURRING_CHARGE,
                    source_ref_id=item.charge_id,
                    period_start=item.period_start,
                    period_end=item.period_end,
                )
            )

        for statement in self.statement_repo.list_final_for_period(lease.id, period):
            calc = self.utility_service.calculate_statement(lease.org_id, statement)
            if calc.is_meter_based and calc.units_consumed:
                quantity = calc.units_consumed
                unit_price = (calc.total_amount / calc.units_consumed).quantize(UNIT_PRICE_PLACES)
            else:
                quantity = Decimal("1")
                unit_price = calc.total_amount
            lines.append(
                InvoiceLine(
                    charge_type=f"{UTILITY_CHARGE_PREFIX}_{statement.utility_type.value.upper()}",
                    description=calc.description,
                    quantity=quantity,
                    unit_price=unit_price,
                    amount=calc.total_amount,
                    total_amount=calc.total_amount,
                    source=LineSource.UTILITY_STATEMENT,
                    source_ref_id=statement.id,
                    period_start=statement.period_start,
                    period_end=statement.period_end,
                )
            )
        return lines

    def _save_draft(
        self,
        lease: Lease,
        period: BillingPeriod,
        setting: BillingSetting,
        lines: list[InvoiceLine],
        ctx: OperationContext,
    ) -> Invoice:
        existing = self.invoice_repo.get_by_lease_and_period(lease.id, period)
        if existing is not None and existing.status != InvoiceStatus.DRAFT:
            return existing

        invoice_date = period.end
        term_days = setting.payment_term_days
        if term_days is None:
            term_days = settings.default_payment_term_days
        fields = {
            "invoice_date": invoice_date,
            "due_date": invoice_date + timedelta(days=term_days),
            "payment_instructions": setting.payment_instructions,
        }

        if existing is None:
            invoice = Invoice(
                org_id=lease.org_id,
                lease_id=lease.id,
                period_start=period.start,
                period_end=period.end,
                invoice_number=self.number_generator.generate(
                    lease.org_id, invoice_date.year, setting.invoice_prefix or None
                ),
                **fields,
            )
            invoice.replace_lines(lines)
            saved = self.invoice_repo.create(invoice, ctx)
            previous_state = None
        else:
            previous_state = serialize_invoice(existing)
            invoice = existing.model_copy(update=fields, deep=True)
            invoice.replace_lines(lines)
            saved = self.invoice_repo.update(invoice, ctx)

        logger.info(
            "Draft invoice %s %s for lease %s period %s: total=%s lines=%d",
            saved.invoice_number,
            "created" if previous_state is None else "regenerated",
            lease.id,
            period.label,
            saved.total_amount,
            len(saved.lines),
        )
        if self.audit_service is not None:
            self.audit_service.safe_log(
                AuditEventType.INVOICE_GENERATE,
                ctx=ctx,
                entity_type="invoice",
                entity_id=saved.id,
                entity_uuid=saved.uuid,
                previous_state=previous_state,
                new_state=serialize_invoice(saved),
            )
        return saved
