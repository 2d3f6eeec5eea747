from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Connection, text
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import IntegrityError
from ulid import ULID

from leasebill.constants import TZ
from leasebill.exceptions import ConcurrencyConflict, DuplicateFinalStatementError
from leasebill.models import from_cents, from_decimal_str, to_cents, to_decimal_str
from leasebill.models.audit_log import AuditLog
from leasebill.models.billing_setting import BillingSetting, ProrationMethod
from leasebill.models.charge import ChargeFrequency, RecurringCharge
from leasebill.models.context import OperationContext
from leasebill.models.credit_note import CreditNote, CreditNoteLine, CreditNoteReason, CreditNoteStatus
from leasebill.models.invoice import Invoice, InvoiceLine, InvoiceStatus, LineSource
from leasebill.models.invoice_run import InvoiceRun, InvoiceRunItem, InvoiceRunStatus
from leasebill.models.lease import Lease, LeaseStatus, LeaseTerm
from leasebill.models.organization import Organization
from leasebill.models.period import BillingPeriod
from leasebill.models.utility import RateSlab, UtilityRatePlan, UtilityStatement, UtilityType
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

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(TZ)


def _d(value: date | None) -> str | None:
    """Dates are bound as ISO strings so they compare correctly on every backend."""
    if value is None:
        return None
    return value.isoformat()


class SQLAlchemyOrganizationRepository(OrganizationRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_org(row: RowMapping) -> Organization:
        return Organization(
            id=row["id"],
            uuid=row["uuid"],
            name=row["name"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create(self, org: Organization) -> Organization:
        org_uuid = str(ULID())
        now = _now()
        result = self.conn.execute(
            text(
                "INSERT INTO organizations (uuid, name, is_active, created_at, updated_at) "
                "VALUES (:uuid, :name, :is_active, :created_at, :updated_at)"
            ),
            {"uuid": org_uuid, "name": org.name, "is_active": org.is_active, "created_at": now, "updated_at": now},
        )
        org_id = result.lastrowid
        self.conn.commit()
        created = self.get_by_id(org_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve organization after create (id={org_id})")
        return created

    def get_by_id(self, org_id: int) -> Organization | None:
        row = (
            self.conn.execute(text("SELECT * FROM organizations WHERE id = :id"), {"id": org_id})
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_org(row)

    def list_all(self) -> list[Organization]:
        rows = self.conn.execute(text("SELECT * FROM organizations ORDER BY id")).mappings().fetchall()
        return [self._row_to_org(row) for row in rows]


class SQLAlchemyLeaseRepository(LeaseRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_lease(row: RowMapping) -> Lease:
        return Lease(
            id=row["id"],
            uuid=row["uuid"],
            org_id=row["org_id"],
            lease_number=row["lease_number"],
            unit_label=row["unit_label"],
            tenant_name=row["tenant_name"],
            status=LeaseStatus(row["status"]),
            start_date=row["start_date"],
            end_date=row["end_date"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
        )

    @staticmethod
    def _row_to_term(row: RowMapping) -> LeaseTerm:
        return LeaseTerm(
            id=row["id"],
            lease_id=row["lease_id"],
            effective_from=row["effective_from"],
            effective_to=row["effective_to"],
            monthly_rent=from_cents(row["monthly_rent"]),
            notes=row["notes"],
            created_at=row["created_at"],
        )

    def create(self, lease: Lease, ctx: OperationContext) -> Lease:
        lease_uuid = str(ULID())
        now = ctx.now()
        result = self.conn.execute(
            text(
                "INSERT INTO leases (uuid, org_id, lease_number, unit_label, tenant_name, status, "
                "start_date, end_date, version, created_at, updated_at, created_by, updated_by) "
                "VALUES (:uuid, :org_id, :lease_number, :unit_label, :tenant_name, :status, "
                ":start_date, :end_date, 1, :created_at, :updated_at, :created_by, :updated_by)"
            ),
            {
                "uuid": lease_uuid,
                "org_id": lease.org_id,
                "lease_number": lease.lease_number,
                "unit_label": lease.unit_label,
                "tenant_name": lease.tenant_name,
                "status": lease.status.value,
                "start_date": _d(lease.start_date),
                "end_date": _d(lease.end_date),
                "created_at": now,
                "updated_at": now,
                "created_by": ctx.actor_label,
                "updated_by": ctx.actor_label,
            },
        )
        lease_id = result.lastrowid
        self.conn.commit()
        created = self.get_by_id(lease_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve lease after create (id={lease_id})")
        return created

    def get_by_id(self, lease_id: int) -> Lease | None:
        row = self.conn.execute(text("SELECT * FROM leases WHERE id = :id"), {"id": lease_id}).mappings().fetchone()
        if row is None:
            return None
        return self._row_to_lease(row)

    def get_active_leases(self, org_id: int, as_of: date) -> list[Lease]:
        rows = (
            self.conn.execute(
                text(
                    "SELECT * FROM leases WHERE org_id = :org_id AND status = :status "
                    "AND start_date <= :as_of ORDER BY id"
                ),
                {"org_id": org_id, "status": LeaseStatus.ACTIVE.value, "as_of": _d(as_of)},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_lease(row) for row in rows]

    def add_term(self, term: LeaseTerm) -> LeaseTerm:
        result = self.conn.execute(
            text(
                "INSERT INTO lease_terms (lease_id, effective_from, effective_to, monthly_rent, notes, created_at) "
                "VALUES (:lease_id, :effective_from, :effective_to, :monthly_rent, :notes, :created_at)"
            ),
            {
                "lease_id": term.lease_id,
                "effective_from": _d(term.effective_from),
                "effective_to": _d(term.effective_to),
                "monthly_rent": to_cents(term.monthly_rent),
                "notes": term.notes,
                "created_at": _now(),
            },
        )
        term_id = result.lastrowid
        self.conn.commit()
        row = self.conn.execute(text("SELECT * FROM lease_terms WHERE id = :id"), {"id": term_id}).mappings().fetchone()
        if row is None:
            raise RuntimeError(f"Failed to retrieve lease term after create (id={term_id})")
        return self._row_to_term(row)

    def get_lease_terms(self, lease_id: int, period: BillingPeriod) -> list[LeaseTerm]:
        rows = (
            self.conn.execute(
                text(
                    "SELECT * FROM lease_terms WHERE lease_id = :lease_id "
                    "AND effective_from <= :period_end "
                    "AND (effective_to IS NULL OR effective_to >= :period_start) "
                    "ORDER BY effective_from, id"
                ),
                {"lease_id": lease_id, "period_start": _d(period.start), "period_end": _d(period.end)},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_term(row) for row in rows]


class SQLAlchemyBillingSettingRepository(BillingSettingRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_setting(row: RowMapping) -> BillingSetting:
        return BillingSetting(
            id=row["id"],
            lease_id=row["lease_id"],
            billing_day=row["billing_day"],
            payment_term_days=row["payment_term_days"],
            proration_method=ProrationMethod(row["proration_method"]),
            auto_generate=bool(row["auto_generate"]),
            is_active=bool(row["is_active"]),
            invoice_prefix=row["invoice_prefix"],
            payment_instructions=row["payment_instructions"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
        )

    def get_by_lease(self, lease_id: int) -> BillingSetting | None:
        row = (
            self.conn.execute(
                text("SELECT * FROM lease_billing_settings WHERE lease_id = :lease_id"),
                {"lease_id": lease_id},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_setting(row)

    def upsert(self, setting: BillingSetting, ctx: OperationContext) -> BillingSetting:
        now = ctx.now()
        params = {
            "lease_id": setting.lease_id,
            "billing_day": setting.billing_day,
            "payment_term_days": setting.payment_term_days,
            "proration_method": setting.proration_method.value,
            "auto_generate": setting.auto_generate,
            "is_active": setting.is_active,
            "invoice_prefix": setting.invoice_prefix,
            "payment_instructions": setting.payment_instructions,
            "now": now,
            "actor": ctx.actor_label,
        }
        existing = self.get_by_lease(setting.lease_id)
        if existing is None:
            self.conn.execute(
                text(
                    "INSERT INTO lease_billing_settings (lease_id, billing_day, payment_term_days, "
                    "proration_method, auto_generate, is_active, invoice_prefix, payment_instructions, "
                    "version, created_at, updated_at, created_by, updated_by) "
                    "VALUES (:lease_id, :billing_day, :payment_term_days, :proration_method, :auto_generate, "
                    ":is_active, :invoice_prefix, :payment_instructions, 1, :now, :now, :actor, :actor)"
                ),
                params,
            )
        else:
            result = self.conn.execute(
                text(
                    "UPDATE lease_billing_settings SET billing_day = :billing_day, "
                    "payment_term_days = :payment_term_days, proration_method = :proration_method, "
                    "auto_generate = :auto_generate, is_active = :is_active, invoice_prefix = :invoice_prefix, "
                    "payment_instructions = :payment_instructions, version = version + 1, "
                    "updated_at = :now, updated_by = :actor "
                    "WHERE lease_id = :lease_id AND version = :expected_version"
                ),
                {**params, "expected_version": setting.version if setting.id else existing.version},
            )
            if result.rowcount == 0:
                self.conn.rollback()
                raise ConcurrencyConflict(
                    f"Billing setting for lease {setting.lease_id} was modified concurrently",
                    {"lease_id": setting.lease_id, "expected_version": setting.version},
                )
        self.conn.commit()
        saved = self.get_by_lease(setting.lease_id)
        if saved is None:
            raise RuntimeError(f"Failed to retrieve billing setting after upsert (lease_id={setting.lease_id})")
        return saved


class SQLAlchemyRecurringChargeRepository(RecurringChargeRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_charge(row: RowMapping) -> RecurringCharge:
        return RecurringCharge(
            id=row["id"],
            uuid=row["uuid"],
            lease_id=row["lease_id"],
            charge_type=row["charge_type"],
            description=row["description"],
            amount=from_cents(row["amount"]),
            frequency=ChargeFrequency(row["frequency"]),
            start_date=row["start_date"],
            end_date=row["end_date"],
            is_active=bool(row["is_active"]),
            tax_rate=from_decimal_str(row["tax_rate"]) or Decimal("0"),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
        )

    def create(self, charge: RecurringCharge, ctx: OperationContext) -> RecurringCharge:
        charge_uuid = str(ULID())
        now = ctx.now()
        result = self.conn.execute(
            text(
                "INSERT INTO recurring_charges (uuid, lease_id, charge_type, description, amount, frequency, "
                "start_date, end_date, is_active, tax_rate, version, created_at, updated_at, created_by, updated_by) "
                "VALUES (:uuid, :lease_id, :charge_type, :description, :amount, :frequency, :start_date, "
                ":end_date, :is_active, :tax_rate, 1, :now, :now, :actor, :actor)"
            ),
            {
                "uuid": charge_uuid,
                "lease_id": charge.lease_id,
                "charge_type": charge.charge_type,
                "description": charge.description,
                "amount": to_cents(charge.amount),
                "frequency": charge.frequency.value,
                "start_date": _d(charge.start_date),
                "end_date": _d(charge.end_date),
                "is_active": charge.is_active,
                "tax_rate": to_decimal_str(charge.tax_rate),
                "now": now,
                "actor": ctx.actor_label,
            },
        )
        charge_id = result.lastrowid
        self.conn.commit()
        row = (
            self.conn.execute(text("SELECT * FROM recurring_charges WHERE id = :id"), {"id": charge_id})
            .mappings()
            .fetchone()
        )
        if row is None:
            raise RuntimeError(f"Failed to retrieve recurring charge after create (id={charge_id})")
        return self._row_to_charge(row)

    def get_recurring_charges(self, lease_id: int, period: BillingPeriod) -> list[RecurringCharge]:
        rows = (
            self.conn.execute(
                text(
                    "SELECT * FROM recurring_charges WHERE lease_id = :lease_id AND is_active = :active "
                    "AND start_date <= :period_end AND (end_date IS NULL OR end_date >= :period_start) "
                    "ORDER BY id"
                ),
                {
                    "lease_id": lease_id,
                    "active": True,
                    "period_start": _d(period.start),
                    "period_end": _d(period.end),
                },
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_charge(row) for row in rows]


class SQLAlchemyUtilityRatePlanRepository(UtilityRatePlanRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def _row_to_plan(self, row: RowMapping) -> UtilityRatePlan:
        slab_rows = (
            self.conn.execute(
                text("SELECT * FROM rate_slabs WHERE rate_plan_id = :plan_id ORDER BY slab_order, id"),
                {"plan_id": row["id"]},
            )
            .mappings()
            .fetchall()
        )
        return UtilityRatePlan(
            id=row["id"],
            uuid=row["uuid"],
            org_id=row["org_id"],
            utility_type=UtilityType(row["utility_type"]),
            name=row["name"],
            effective_from=row["effective_from"],
            effective_to=row["effective_to"],
            is_active=bool(row["is_active"]),
            slabs=[
                RateSlab(
                    id=slab["id"],
                    slab_order=slab["slab_order"],
                    from_units=from_decimal_str(slab["from_units"]),
                    to_units=from_decimal_str(slab["to_units"]),
                    rate_per_unit=from_decimal_str(slab["rate_per_unit"]),
                    fixed_charge=from_cents(slab["fixed_charge"]) if slab["fixed_charge"] is not None else None,
                )
                for slab in slab_rows
            ],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create(self, plan: UtilityRatePlan) -> UtilityRatePlan:
        plan_uuid = str(ULID())
        now = _now()
        result = self.conn.execute(
            text(
                "INSERT INTO utility_rate_plans (uuid, org_id, utility_type, name, effective_from, effective_to, "
                "is_active, created_at, updated_at) "
                "VALUES (:uuid, :org_id, :utility_type, :name, :effective_from, :effective_to, :is_active, "
                ":created_at, :updated_at)"
            ),
            {
                "uuid": plan_uuid,
                "org_id": plan.org_id,
                "utility_type": plan.utility_type.value,
                "name": plan.name,
                "effective_from": _d(plan.effective_from),
                "effective_to": _d(plan.effective_to),
                "is_active": plan.is_active,
                "created_at": now,
                "updated_at": now,
            },
        )
        plan_id = result.lastrowid
        for i, slab in enumerate(plan.slabs):
            self.conn.execute(
                text(
                    "INSERT INTO rate_slabs (rate_plan_id, slab_order, from_units, to_units, rate_per_unit, "
                    "fixed_charge) VALUES (:rate_plan_id, :slab_order, :from_units, :to_units, :rate_per_unit, "
                    ":fixed_charge)"
                ),
                {
                    "rate_plan_id": plan_id,
                    "slab_order": slab.slab_order or i,
                    "from_units": to_decimal_str(slab.from_units),
                    "to_units": to_decimal_str(slab.to_units),
                    "rate_per_unit": to_decimal_str(slab.rate_per_unit),
                    "fixed_charge": to_cents(slab.fixed_charge) if slab.fixed_charge is not None else None,
                },
            )
        self.conn.commit()
        created = self.get_by_id(plan_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve rate plan after create (id={plan_id})")
        return created

    def get_by_id(self, plan_id: int) -> UtilityRatePlan | None:
        row = (
            self.conn.execute(text("SELECT * FROM utility_rate_plans WHERE id = :id"), {"id": plan_id})
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_plan(row)

    def get_rate_plan(self, org_id: int, utility_type: UtilityType, as_of: date) -> UtilityRatePlan | None:
        row = (
            self.conn.execute(
                text(
                    "SELECT * FROM utility_rate_plans WHERE org_id = :org_id AND utility_type = :utility_type "
                    "AND is_active = :active AND effective_from <= :as_of "
                    "AND (effective_to IS NULL OR effective_to >= :as_of) "
                    "ORDER BY effective_from DESC, id DESC LIMIT 1"
                ),
                {"org_id": org_id, "utility_type": utility_type.value, "active": True, "as_of": _d(as_of)},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_plan(row)


class SQLAlchemyUtilityStatementRepository(UtilityStatementRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_statement(row: RowMapping) -> UtilityStatement:
        return UtilityStatement(
            id=row["id"],
            uuid=row["uuid"],
            lease_id=row["lease_id"],
            utility_type=UtilityType(row["utility_type"]),
            period_start=row["period_start"],
            period_end=row["period_end"],
            is_meter_based=bool(row["is_meter_based"]),
            previous_reading=from_decimal_str(row["previous_reading"]),
            current_reading=from_decimal_str(row["current_reading"]),
            meter_rollover=bool(row["meter_rollover"]),
            meter_capacity=from_decimal_str(row["meter_capacity"]),
            direct_bill_amount=(
                from_cents(row["direct_bill_amount"]) if row["direct_bill_amount"] is not None else None
            ),
            rate_plan_id=row["rate_plan_id"],
            units_consumed=from_decimal_str(row["units_consumed"]),
            total_amount=from_cents(row["total_amount"]),
            version=row["version"],
            is_final=bool(row["is_final"]),
            notes=row["notes"],
            row_version=row["row_version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
        )

    def create(self, statement: UtilityStatement, ctx: OperationContext) -> UtilityStatement:
        statement_uuid = str(ULID())
        now = ctx.now()
        try:
            result = self.conn.execute(
                text(
                    "INSERT INTO utility_statements (uuid, lease_id, utility_type, period_start, period_end, "
                    "is_meter_based, previous_reading, current_reading, meter_rollover, meter_capacity, "
                    "direct_bill_amount, rate_plan_id, units_consumed, total_amount, version, is_final, notes, "
                    "row_version, created_at, updated_at, created_by, updated_by) "
                    "VALUES (:uuid, :lease_id, :utility_type, :period_start, :period_end, :is_meter_based, "
                    ":previous_reading, :current_reading, :meter_rollover, :meter_capacity, :direct_bill_amount, "
                    ":rate_plan_id, :units_consumed, :total_amount, :version, :is_final, :notes, 1, :now, :now, "
                    ":actor, :actor)"
                ),
                {
                    "uuid": statement_uuid,
                    "lease_id": statement.lease_id,
                    "utility_type": statement.utility_type.value,
                    "period_start": _d(statement.period_start),
                    "period_end": _d(statement.period_end),
                    "is_meter_based": statement.is_meter_based,
                    "previous_reading": to_decimal_str(statement.previous_reading),
                    "current_reading": to_decimal_str(statement.current_reading),
                    "meter_rollover": statement.meter_rollover,
                    "meter_capacity": to_decimal_str(statement.meter_capacity),
                    "direct_bill_amount": (
                        to_cents(statement.direct_bill_amount) if statement.direct_bill_amount is not None else None
                    ),
                    "rate_plan_id": statement.rate_plan_id,
                    "units_consumed": to_decimal_str(statement.units_consumed),
                    "total_amount": to_cents(statement.total_amount),
                    "version": statement.version,
                    "is_final": statement.is_final,
                    "notes": statement.notes,
                    "now": now,
                    "actor": ctx.actor_label,
                },
            )
        except IntegrityError as exc:
            self.conn.rollback()
            if statement.is_final and self.get_final(statement.lease_id, statement.utility_type, statement.period):
                raise DuplicateFinalStatementError(
                    f"A final {statement.utility_type.value} statement already exists for lease "
                    f"{statement.lease_id} and period {statement.period.label}",
                    field="is_final",
                ) from exc
            raise ConcurrencyConflict(
                f"Statement version {statement.version} for lease {statement.lease_id} was recorded concurrently",
                {"lease_id": statement.lease_id, "version": statement.version},
            ) from exc
        statement_id = result.lastrowid
        self.conn.commit()
        created = self.get_by_id(statement_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve utility statement after create (id={statement_id})")
        return created

    def get_by_id(self, statement_id: int) -> UtilityStatement | None:
        row = (
            self.conn.execute(text("SELECT * FROM utility_statements WHERE id = :id"), {"id": statement_id})
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_statement(row)

    def list_versions(self, lease_id: int, utility_type: UtilityType, period: BillingPeriod) -> list[UtilityStatement]:
        rows = (
            self.conn.execute(
                text(
                    "SELECT * FROM utility_statements WHERE lease_id = :lease_id AND utility_type = :utility_type "
                    "AND period_start = :period_start AND period_end = :period_end ORDER BY version"
                ),
                {
                    "lease_id": lease_id,
                    "utility_type": utility_type.value,
                    "period_start": _d(period.start),
                    "period_end": _d(period.end),
                },
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_statement(row) for row in rows]

    def get_final(self, lease_id: int, utility_type: UtilityType, period: BillingPeriod) -> UtilityStatement | None:
        row = (
            self.conn.execute(
                text(
                    "SELECT * FROM utility_statements WHERE lease_id = :lease_id AND utility_type = :utility_type "
                    "AND period_start = :period_start AND period_end = :period_end AND is_final = :final"
                ),
                {
                    "lease_id": lease_id,
                    "utility_type": utility_type.value,
                    "period_start": _d(period.start),
                    "period_end": _d(period.end),
                    "final": True,
                },
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_statement(row)

    def list_final_for_period(self, lease_id: int, period: BillingPeriod) -> list[UtilityStatement]:
        rows = (
            self.conn.execute(
                text(
                    "SELECT * FROM utility_statements WHERE lease_id = :lease_id AND is_final = :final "
                    "AND period_start <= :period_end AND period_end >= :period_start "
                    "ORDER BY utility_type, period_start"
                ),
                {"lease_id": lease_id, "final": True, "period_start": _d(period.start), "period_end": _d(period.end)},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_statement(row) for row in rows]

    def update(self, statement: UtilityStatement, ctx: OperationContext) -> UtilityStatement:
        try:
            result = self.conn.execute(
                text(
                    "UPDATE utility_statements SET is_final = :is_final, notes = :notes, "
                    "units_consumed = :units_consumed, total_amount = :total_amount, rate_plan_id = :rate_plan_id, "
                    "row_version = row_version + 1, updated_at = :now, updated_by = :actor "
                    "WHERE id = :id AND row_version = :expected_version"
                ),
                {
                    "is_final": statement.is_final,
                    "notes": statement.notes,
                    "units_consumed": to_decimal_str(statement.units_consumed),
                    "total_amount": to_cents(statement.total_amount),
                    "rate_plan_id": statement.rate_plan_id,
                    "now": ctx.now(),
                    "actor": ctx.actor_label,
                    "id": statement.id,
                    "expected_version": statement.row_version,
                },
            )
        except IntegrityError as exc:
            self.conn.rollback()
            raise DuplicateFinalStatementError(
                f"A final {statement.utility_type.value} statement already exists for lease "
                f"{statement.lease_id} and period {statement.period.label}",
                field="is_final",
            ) from exc
        if result.rowcount == 0:
            self.conn.rollback()
            raise ConcurrencyConflict(
                f"Utility statement {statement.id} was modified concurrently",
                {"statement_id": statement.id, "expected_version": statement.row_version},
            )
        self.conn.commit()
        saved = self.get_by_id(statement.id)
        if saved is None:
            raise RuntimeError(f"Failed to retrieve utility statement after update (id={statement.id})")
        return saved


class SQLAlchemyInvoiceRepository(InvoiceRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _build_invoice(row: RowMapping, line_rows: list[RowMapping]) -> Invoice:
        return Invoice(
            id=row["id"],
            uuid=row["uuid"],
            org_id=row["org_id"],
            lease_id=row["lease_id"],
            invoice_number=row["invoice_number"],
            status=InvoiceStatus(row["status"]),
            invoice_date=row["invoice_date"],
            due_date=row["due_date"],
            period_start=row["period_start"],
            period_end=row["period_end"],
            subtotal=from_cents(row["subtotal"]),
            tax_amount=from_cents(row["tax_amount"]),
            total_amount=from_cents(row["total_amount"]),
            paid_amount=from_cents(row["paid_amount"]),
            credited_amount=from_cents(row["credited_amount"]),
            payment_instructions=row["payment_instructions"],
            notes=row["notes"],
            issued_at=row["issued_at"],
            voided_at=row["voided_at"],
            void_reason=row["void_reason"] or "",
            lines=[
                InvoiceLine(
                    id=line["id"],
                    invoice_id=line["invoice_id"],
                    line_number=line["line_number"],
                    charge_type=line["charge_type"],
                    description=line["description"],
                    quantity=from_decimal_str(line["quantity"]),
                    unit_price=from_decimal_str(line["unit_price"]),
                    amount=from_cents(line["amount"]),
                    tax_rate=from_decimal_str(line["tax_rate"]),
                    tax_amount=from_cents(line["tax_amount"]),
                    total_amount=from_cents(line["total_amount"]),
                    source=LineSource(line["source"]),
                    source_ref_id=line["source_ref_id"],
                    period_start=line["period_start"],
                    period_end=line["period_end"],
                )
                for line in line_rows
            ],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
        )

    def _row_to_invoice(self, row: RowMapping) -> Invoice:
        lines = (
            self.conn.execute(
                text("SELECT * FROM invoice_lines WHERE invoice_id = :invoice_id ORDER BY line_number"),
                {"invoice_id": row["id"]},
            )
            .mappings()
            .fetchall()
        )
        return self._build_invoice(row, list(lines))

    @staticmethod
    def _invoice_params(invoice: Invoice) -> dict:
        return {
            "invoice_number": invoice.invoice_number,
            "status": invoice.status.value,
            "invoice_date": _d(invoice.invoice_date),
            "due_date": _d(invoice.due_date),
            "subtotal": to_cents(invoice.subtotal),
            "tax_amount": to_cents(invoice.tax_amount),
            "total_amount": to_cents(invoice.total_amount),
            "paid_amount": to_cents(invoice.paid_amount),
            "credited_amount": to_cents(invoice.credited_amount),
            "payment_instructions": invoice.payment_instructions,
            "notes": invoice.notes,
            "issued_at": invoice.issued_at,
            "voided_at": invoice.voided_at,
            "void_reason": invoice.void_reason,
        }

    def _insert_lines(self, invoice_id: int, lines: list[InvoiceLine]) -> None:
        for line in lines:
            self.conn.execute(
                text(
                    "INSERT INTO invoice_lines (invoice_id, line_number, charge_type, description, quantity, "
                    "unit_price, amount, tax_rate, tax_amount, total_amount, source, source_ref_id, "
                    "period_start, period_end) "
                    "VALUES (:invoice_id, :line_number, :charge_type, :description, :quantity, :unit_price, "
                    ":amount, :tax_rate, :tax_amount, :total_amount, :source, :source_ref_id, "
                    ":period_start, :period_end)"
                ),
                {
                    "invoice_id": invoice_id,
                    "line_number": line.line_number,
                    "charge_type": line.charge_type,
                    "description": line.description,
                    "quantity": to_decimal_str(line.quantity),
                    "unit_price": to_decimal_str(line.unit_price),
                    "amount": to_cents(line.amount),
                    "tax_rate": to_decimal_str(line.tax_rate),
                    "tax_amount": to_cents(line.tax_amount),
                    "total_amount": to_cents(line.total_amount),
                    "source": line.source.value,
                    "source_ref_id": line.source_ref_id,
                    "period_start": _d(line.period_start),
                    "period_end": _d(line.period_end),
                },
            )

    def create(self, invoice: Invoice, ctx: OperationContext) -> Invoice:
        invoice_uuid = str(ULID())
        now = ctx.now()
        try:
            result = self.conn.execute(
                text(
                    "INSERT INTO invoices (uuid, org_id, lease_id, invoice_number, status, invoice_date, due_date, "
                    "period_start, period_end, subtotal, tax_amount, total_amount, paid_amount, credited_amount, "
                    "payment_instructions, notes, issued_at, voided_at, void_reason, version, "
                    "created_at, updated_at, created_by, updated_by) "
                    "VALUES (:uuid, :org_id, :lease_id, :invoice_number, :status, :invoice_date, :due_date, "
                    ":period_start, :period_end, :subtotal, :tax_amount, :total_amount, :paid_amount, "
                    ":credited_amount, :payment_instructions, :notes, :issued_at, :voided_at, :void_reason, 1, "
                    ":now, :now, :actor, :actor)"
                ),
                {
                    **self._invoice_params(invoice),
                    "uuid": invoice_uuid,
                    "org_id": invoice.org_id,
                    "lease_id": invoice.lease_id,
                    "period_start": _d(invoice.period_start),
                    "period_end": _d(invoice.period_end),
                    "now": now,
                    "actor": ctx.actor_label,
                },
            )
            invoice_id = result.lastrowid
            self._insert_lines(invoice_id, invoice.lines)
        except IntegrityError as exc:
            self.conn.rollback()
            if self.get_by_lease_and_period(invoice.lease_id, invoice.period) is not None:
                raise ConcurrencyConflict(
                    f"An invoice for lease {invoice.lease_id} and period {invoice.period.label} already exists",
                    {"lease_id": invoice.lease_id, "period": invoice.period.label},
                ) from exc
            raise ConcurrencyConflict(
                f"Invoice number {invoice.invoice_number} is already taken in organization {invoice.org_id}",
                {"org_id": invoice.org_id, "invoice_number": invoice.invoice_number},
            ) from exc
        self.conn.commit()
        created = self.get_by_id(invoice_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve invoice after create (id={invoice_id})")
        return created

    def get_by_id(self, invoice_id: int) -> Invoice | None:
        row = self.conn.execute(text("SELECT * FROM invoices WHERE id = :id"), {"id": invoice_id}).mappings().fetchone()
        if row is None:
            return None
        return self._row_to_invoice(row)

    def get_by_number(self, org_id: int, invoice_number: str) -> Invoice | None:
        row = (
            self.conn.execute(
                text("SELECT * FROM invoices WHERE org_id = :org_id AND invoice_number = :number"),
                {"org_id": org_id, "number": invoice_number},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_invoice(row)

    def get_by_lease_and_period(self, lease_id: int, period: BillingPeriod) -> Invoice | None:
        row = (
            self.conn.execute(
                text(
                    "SELECT * FROM invoices WHERE lease_id = :lease_id "
                    "AND period_start = :period_start AND period_end = :period_end"
                ),
                {"lease_id": lease_id, "period_start": _d(period.start), "period_end": _d(period.end)},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_invoice(row)

    def update(self, invoice: Invoice, ctx: OperationContext) -> Invoice:
        result = self.conn.execute(
            text(
                "UPDATE invoices SET invoice_number = :invoice_number, status = :status, "
                "invoice_date = :invoice_date, due_date = :due_date, subtotal = :subtotal, "
                "tax_amount = :tax_amount, total_amount = :total_amount, paid_amount = :paid_amount, "
                "credited_amount = :credited_amount, payment_instructions = :payment_instructions, "
                "notes = :notes, issued_at = :issued_at, voided_at = :voided_at, void_reason = :void_reason, "
                "version = version + 1, updated_at = :now, updated_by = :actor "
                "WHERE id = :id AND version = :expected_version"
            ),
            {
                **self._invoice_params(invoice),
                "now": ctx.now(),
                "actor": ctx.actor_label,
                "id": invoice.id,
                "expected_version": invoice.version,
            },
        )
        if result.rowcount == 0:
            self.conn.rollback()
            raise ConcurrencyConflict(
                f"Invoice {invoice.id} was modified concurrently (expected version {invoice.version})",
                {"invoice_id": invoice.id, "expected_version": invoice.version},
            )
        if invoice.status == InvoiceStatus.DRAFT:
            self.conn.execute(
                text("DELETE FROM invoice_lines WHERE invoice_id = :invoice_id"),
                {"invoice_id": invoice.id},
            )
            self._insert_lines(invoice.id, invoice.lines)
        self.conn.commit()
        saved = self.get_by_id(invoice.id)
        if saved is None:
            raise RuntimeError(f"Failed to retrieve invoice after update (id={invoice.id})")
        return saved

    def list_past_due(self, as_of: date, org_id: int | None = None) -> list[Invoice]:
        sql = (
            "SELECT * FROM invoices WHERE status IN (:issued, :partially_paid) AND due_date < :as_of "
            "AND total_amount - paid_amount - credited_amount > 0"
        )
        params: dict = {
            "issued": InvoiceStatus.ISSUED.value,
            "partially_paid": InvoiceStatus.PARTIALLY_PAID.value,
            "as_of": _d(as_of),
        }
        if org_id is not None:
            sql += " AND org_id = :org_id"
            params["org_id"] = org_id
        rows = self.conn.execute(text(sql + " ORDER BY due_date, id"), params).mappings().fetchall()
        return [self._row_to_invoice(row) for row in rows]


class SQLAlchemyCreditNoteRepository(CreditNoteRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _build_note(row: RowMapping, line_rows: list[RowMapping]) -> CreditNote:
        return CreditNote(
            id=row["id"],
            uuid=row["uuid"],
            org_id=row["org_id"],
            invoice_id=row["invoice_id"],
            credit_note_number=row["credit_note_number"],
            reason=CreditNoteReason(row["reason"]),
            status=CreditNoteStatus(row["status"]),
            notes=row["notes"],
            total_amount=from_cents(row["total_amount"]),
            issued_at=row["issued_at"],
            lines=[
                CreditNoteLine(
                    id=line["id"],
                    credit_note_id=line["credit_note_id"],
                    invoice_line_id=line["invoice_line_id"],
                    line_number=line["line_number"],
                    description=line["description"],
                    amount=from_cents(line["amount"]),
                    tax_amount=from_cents(line["tax_amount"]),
                    total_amount=from_cents(line["total_amount"]),
                    notes=line["notes"],
                )
                for line in line_rows
            ],
            created_at=row["created_at"],
            created_by=row["created_by"],
        )

    def _row_to_note(self, row: RowMapping) -> CreditNote:
        lines = (
            self.conn.execute(
                text("SELECT * FROM credit_note_lines WHERE credit_note_id = :note_id ORDER BY line_number"),
                {"note_id": row["id"]},
            )
            .mappings()
            .fetchall()
        )
        return self._build_note(row, list(lines))

    def create(self, note: CreditNote, ctx: OperationContext, invoice: Invoice | None = None) -> CreditNote:
        now = ctx.now()
        try:
            if invoice is not None:
                self._apply_to_invoice(invoice, ctx)
            note_id = self._insert_note(note, now, ctx)
        except IntegrityError as exc:
            self.conn.rollback()
            raise ConcurrencyConflict(
                f"Credit note number {note.credit_note_number} is already taken in organization {note.org_id}",
                {"org_id": note.org_id, "credit_note_number": note.credit_note_number},
            ) from exc
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        created = self.get_by_id(note_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve credit note after create (id={note_id})")
        return created

    def _apply_to_invoice(self, invoice: Invoice, ctx: OperationContext) -> None:
        result = self.conn.execute(
            text(
                "UPDATE invoices SET credited_amount = :credited_amount, version = version + 1, "
                "updated_at = :now, updated_by = :actor "
                "WHERE id = :id AND version = :expected_version"
            ),
            {
                "credited_amount": to_cents(invoice.credited_amount),
                "now": ctx.now(),
                "actor": ctx.actor_label,
                "id": invoice.id,
                "expected_version": invoice.version,
            },
        )
        if result.rowcount == 0:
            raise ConcurrencyConflict(
                f"Invoice {invoice.id} was modified concurrently (expected version {invoice.version})",
                {"invoice_id": invoice.id, "expected_version": invoice.version},
            )

    def _insert_note(self, note: CreditNote, now: datetime, ctx: OperationContext) -> int:
        result = self.conn.execute(
            text(
                "INSERT INTO credit_notes (uuid, org_id, invoice_id, credit_note_number, reason, status, notes, "
                "total_amount, issued_at, created_at, created_by) "
                "VALUES (:uuid, :org_id, :invoice_id, :number, :reason, :status, :notes, :total_amount, "
                ":issued_at, :created_at, :created_by)"
            ),
            {
                "uuid": str(ULID()),
                "org_id": note.org_id,
                "invoice_id": note.invoice_id,
                "number": note.credit_note_number,
                "reason": note.reason.value,
                "status": note.status.value,
                "notes": note.notes,
                "total_amount": to_cents(note.total_amount),
                "issued_at": note.issued_at,
                "created_at": now,
                "created_by": ctx.actor_label,
            },
        )
        note_id = result.lastrowid
        for line in note.lines:
            self.conn.execute(
                text(
                    "INSERT INTO credit_note_lines (credit_note_id, invoice_line_id, line_number, description, "
                    "amount, tax_amount, total_amount, notes) "
                    "VALUES (:credit_note_id, :invoice_line_id, :line_number, :description, :amount, "
                    ":tax_amount, :total_amount, :notes)"
                ),
                {
                    "credit_note_id": note_id,
                    "invoice_line_id": line.invoice_line_id,
                    "line_number": line.line_number,
                    "description": line.description,
                    "amount": to_cents(line.amount),
                    "tax_amount": to_cents(line.tax_amount),
                    "total_amount": to_cents(line.total_amount),
                    "notes": line.notes,
                },
            )
        return note_id

    def get_by_id(self, note_id: int) -> CreditNote | None:
        row = self.conn.execute(text("SELECT * FROM credit_notes WHERE id = :id"), {"id": note_id}).mappings().fetchone()
        if row is None:
            return None
        return self._row_to_note(row)

    def list_by_invoice(self, invoice_id: int) -> list[CreditNote]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM credit_notes WHERE invoice_id = :invoice_id ORDER BY id"),
                {"invoice_id": invoice_id},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_note(row) for row in rows]

    def credited_by_line(self, invoice_id: int) -> dict[int, Decimal]:
        rows = (
            self.conn.execute(
                text(
                    "SELECT l.invoice_line_id AS line_id, SUM(l.total_amount) AS credited "
                    "FROM credit_note_lines l JOIN credit_notes n ON n.id = l.credit_note_id "
                    "WHERE n.invoice_id = :invoice_id AND n.status = :status GROUP BY l.invoice_line_id"
                ),
                {"invoice_id": invoice_id, "status": CreditNoteStatus.ISSUED.value},
            )
            .mappings()
            .fetchall()
        )
        return {row["line_id"]: -from_cents(row["credited"]) for row in rows}


class SQLAlchemyInvoiceRunRepository(InvoiceRunRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_item(row: RowMapping) -> InvoiceRunItem:
        return InvoiceRunItem(
            id=row["id"],
            run_id=row["run_id"],
            lease_id=row["lease_id"],
            invoice_id=row["invoice_id"],
            is_success=bool(row["is_success"]),
            error_message=row["error_message"],
            processed_at=row["processed_at"],
        )

    def _row_to_run(self, row: RowMapping) -> InvoiceRun:
        return InvoiceRun(
            id=row["id"],
            uuid=row["uuid"],
            org_id=row["org_id"],
            run_number=row["run_number"],
            period_start=row["period_start"],
            period_end=row["period_end"],
            status=InvoiceRunStatus(row["status"]),
            total_leases=row["total_leases"],
            success_count=row["success_count"],
            failure_count=row["failure_count"],
            error_message=row["error_message"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            items=self.list_items(row["id"]),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
        )

    def create(self, run: InvoiceRun, ctx: OperationContext) -> InvoiceRun:
        run_uuid = str(ULID())
        now = ctx.now()
        try:
            result = self.conn.execute(
                text(
                    "INSERT INTO invoice_runs (uuid, org_id, run_number, period_start, period_end, status, "
                    "total_leases, success_count, failure_count, error_message, started_at, completed_at, "
                    "version, created_at, updated_at, created_by, updated_by) "
                    "VALUES (:uuid, :org_id, :run_number, :period_start, :period_end, :status, :total_leases, "
                    ":success_count, :failure_count, :error_message, :started_at, :completed_at, 1, :now, :now, "
                    ":actor, :actor)"
                ),
                {
                    "uuid": run_uuid,
                    "org_id": run.org_id,
                    "run_number": run.run_number,
                    "period_start": _d(run.period_start),
                    "period_end": _d(run.period_end),
                    "status": run.status.value,
                    "total_leases": run.total_leases,
                    "success_count": run.success_count,
                    "failure_count": run.failure_count,
                    "error_message": run.error_message,
                    "started_at": run.started_at,
                    "completed_at": run.completed_at,
                    "now": now,
                    "actor": ctx.actor_label,
                },
            )
        except IntegrityError as exc:
            self.conn.rollback()
            raise ConcurrencyConflict(
                f"An invoice run for organization {run.org_id} and period "
                f"{run.period_start.isoformat()}..{run.period_end.isoformat()} already exists",
                {"org_id": run.org_id},
            ) from exc
        run_id = result.lastrowid
        self.conn.commit()
        created = self.get_by_id(run_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve invoice run after create (id={run_id})")
        return created

    def get_by_id(self, run_id: int) -> InvoiceRun | None:
        row = self.conn.execute(text("SELECT * FROM invoice_runs WHERE id = :id"), {"id": run_id}).mappings().fetchone()
        if row is None:
            return None
        return self._row_to_run(row)

    def get_by_org_and_period(self, org_id: int, period: BillingPeriod) -> InvoiceRun | None:
        row = (
            self.conn.execute(
                text(
                    "SELECT * FROM invoice_runs WHERE org_id = :org_id "
                    "AND period_start = :period_start AND period_end = :period_end"
                ),
                {"org_id": org_id, "period_start": _d(period.start), "period_end": _d(period.end)},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_run(row)

    def list_by_org(self, org_id: int, limit: int = 20) -> list[InvoiceRun]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM invoice_runs WHERE org_id = :org_id ORDER BY period_start DESC LIMIT :limit"),
                {"org_id": org_id, "limit": limit},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_run(row) for row in rows]

    def update(self, run: InvoiceRun, ctx: OperationContext) -> InvoiceRun:
        result = self.conn.execute(
            text(
                "UPDATE invoice_runs SET status = :status, total_leases = :total_leases, "
                "success_count = :success_count, failure_count = :failure_count, error_message = :error_message, "
                "started_at = :started_at, completed_at = :completed_at, version = version + 1, "
                "updated_at = :now, updated_by = :actor WHERE id = :id AND version = :expected_version"
            ),
            {
                "status": run.status.value,
                "total_leases": run.total_leases,
                "success_count": run.success_count,
                "failure_count": run.failure_count,
                "error_message": run.error_message,
                "started_at": run.started_at,
                "completed_at": run.completed_at,
                "now": ctx.now(),
                "actor": ctx.actor_label,
                "id": run.id,
                "expected_version": run.version,
            },
        )
        if result.rowcount == 0:
            self.conn.rollback()
            raise ConcurrencyConflict(
                f"Invoice run {run.id} was modified concurrently (expected version {run.version})",
                {"run_id": run.id, "expected_version": run.version},
            )
        self.conn.commit()
        saved = self.get_by_id(run.id)
        if saved is None:
            raise RuntimeError(f"Failed to retrieve invoice run after update (id={run.id})")
        return saved

    def save_item(self, item: InvoiceRunItem) -> InvoiceRunItem:
        params = {
            "run_id": item.run_id,
            "lease_id": item.lease_id,
            "invoice_id": item.invoice_id,
            "is_success": item.is_success,
            "error_message": item.error_message,
            "processed_at": item.processed_at or _now(),
        }
        result = self.conn.execute(
            text(
                "UPDATE invoice_run_items SET invoice_id = :invoice_id, is_success = :is_success, "
                "error_message = :error_message, processed_at = :processed_at "
                "WHERE run_id = :run_id AND lease_id = :lease_id"
            ),
            params,
        )
        if result.rowcount == 0:
            self.conn.execute(
                text(
                    "INSERT INTO invoice_run_items (run_id, lease_id, invoice_id, is_success, error_message, "
                    "processed_at) VALUES (:run_id, :lease_id, :invoice_id, :is_success, :error_message, "
                    ":processed_at)"
                ),
                params,
            )
        self.conn.commit()
        row = (
            self.conn.execute(
                text("SELECT * FROM invoice_run_items WHERE run_id = :run_id AND lease_id = :lease_id"),
                {"run_id": item.run_id, "lease_id": item.lease_id},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            raise RuntimeError(f"Failed to retrieve run item after save (run={item.run_id}, lease={item.lease_id})")
        return self._row_to_item(row)

    def list_items(self, run_id: int) -> list[InvoiceRunItem]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM invoice_run_items WHERE run_id = :run_id ORDER BY lease_id"),
                {"run_id": run_id},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_item(row) for row in rows]


class SQLAlchemyNumberSequenceRepository(NumberSequenceRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def _advance(self, params: dict) -> bool:
        result = self.conn.execute(
            text(
                "UPDATE number_sequences SET last_value = last_value + 1 "
                "WHERE org_id = :org_id AND kind = :kind AND year = :year"
            ),
            params,
        )
        return result.rowcount > 0

    def next_value(self, org_id: int, kind: str, year: int) -> int:
        params = {"org_id": org_id, "kind": kind, "year": year}
        if not self._advance(params):
            try:
                self.conn.execute(
                    text(
                        "INSERT INTO number_sequences (org_id, kind, year, last_value) "
                        "VALUES (:org_id, :kind, :year, 1)"
                    ),
                    params,
                )
            except IntegrityError:
                # Another writer created the row first.
                self.conn.rollback()
                if not self._advance(params):
                    raise
        value = self.conn.execute(
            text("SELECT last_value FROM number_sequences WHERE org_id = :org_id AND kind = :kind AND year = :year"),
            params,
        ).scalar_one()
        self.conn.commit()
        logger.debug("Sequence advanced: org=%s kind=%s year=%s value=%s", org_id, kind, year, value)
        return value


class SQLAlchemyAuditLogRepository(AuditLogRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_audit_log(row: RowMapping) -> AuditLog:
        previous_state = row["previous_state"]
        if isinstance(previous_state, str):
            previous_state = json.loads(previous_state)
        new_state = row["new_state"]
        if isinstance(new_state, str):
            new_state = json.loads(new_state)
        metadata = row["metadata"]
        if isinstance(metadata, str):
            metadata = json.loads(metadata)

        return AuditLog(
            id=row["id"],
            uuid=row["uuid"],
            event_type=row["event_type"],
            actor_id=row["actor_id"],
            actor_username=row["actor_username"],
            source=row["source"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            entity_uuid=row["entity_uuid"],
            previous_state=previous_state,
            new_state=new_state,
            metadata=metadata,
            created_at=row["created_at"],
        )

    def create(self, audit_log: AuditLog) -> AuditLog:
        audit_uuid = str(ULID())
        self.conn.execute(
            text(
                "INSERT INTO audit_logs (uuid, event_type, actor_id, actor_username, "
                "source, entity_type, entity_id, entity_uuid, previous_state, "
                "new_state, metadata, created_at) "
                "VALUES (:uuid, :event_type, :actor_id, :actor_username, "
                ":source, :entity_type, :entity_id, :entity_uuid, :previous_state, "
                ":new_state, :metadata, :created_at)"
            ),
            {
                "uuid": audit_uuid,
                "event_type": audit_log.event_type,
                "actor_id": audit_log.actor_id,
                "actor_username": audit_log.actor_username,
                "source": audit_log.source,
                "entity_type": audit_log.entity_type,
                "entity_id": audit_log.entity_id,
                "entity_uuid": audit_log.entity_uuid,
                "previous_state": json.dumps(audit_log.previous_state)
                if audit_log.previous_state is not None
                else None,
                "new_state": json.dumps(audit_log.new_state) if audit_log.new_state is not None else None,
                "metadata": json.dumps(audit_log.metadata),
                "created_at": audit_log.created_at or _now(),
            },
        )
        self.conn.commit()

        row = (
            self.conn.execute(
                text("SELECT * FROM audit_logs WHERE uuid = :uuid"),
                {"uuid": audit_uuid},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            raise RuntimeError(f"Failed to retrieve audit log after create (uuid={audit_uuid})")
        return self._row_to_audit_log(row)

    def list_by_entity(self, entity_type: str, entity_id: int) -> list[AuditLog]:
        rows = (
            self.conn.execute(
                text(
                    "SELECT * FROM audit_logs "
                    "WHERE entity_type = :entity_type AND entity_id = :entity_id "
                    "ORDER BY created_at DESC, id DESC"
                ),
                {"entity_type": entity_type, "entity_id": entity_id},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_audit_log(row) for row in rows]

    def list_recent(self, limit: int = 50) -> list[AuditLog]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM audit_logs ORDER BY created_at DESC, id DESC LIMIT :limit"),
                {"limit": limit},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_audit_log(row) for row in rows]
