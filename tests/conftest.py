"""Root conftest: in-memory SQLite engine and fixtures for the billing schema."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import Connection, create_engine, event, text
from sqlalchemy.engine import Engine

from leasebill.models.context import OperationContext
from leasebill.models.invoice import Invoice, InvoiceLine, LineSource
from leasebill.models.lease import Lease, LeaseStatus, LeaseTerm

# Matches Alembic head: 3f1c2b9a7d10 (create billing schema)
SCHEMA_DDL = """
CREATE TABLE organizations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    name TEXT NOT NULL,
    is_active TINYINT NOT NULL DEFAULT 1,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
);

CREATE TABLE leases (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    org_id INTEGER NOT NULL REFERENCES organizations(id),
    lease_number TEXT NOT NULL,
    unit_label TEXT NOT NULL DEFAULT '',
    tenant_name TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    start_date DATE NOT NULL,
    end_date DATE,
    version INTEGER NOT NULL DEFAULT 1,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    created_by TEXT NOT NULL DEFAULT '',
    updated_by TEXT NOT NULL DEFAULT '',
    UNIQUE(org_id, lease_number)
);

CREATE TABLE lease_terms (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    lease_id INTEGER NOT NULL REFERENCES leases(id) ON DELETE CASCADE,
    effective_from DATE NOT NULL,
    effective_to DATE,
    monthly_rent INTEGER NOT NULL,
    notes TEXT NOT NULL DEFAULT '',
    created_at DATETIME NOT NULL
);

CREATE TABLE lease_billing_settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    lease_id INTEGER NOT NULL UNIQUE REFERENCES leases(id) ON DELETE CASCADE,
    billing_day INTEGER NOT NULL DEFAULT 1,
    payment_term_days INTEGER,
    proration_method TEXT NOT NULL,
    auto_generate TINYINT NOT NULL DEFAULT 1,
    is_active TINYINT NOT NULL DEFAULT 1,
    invoice_prefix TEXT NOT NULL DEFAULT '',
    payment_instructions TEXT NOT NULL DEFAULT '',
    version INTEGER NOT NULL DEFAULT 1,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    created_by TEXT NOT NULL DEFAULT '',
    updated_by TEXT NOT NULL DEFAULT ''
);

CREATE TABLE recurring_charges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    lease_id INTEGER NOT NULL REFERENCES leases(id) ON DELETE CASCADE,
    charge_type TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    amount INTEGER NOT NULL,
    frequency TEXT NOT NULL,
    start_date DATE NOT NULL,
    end_date DATE,
    is_active TINYINT NOT NULL DEFAULT 1,
    tax_rate TEXT NOT NULL DEFAULT '0',
    version INTEGER NOT NULL DEFAULT 1,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    created_by TEXT NOT NULL DEFAULT '',
    updated_by TEXT NOT NULL DEFAULT ''
);

CREATE TABLE utility_rate_plans (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    org_id INTEGER NOT NULL REFERENCES organizations(id),
    utility_type TEXT NOT NULL,
    name TEXT NOT NULL,
    effective_from DATE NOT NULL,
    effective_to DATE,
    is_active TINYINT NOT NULL DEFAULT 1,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
);

CREATE TABLE rate_slabs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    rate_plan_id INTEGER NOT NULL REFERENCES utility_rate_plans(id) ON DELETE CASCADE,
    slab_order INTEGER NOT NULL DEFAULT 0,
    from_units TEXT NOT NULL,
    to_units TEXT,
    rate_per_unit TEXT NOT NULL,
    fixed_charge INTEGER
);

CREATE TABLE utility_statements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    lease_id INTEGER NOT NULL REFERENCES leases(id) ON DELETE CASCADE,
    utility_type TEXT NOT NULL,
    period_start DATE NOT NULL,
    period_end DATE NOT NULL,
    is_meter_based TINYINT NOT NULL DEFAULT 0,
    previous_reading TEXT,
    current_reading TEXT,
    meter_rollover TINYINT NOT NULL DEFAULT 0,
    meter_capacity TEXT,
    direct_bill_amount INTEGER,
    rate_plan_id INTEGER REFERENCES utility_rate_plans(id),
    units_consumed TEXT,
    total_amount INTEGER NOT NULL DEFAULT 0,
    version INTEGER NOT NULL,
    is_final TINYINT NOT NULL DEFAULT 0,
    notes TEXT NOT NULL DEFAULT '',
    row_version INTEGER NOT NULL DEFAULT 1,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    created_by TEXT NOT NULL DEFAULT '',
    updated_by TEXT NOT NULL DEFAULT '',
    UNIQUE(lease_id, utility_type, period_start, period_end, version)
);

CREATE UNIQUE INDEX uq_utility_statements_final
    ON utility_statements (lease_id, utility_type, period_start, period_end)
    WHERE is_final = 1;

CREATE TABLE invoices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    org_id INTEGER NOT NULL REFERENCES organizations(id),
    lease_id INTEGER NOT NULL REFERENCES leases(id),
    invoice_number TEXT NOT NULL,
    status TEXT NOT NULL,
    invoice_date DATE,
    due_date DATE,
    period_start DATE NOT NULL,
    period_end DATE NOT NULL,
    subtotal INTEGER NOT NULL DEFAULT 0,
    tax_amount INTEGER NOT NULL DEFAULT 0,
    total_amount INTEGER NOT NULL DEFAULT 0,
    paid_amount INTEGER NOT NULL DEFAULT 0,
    credited_amount INTEGER NOT NULL DEFAULT 0,
    payment_instructions TEXT NOT NULL DEFAULT '',
    notes TEXT NOT NULL DEFAULT '',
    issued_at DATETIME,
    voided_at DATETIME,
    void_reason TEXT,
    version INTEGER NOT NULL DEFAULT 1,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    created_by TEXT NOT NULL DEFAULT '',
    updated_by TEXT NOT NULL DEFAULT '',
    UNIQUE(lease_id, period_start, period_end),
    UNIQUE(org_id, invoice_number)
);

CREATE TABLE invoice_lines (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    invoice_id INTEGER NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
    line_number INTEGER NOT NULL,
    charge_type TEXT NOT NULL,
    description TEXT NOT NULL,
    quantity TEXT NOT NULL DEFAULT '1',
    unit_price TEXT NOT NULL,
    amount INTEGER NOT NULL,
    tax_rate TEXT NOT NULL DEFAULT '0',
    tax_amount INTEGER NOT NULL DEFAULT 0,
    total_amount INTEGER NOT NULL,
    source TEXT NOT NULL,
    source_ref_id INTEGER,
    period_start DATE,
    period_end DATE,
    UNIQUE(invoice_id, line_number)
);

CREATE TABLE credit_notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    org_id INTEGER NOT NULL REFERENCES organizations(id),
    invoice_id INTEGER NOT NULL REFERENCES invoices(id),
    credit_note_number TEXT NOT NULL,
    reason TEXT NOT NULL,
    status TEXT NOT NULL,
    notes TEXT NOT NULL DEFAULT '',
    total_amount INTEGER NOT NULL,
    issued_at DATETIME,
    created_at DATETIME NOT NULL,
    created_by TEXT NOT NULL DEFAULT '',
    UNIQUE(org_id, credit_note_number)
);

CREATE TABLE credit_note_lines (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    credit_note_id INTEGER NOT NULL REFERENCES credit_notes(id) ON DELETE CASCADE,
    invoice_line_id INTEGER NOT NULL REFERENCES invoice_lines(id),
    line_number INTEGER NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    amount INTEGER NOT NULL,
    tax_amount INTEGER NOT NULL DEFAULT 0,
    total_amount INTEGER NOT NULL,
    notes TEXT NOT NULL DEFAULT ''
);

CREATE TABLE invoice_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    org_id INTEGER NOT NULL REFERENCES organizations(id),
    run_number TEXT NOT NULL UNIQUE,
    period_start DATE NOT NULL,
    period_end DATE NOT NULL,
    status TEXT NOT NULL,
    total_leases INTEGER NOT NULL DEFAULT 0,
    success_count INTEGER NOT NULL DEFAULT 0,
    failure_count INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    started_at DATETIME,
    completed_at DATETIME,
    version INTEGER NOT NULL DEFAULT 1,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    created_by TEXT NOT NULL DEFAULT '',
    updated_by TEXT NOT NULL DEFAULT '',
    UNIQUE(org_id, period_start, period_end)
);

CREATE TABLE invoice_run_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL REFERENCES invoice_runs(id) ON DELETE CASCADE,
    lease_id INTEGER NOT NULL REFERENCES leases(id),
    invoice_id INTEGER REFERENCES invoices(id),
    is_success TINYINT NOT NULL DEFAULT 0,
    error_message TEXT,
    processed_at DATETIME NOT NULL,
    UNIQUE(run_id, lease_id)
);

CREATE TABLE number_sequences (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    org_id INTEGER NOT NULL REFERENCES organizations(id),
    kind TEXT NOT NULL,
    year INTEGER NOT NULL,
    last_value INTEGER NOT NULL DEFAULT 0,
    UNIQUE(org_id, kind, year)
);

CREATE TABLE audit_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    event_type VARCHAR(50) NOT NULL,
    actor_id INTEGER,
    actor_username VARCHAR(255) NOT NULL DEFAULT '',
    source VARCHAR(10) NOT NULL,
    entity_type VARCHAR(50) NOT NULL DEFAULT '',
    entity_id INTEGER,
    entity_uuid VARCHAR(26) NOT NULL DEFAULT '',
    previous_state TEXT,
    new_state TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at DATETIME NOT NULL
)
"""

FIXED_NOW = datetime(2025, 4, 30, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db_engine() -> Engine:
    engine = create_engine("sqlite:///:memory:")

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    return engine


@pytest.fixture()
def db_connection(db_engine: Engine) -> Connection:
    conn = db_engine.connect()
    for statement in SCHEMA_DDL.strip().split(";"):
        stmt = statement.strip()
        if stmt:
            conn.execute(text(stmt))
    conn.commit()
    yield conn
    conn.close()


@pytest.fixture()
def ctx() -> OperationContext:
    return OperationContext(actor_username="tester", source="system", clock=lambda: FIXED_NOW)


def _sample_lease(**overrides) -> Lease:
    defaults = dict(
        id=1,
        org_id=1,
        lease_number="L-001",
        unit_label="Apt 101",
        tenant_name="Jordan Reyes",
        status=LeaseStatus.ACTIVE,
        start_date=date(2024, 1, 1),
    )
    defaults.update(overrides)
    return Lease(**defaults)


def _sample_term(**overrides) -> LeaseTerm:
    defaults = dict(
        id=1,
        lease_id=1,
        effective_from=date(2024, 1, 1),
        monthly_rent=Decimal("1600.00"),
    )
    defaults.update(overrides)
    return LeaseTerm(**defaults)


def _sample_invoice(**overrides) -> Invoice:
    lines = overrides.pop(
        "lines",
        [
            InvoiceLine(
                id=10,
                line_number=1,
                charge_type="RENT",
                description="Rent Apr 2025",
                unit_price=Decimal("1600.00"),
                amount=Decimal("1600.00"),
                total_amount=Decimal("1600.00"),
                source=LineSource.LEASE_TERM,
                source_ref_id=1,
            ),
            InvoiceLine(
                id=11,
                line_number=2,
                charge_type="MAINT",
                description="Maintenance",
                unit_price=Decimal("100.00"),
                amount=Decimal("100.00"),
                tax_rate=Decimal("10"),
                tax_amount=Decimal("10.00"),
                total_amount=Decimal("110.00"),
                source=LineSource.RECURRING_CHARGE,
                source_ref_id=7,
            ),
        ],
    )
    defaults = dict(
        id=1,
        uuid="01JTESTINVOICE0000000000001",
        org_id=1,
        lease_id=1,
        invoice_number="INV-2025-000001",
        invoice_date=date(2025, 4, 30),
        due_date=date(2025, 5, 10),
        period_start=date(2025, 4, 1),
        period_end=date(2025, 4, 30),
        lines=lines,
    )
    defaults.update(overrides)
    invoice = Invoice(**defaults)
    if "total_amount" not in overrides:
        invoice.recalculate_totals()
    return invoice


@pytest.fixture()
def sample_lease():
    return _sample_lease


@pytest.fixture()
def sample_term():
    return _sample_term


@pytest.fixture()
def sample_invoice():
    return _sample_invoice
