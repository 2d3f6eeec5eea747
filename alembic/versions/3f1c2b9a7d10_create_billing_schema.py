"""create billing schema

Revision ID: 3f1c2b9a7d10
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

revision: str = "3f1c2b9a7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("created_by", sa.String(255), nullable=False, server_default=""),
        sa.Column("updated_by", sa.String(255), nullable=False, server_default=""),
    ]


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(26), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "leases",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(26), nullable=False, unique=True),
        sa.Column("org_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("lease_number", sa.String(50), nullable=False),
        sa.Column("unit_label", sa.String(255), nullable=False, server_default=""),
        sa.Column("tenant_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("end_date", sa.Date, nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint("org_id", "lease_number", name="uq_leases_org_number"),
    )
    op.create_index("ix_leases_org_status", "leases", ["org_id", "status"])

    op.create_table(
        "lease_terms",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("lease_id", sa.Integer, sa.ForeignKey("leases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("effective_from", sa.Date, nullable=False),
        sa.Column("effective_to", sa.Date, nullable=True),
        sa.Column("monthly_rent", sa.Integer, nullable=False),
        sa.Column("notes", sa.Text, nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_lease_terms_lease", "lease_terms", ["lease_id", "effective_from"])

    op.create_table(
        "lease_billing_settings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "lease_id", sa.Integer, sa.ForeignKey("leases.id", ondelete="CASCADE"), nullable=False, unique=True
        ),
        sa.Column("billing_day", sa.Integer, nullable=False, server_default="1"),
        sa.Column("payment_term_days", sa.Integer, nullable=True),
        sa.Column("proration_method", sa.String(30), nullable=False),
        sa.Column("auto_generate", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("invoice_prefix", sa.String(20), nullable=False, server_default=""),
        sa.Column("payment_instructions", sa.Text, nullable=False, server_default=""),
        *_audit_columns(),
    )

    op.create_table(
        "recurring_charges",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(26), nullable=False, unique=True),
        sa.Column("lease_id", sa.Integer, sa.ForeignKey("leases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("charge_type", sa.String(50), nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("frequency", sa.String(20), nullable=False),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("end_date", sa.Date, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("tax_rate", sa.String(20), nullable=False, server_default="0"),
        *_audit_columns(),
    )
    op.create_index("ix_recurring_charges_lease", "recurring_charges", ["lease_id"])

    op.create_table(
        "utility_rate_plans",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(26), nullable=False, unique=True),
        sa.Column("org_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("utility_type", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("effective_from", sa.Date, nullable=False),
        sa.Column("effective_to", sa.Date, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_rate_plans_lookup", "utility_rate_plans", ["org_id", "utility_type", "effective_from"])

    op.create_table(
        "rate_slabs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "rate_plan_id", sa.Integer, sa.ForeignKey("utility_rate_plans.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("slab_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("from_units", sa.String(30), nullable=False),
        sa.Column("to_units", sa.String(30), nullable=True),
        sa.Column("rate_per_unit", sa.String(30), nullable=False),
        sa.Column("fixed_charge", sa.Integer, nullable=True),
    )

    op.create_table(
        "utility_statements",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(26), nullable=False, unique=True),
        sa.Column("lease_id", sa.Integer, sa.ForeignKey("leases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("utility_type", sa.String(20), nullable=False),
        sa.Column("period_start", sa.Date, nullable=False),
        sa.Column("period_end", sa.Date, nullable=False),
        sa.Column("is_meter_based", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("previous_reading", sa.String(30), nullable=True),
        sa.Column("current_reading", sa.String(30), nullable=True),
        sa.Column("meter_rollover", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("meter_capacity", sa.String(30), nullable=True),
        sa.Column("direct_bill_amount", sa.Integer, nullable=True),
        sa.Column("rate_plan_id", sa.Integer, sa.ForeignKey("utility_rate_plans.id"), nullable=True),
        sa.Column("units_consumed", sa.String(30), nullable=True),
        sa.Column("total_amount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("is_final", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text, nullable=False, server_default=""),
        sa.Column("row_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("created_by", sa.String(255), nullable=False, server_default=""),
        sa.Column("updated_by", sa.String(255), nullable=False, server_default=""),
        sa.UniqueConstraint(
            "lease_id", "utility_type", "period_start", "period_end", "version", name="uq_utility_statements_version"
        ),
    )
    op.create_index(
        "uq_utility_statements_final",
        "utility_statements",
        ["lease_id", "utility_type", "period_start", "period_end"],
        unique=True,
        sqlite_where=sa.text("is_final = 1"),
        postgresql_where=sa.text("is_final"),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(26), nullable=False, unique=True),
        sa.Column("org_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("lease_id", sa.Integer, sa.ForeignKey("leases.id"), nullable=False),
        sa.Column("invoice_number", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("invoice_date", sa.Date, nullable=True),
        sa.Column("due_date", sa.Date, nullable=True),
        sa.Column("period_start", sa.Date, nullable=False),
        sa.Column("period_end", sa.Date, nullable=False),
        sa.Column("subtotal", sa.Integer, nullable=False, server_default="0"),
        sa.Column("tax_amount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("paid_amount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("credited_amount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("payment_instructions", sa.Text, nullable=False, server_default=""),
        sa.Column("notes", sa.Text, nullable=False, server_default=""),
        sa.Column("issued_at", sa.DateTime, nullable=True),
        sa.Column("voided_at", sa.DateTime, nullable=True),
        sa.Column("void_reason", sa.Text, nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint("lease_id", "period_start", "period_end", name="uq_invoices_lease_period"),
        sa.UniqueConstraint("org_id", "invoice_number", name="uq_invoices_org_number"),
    )
    op.create_index("ix_invoices_status_due", "invoices", ["status", "due_date"])

    op.create_table(
        "invoice_lines",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("invoice_id", sa.Integer, sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("line_number", sa.Integer, nullable=False),
        sa.Column("charge_type", sa.String(50), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("quantity", sa.String(30), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.String(30), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("tax_rate", sa.String(20), nullable=False, server_default="0"),
        sa.Column("tax_amount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Integer, nullable=False),
        sa.Column("source", sa.String(30), nullable=False),
        sa.Column("source_ref_id", sa.Integer, nullable=True),
        sa.Column("period_start", sa.Date, nullable=True),
        sa.Column("period_end", sa.Date, nullable=True),
        sa.UniqueConstraint("invoice_id", "line_number", name="uq_invoice_lines_number"),
    )

    op.create_table(
        "credit_notes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(26), nullable=False, unique=True),
        sa.Column("org_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("invoice_id", sa.Integer, sa.ForeignKey("invoices.id"), nullable=False),
        sa.Column("credit_note_number", sa.String(50), nullable=False),
        sa.Column("reason", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("notes", sa.Text, nullable=False, server_default=""),
        sa.Column("total_amount", sa.Integer, nullable=False),
        sa.Column("issued_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("created_by", sa.String(255), nullable=False, server_default=""),
        sa.UniqueConstraint("org_id", "credit_note_number", name="uq_credit_notes_org_number"),
    )
    op.create_index("ix_credit_notes_invoice", "credit_notes", ["invoice_id"])

    op.create_table(
        "credit_note_lines",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "credit_note_id", sa.Integer, sa.ForeignKey("credit_notes.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("invoice_line_id", sa.Integer, sa.ForeignKey("invoice_lines.id"), nullable=False),
        sa.Column("line_number", sa.Integer, nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("tax_amount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Integer, nullable=False),
        sa.Column("notes", sa.Text, nullable=False, server_default=""),
    )

    op.create_table(
        "invoice_runs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(26), nullable=False, unique=True),
        sa.Column("org_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("run_number", sa.String(50), nullable=False, unique=True),
        sa.Column("period_start", sa.Date, nullable=False),
        sa.Column("period_end", sa.Date, nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("total_leases", sa.Integer, nullable=False, server_default="0"),
        sa.Column("success_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failure_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint("org_id", "period_start", "period_end", name="uq_invoice_runs_org_period"),
    )

    op.create_table(
        "invoice_run_items",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.Integer, sa.ForeignKey("invoice_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("lease_id", sa.Integer, sa.ForeignKey("leases.id"), nullable=False),
        sa.Column("invoice_id", sa.Integer, sa.ForeignKey("invoices.id"), nullable=True),
        sa.Column("is_success", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("processed_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("run_id", "lease_id", name="uq_invoice_run_items_lease"),
    )

    op.create_table(
        "number_sequences",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("org_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("last_value", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("org_id", "kind", "year", name="uq_number_sequences_key"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(26), nullable=False, unique=True),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("actor_id", sa.Integer, nullable=True),
        sa.Column("actor_username", sa.String(255), nullable=False, server_default=""),
        sa.Column("source", sa.String(10), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False, server_default=""),
        sa.Column("entity_id", sa.Integer, nullable=True),
        sa.Column("entity_uuid", sa.String(26), nullable=False, server_default=""),
        sa.Column("previous_state", sa.Text, nullable=True),
        sa.Column("new_state", sa.Text, nullable=True),
        sa.Column("metadata", sa.Text, nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_audit_logs_event_type", "audit_logs", ["event_type"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_index("ix_audit_logs_event_type", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("number_sequences")
    op.drop_table("invoice_run_items")
    op.drop_table("invoice_runs")
    op.drop_table("credit_note_lines")
    op.drop_index("ix_credit_notes_invoice", table_name="credit_notes")
    op.drop_table("credit_notes")
    op.drop_table("invoice_lines")
    op.drop_index("ix_invoices_status_due", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("uq_utility_statements_final", table_name="utility_statements")
    op.drop_table("utility_statements")
    op.drop_table("rate_slabs")
    op.drop_index("ix_rate_plans_lookup", table_name="utility_rate_plans")
    op.drop_table("utility_rate_plans")
    op.drop_index("ix_recurring_charges_lease", table_name="recurring_charges")
    op.drop_table("recurring_charges")
    op.drop_table("lease_billing_settings")
    op.drop_index("ix_lease_terms_lease", table_name="lease_terms")
    op.drop_table("lease_terms")
    op.drop_index("ix_leases_org_status", table_name="leases")
    op.drop_table("leases")
    op.drop_table("organizations")
