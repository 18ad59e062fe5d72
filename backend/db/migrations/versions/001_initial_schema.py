"""
Initial schema - catalog, alert ledger, drafts, bill reconciliation

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Suppliers
    op.create_table(
        "suppliers",
        sa.Column("supplier_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("lead_time_days", sa.Integer),
        sa.Column("min_order_quantity", sa.Integer),
        sa.Column("packaging_multiple", sa.Integer),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("lead_time_days IS NULL OR lead_time_days > 0", name="ck_supplier_lead_time_positive"),
        sa.CheckConstraint("min_order_quantity IS NULL OR min_order_quantity > 0", name="ck_supplier_moq_positive"),
        sa.CheckConstraint("packaging_multiple IS NULL OR packaging_multiple > 0", name="ck_supplier_pack_positive"),
    )

    # 2. Products
    op.create_table(
        "products",
        sa.Column("product_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("sku", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(100)),
        sa.Column("current_stock", sa.Integer, nullable=False, server_default="0"),
        sa.Column("low_stock_threshold", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("supplier_id", UUID(as_uuid=True), sa.ForeignKey("suppliers.supplier_id")),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("current_stock >= 0", name="ck_product_stock_non_negative"),
        sa.CheckConstraint("low_stock_threshold > 0", name="ck_product_threshold_positive"),
        sa.CheckConstraint("unit_price >= 0", name="ck_product_price_positive"),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_product_status"),
    )
    op.create_index("ix_products_category", "products", ["category"])
    op.create_index("ix_products_status", "products", ["status"])

    # 3. Stock Movements
    op.create_table(
        "stock_movements",
        sa.Column("movement_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("delta", sa.Integer, nullable=False),
        sa.Column("resulting_stock", sa.Integer, nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("delta <> 0", name="ck_stock_movement_delta_nonzero"),
    )
    op.create_index("ix_stock_movements_product", "stock_movements", ["product_id", "created_at"])

    # 4. Alerts
    op.create_table(
        "alerts",
        sa.Column("alert_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("priority", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("snapshot_stock", sa.Integer),
        sa.Column("snapshot_threshold", sa.Integer),
        sa.Column("resolution_note", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("acknowledged_at", sa.DateTime),
        sa.Column("resolved_at", sa.DateTime),
        sa.CheckConstraint("kind IN ('low_stock', 'system', 'manual')", name="ck_alert_kind"),
        sa.CheckConstraint("priority IN ('high', 'medium', 'low')", name="ck_alert_priority"),
        sa.CheckConstraint("status IN ('active', 'acknowledged', 'resolved')", name="ck_alert_status"),
    )
    op.create_index("ix_alerts_status", "alerts", ["status"])
    op.create_index("ix_alerts_product", "alerts", ["product_id"])
    op.create_index(
        "uq_alerts_open_low_stock",
        "alerts",
        ["product_id"],
        unique=True,
        postgresql_where=sa.text("kind = 'low_stock' AND status IN ('active', 'acknowledged')"),
    )

    # 5. Alert Actions
    op.create_table(
        "alert_actions",
        sa.Column("action_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("alert_id", UUID(as_uuid=True), sa.ForeignKey("alerts.alert_id"), nullable=False),
        sa.Column("action_type", sa.String(30), nullable=False),
        sa.Column("notes", sa.Text),
        sa.Column("taken_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "action_type IN ('created', 'acknowledged', 'resolved', 'auto_resolved', 'draft_created')",
            name="ck_alert_action_type",
        ),
    )
    op.create_index("ix_alert_actions_alert", "alert_actions", ["alert_id"])

    # 6. Purchase Order Drafts
    op.create_table(
        "purchase_order_drafts",
        sa.Column("draft_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("source_alert_id", UUID(as_uuid=True), sa.ForeignKey("alerts.alert_id")),
        sa.Column("supplier_id", UUID(as_uuid=True), sa.ForeignKey("suppliers.supplier_id")),
        sa.Column("notes", sa.Text),
        sa.Column("estimated_cost", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("expected_delivery", sa.Date, nullable=False),
        sa.Column("purchasing_status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("external_order_number", sa.String(100)),
        sa.Column("created_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("submitted_at", sa.DateTime),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "purchasing_status IN ('draft', 'pending', 'submitting', 'approved', 'completed', 'cancelled', 'rejected')",
            name="ck_draft_purchasing_status",
        ),
    )
    op.create_index("ix_drafts_alert", "purchase_order_drafts", ["source_alert_id"])
    op.create_index("ix_drafts_status", "purchase_order_drafts", ["purchasing_status"])
    op.create_index(
        "uq_drafts_open_per_alert",
        "purchase_order_drafts",
        ["source_alert_id"],
        unique=True,
        postgresql_where=sa.text(
            "source_alert_id IS NOT NULL AND purchasing_status NOT IN ('cancelled', 'rejected')"
        ),
    )

    # 7. Purchase Order Draft Lines
    op.create_table(
        "purchase_order_draft_lines",
        sa.Column("line_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "draft_id", UUID(as_uuid=True), sa.ForeignKey("purchase_order_drafts.draft_id"), nullable=False
        ),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_draft_line_quantity_positive"),
    )

    # 8. Bill Reconciliations
    op.create_table(
        "bill_reconciliations",
        sa.Column(
            "reconciliation_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("bill_number", sa.String(100), nullable=False, unique=True),
        sa.Column("supplier_guess", sa.String(255)),
        sa.Column("bill_date", sa.Date),
        sa.Column("reconciled_by", sa.String(255)),
        sa.Column("reconciled_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 9. Bill Reconciliation Lines
    op.create_table(
        "bill_reconciliation_lines",
        sa.Column("line_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "reconciliation_id",
            UUID(as_uuid=True),
            sa.ForeignKey("bill_reconciliations.reconciliation_id"),
            nullable=False,
        ),
        sa.Column("line_index", sa.Integer, nullable=False),
        sa.Column("raw_name", sa.String(500), nullable=False),
        sa.Column("effective_name", sa.String(500), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("confidence", sa.Float, nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id")),
        sa.Column("mapping_method", sa.String(20), nullable=False),
        sa.Column("match_score", sa.Float),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_bill_line_confidence_range"),
        sa.CheckConstraint(
            "mapping_method IN ('explicit', 'name_match', 'unmapped')", name="ck_bill_line_mapping_method"
        ),
    )
    op.create_index("ix_bill_lines_reconciliation", "bill_reconciliation_lines", ["reconciliation_id"])


def downgrade() -> None:
    for table in (
        "bill_reconciliation_lines",
        "bill_reconciliations",
        "purchase_order_draft_lines",
        "purchase_order_drafts",
        "alert_actions",
        "alerts",
        "stock_movements",
        "products",
        "suppliers",
    ):
        op.drop_table(table)
