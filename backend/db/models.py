"""
Replenishment Engine Database Models

Tables:
  Catalog:
  1. suppliers                   - Product suppliers (lead time, MOQ, pack size)
  2. products                    - Product catalog with stock + low-stock threshold
  3. stock_movements             - Append-only audit trail of stock deltas

  Alert Ledger:
  4. alerts                      - Low-stock / system / manual alerts
  5. alert_actions               - Operator + system actions taken on alerts

  Replenishment:
  6. purchase_order_drafts       - Order intents handed to the Purchasing system
  7. purchase_order_draft_lines  - Product / quantity / price lines of a draft

  Bill Reconciliation:
  8. bill_reconciliations        - Confirmed scanned bills (audit)
  9. bill_reconciliation_lines   - Every extracted line, mapped or not
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    text,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


# Alias so Column(UUID(as_uuid=True)) reads like the PostgreSQL type
def UUID(as_uuid=True):
    return GUID()


from sqlalchemy.orm import relationship

from db.session import Base

ALERT_KINDS = ("low_stock", "system", "manual")
ALERT_PRIORITIES = ("high", "medium", "low")
ALERT_STATUSES = ("active", "acknowledged", "resolved")
OPEN_ALERT_STATUSES = ("active", "acknowledged")

PURCHASING_STATUSES = ("draft", "pending", "approved", "completed", "cancelled", "rejected")
CLOSED_DRAFT_STATUSES = ("cancelled", "rejected")
# Claimed by one submitter while the Purchasing call is in flight.
SUBMITTING_STATUS = "submitting"

_OPEN_LOW_STOCK_WHERE = "kind = 'low_stock' AND status IN ('active', 'acknowledged')"
_OPEN_DRAFT_WHERE = "source_alert_id IS NOT NULL AND purchasing_status NOT IN ('cancelled', 'rejected')"

# ─── 1. Suppliers ───────────────────────────────────────────────────────────


class Supplier(Base):
    __tablename__ = "suppliers"

    supplier_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255))
    lead_time_days = Column(Integer)  # None → settings.default_lead_time_days
    min_order_quantity = Column(Integer)  # None → settings.minimum_order_size
    packaging_multiple = Column(Integer)  # None → no rounding
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("lead_time_days IS NULL OR lead_time_days > 0", name="ck_supplier_lead_time_positive"),
        CheckConstraint("min_order_quantity IS NULL OR min_order_quantity > 0", name="ck_supplier_moq_positive"),
        CheckConstraint("packaging_multiple IS NULL OR packaging_multiple > 0", name="ck_supplier_pack_positive"),
    )

    products = relationship("Product", back_populates="supplier")


# ─── 2. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sku = Column(String(100), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    category = Column(String(100))
    current_stock = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.supplier_id"), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_products_category", "category"),
        Index("ix_products_status", "status"),
        CheckConstraint("current_stock >= 0", name="ck_product_stock_non_negative"),
        CheckConstraint("low_stock_threshold > 0", name="ck_product_threshold_positive"),
        CheckConstraint("unit_price >= 0", name="ck_product_price_positive"),
        CheckConstraint("status IN ('active', 'inactive')", name="ck_product_status"),
    )

    supplier = relationship("Supplier", back_populates="products")

    @property
    def stock_ratio(self) -> float | None:
        if not self.low_stock_threshold:
            return None
        return self.current_stock / self.low_stock_threshold


# ─── 3. Stock Movements ─────────────────────────────────────────────────────


class StockMovement(Base):
    """One row per successful stock adjustment."""

    __tablename__ = "stock_movements"

    movement_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.product_id"), nullable=False)
    delta = Column(Integer, nullable=False)
    resulting_stock = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_stock_movements_product", "product_id", "created_at"),
        CheckConstraint("delta <> 0", name="ck_stock_movement_delta_nonzero"),
    )


# ─── 4. Alerts ──────────────────────────────────────────────────────────────


class Alert(Base):
    __tablename__ = "alerts"

    alert_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.product_id"), nullable=False)
    kind = Column(String(20), nullable=False)
    priority = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    message = Column(Text, nullable=False)
    snapshot_stock = Column(Integer)
    snapshot_threshold = Column(Integer)
    resolution_note = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    acknowledged_at = Column(DateTime)
    resolved_at = Column(DateTime)

    __table_args__ = (
        Index("ix_alerts_status", "status"),
        Index("ix_alerts_product", "product_id"),
        Index(
            "uq_alerts_open_low_stock",
            "product_id",
            unique=True,
            postgresql_where=text(_OPEN_LOW_STOCK_WHERE),
            sqlite_where=text(_OPEN_LOW_STOCK_WHERE),
        ),
        CheckConstraint("kind IN ('low_stock', 'system', 'manual')", name="ck_alert_kind"),
        CheckConstraint("priority IN ('high', 'medium', 'low')", name="ck_alert_priority"),
        CheckConstraint("status IN ('active', 'acknowledged', 'resolved')", name="ck_alert_status"),
    )

    actions = relationship("AlertAction", back_populates="alert", order_by="AlertAction.created_at")

    @property
    def snapshot_ratio(self) -> float | None:
        if not self.snapshot_threshold or self.snapshot_stock is None:
            return None
        return self.snapshot_stock / self.snapshot_threshold


# ─── 5. Alert Actions ───────────────────────────────────────────────────────


class AlertAction(Base):
    __tablename__ = "alert_actions"

    action_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    alert_id = Column(UUID(as_uuid=True), ForeignKey("alerts.alert_id"), nullable=False)
    action_type = Column(String(30), nullable=False)
    notes = Column(Text)
    taken_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_alert_actions_alert", "alert_id"),
        CheckConstraint(
            "action_type IN ('created', 'acknowledged', 'resolved', 'auto_resolved', 'draft_created')",
            name="ck_alert_action_type",
        ),
    )

    alert = relationship("Alert", back_populates="actions")


# ─── 6–7. Purchase Order Drafts ─────────────────────────────────────────────


class PurchaseOrderDraft(Base):
    """Forward-looking order intent. The confirmed order lives in Purchasing."""

    __tablename__ = "purchase_order_drafts"

    draft_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    source_alert_id = Column(UUID(as_uuid=True), ForeignKey("alerts.alert_id"), nullable=True)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.supplier_id"), nullable=True)
    notes = Column(Text)
    estimated_cost = Column(Numeric(14, 2), nullable=False, default=0)
    expected_delivery = Column(Date, nullable=False)
    purchasing_status = Column(String(20), nullable=False, default="draft")
    external_order_number = Column(String(100))
    created_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    submitted_at = Column(DateTime)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_drafts_alert", "source_alert_id"),
        Index("ix_drafts_status", "purchasing_status"),
        Index(
            "uq_drafts_open_per_alert",
            "source_alert_id",
            unique=True,
            postgresql_where=text(_OPEN_DRAFT_WHERE),
            sqlite_where=text(_OPEN_DRAFT_WHERE),
        ),
        CheckConstraint(
            "purchasing_status IN ('draft', 'pending', 'submitting', 'approved', 'completed', 'cancelled', 'rejected')",
            name="ck_draft_purchasing_status",
        ),
    )

    lines = relationship(
        "PurchaseOrderDraftLine",
        back_populates="draft",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_open(self) -> bool:
        return self.purchasing_status not in CLOSED_DRAFT_STATUSES


class PurchaseOrderDraftLine(Base):
    __tablename__ = "purchase_order_draft_lines"

    line_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    draft_id = Column(UUID(as_uuid=True), ForeignKey("purchase_order_drafts.draft_id"), nullable=False)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.product_id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_draft_line_quantity_positive"),)

    draft = relationship("PurchaseOrderDraft", back_populates="lines")


# ─── 8–9. Bill Reconciliations ──────────────────────────────────────────────


class BillReconciliation(Base):
    __tablename__ = "bill_reconciliations"

    reconciliation_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bill_number = Column(String(100), nullable=False, unique=True)
    supplier_guess = Column(String(255))
    bill_date = Column(Date)
    reconciled_by = Column(String(255))
    reconciled_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    lines = relationship(
        "BillReconciliationLine",
        back_populates="reconciliation",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BillReconciliationLine.line_index",
    )


class BillReconciliationLine(Base):
    __tablename__ = "bill_reconciliation_lines"

    line_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    reconciliation_id = Column(
        UUID(as_uuid=True), ForeignKey("bill_reconciliations.reconciliation_id"), nullable=False
    )
    line_index = Column(Integer, nullable=False)
    raw_name = Column(String(500), nullable=False)
    effective_name = Column(String(500), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    confidence = Column(Float, nullable=False)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.product_id"), nullable=True)
    mapping_method = Column(String(20), nullable=False)
    match_score = Column(Float)

    __table_args__ = (
        Index("ix_bill_lines_reconciliation", "reconciliation_id"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_bill_line_confidence_range"),
        CheckConstraint(
            "mapping_method IN ('explicit', 'name_match', 'unmapped')", name="ck_bill_line_mapping_method"
        ),
    )

    reconciliation = relationship("BillReconciliation", back_populates="lines")
