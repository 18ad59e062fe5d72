"""
Replenishment Planner — turns a low-stock alert (or a manual request)
into a purchase-order draft.

Order quantity:
    max(minimum_order_size, 2 × threshold − current_stock)
rounded up to the supplier's packaging multiple, where minimum_order_size
is the supplier MOQ or ``settings.minimum_order_size``.

An alert carries at most one open draft (purchasing_status not in
cancelled/rejected). The check runs under the alert row lock and the
``uq_drafts_open_per_alert`` index backs it.

Drafts are intents only. The Purchasing system assigns order numbers and
owns the order lifecycle; ``record_purchasing_status`` mirrors it back.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.ledger import AlertLedger
from catalog.store import CatalogStore
from core.config import Settings, get_settings
from core.errors import (
    AlertAlreadyResolved,
    ConfigurationError,
    InvalidQuantity,
    InvalidTransition,
    NoOpenDraftAllowed,
    NotFound,
)
from db.models import (
    CLOSED_DRAFT_STATUSES,
    PURCHASING_STATUSES,
    SUBMITTING_STATUS,
    Product,
    PurchaseOrderDraft,
    PurchaseOrderDraftLine,
    Supplier,
)
from db.session import transaction
from integrations.purchasing import PurchasingClient, PurchasingUnavailable

logger = structlog.get_logger()

SUBMITTABLE_STATUSES = ("draft", "pending")
TERMINAL_STATUSES = ("completed", *CLOSED_DRAFT_STATUSES)


@dataclass
class ReorderSuggestion:
    product: Product
    supplier: Supplier | None
    quantity: int
    estimated_cost: Decimal


def default_order_quantity(
    current_stock: int,
    threshold: int,
    *,
    minimum_order_size: int,
    packaging_multiple: int | None = None,
) -> int:
    """
    Restock to twice the threshold, never below the minimum order size.

    >>> default_order_quantity(10, 50, minimum_order_size=50)
    90
    >>> default_order_quantity(10, 50, minimum_order_size=50, packaging_multiple=12)
    96
    """
    quantity = max(minimum_order_size, 2 * threshold - current_stock)
    if packaging_multiple and packaging_multiple > 1:
        quantity = math.ceil(quantity / packaging_multiple) * packaging_multiple
    return quantity


class ReplenishmentPlanner:
    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        purchasing: PurchasingClient | None = None,
        ledger: AlertLedger | None = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.purchasing = purchasing or PurchasingClient.from_settings(self.settings)
        self.ledger = ledger or AlertLedger(db)

    # ── Reads ───────────────────────────────────────────────────────────

    async def get(self, draft_id: uuid.UUID) -> PurchaseOrderDraft:
        draft = await self.db.get(PurchaseOrderDraft, draft_id)
        if draft is None:
            raise NotFound("purchase_order_draft", draft_id)
        return draft

    async def list(
        self,
        *,
        alert_id: uuid.UUID | None = None,
        status: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[PurchaseOrderDraft]:
        query = select(PurchaseOrderDraft)
        if alert_id:
            query = query.where(PurchaseOrderDraft.source_alert_id == alert_id)
        if status:
            query = query.where(PurchaseOrderDraft.purchasing_status == status)
        query = query.order_by(PurchaseOrderDraft.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def open_draft_for_alert(self, alert_id: uuid.UUID) -> PurchaseOrderDraft | None:
        result = await self.db.execute(
            select(PurchaseOrderDraft).where(
                PurchaseOrderDraft.source_alert_id == alert_id,
                PurchaseOrderDraft.purchasing_status.notin_(CLOSED_DRAFT_STATUSES),
            )
        )
        return result.scalars().first()

    async def suggestions(self, limit: int = 50) -> list[ReorderSuggestion]:
        """
        Default order for every active product at or below its threshold,
        most critical first. Nothing is persisted.
        """
        products = await CatalogStore(self.db).list_below_threshold()
        suggestions = []
        for product in products[:limit]:
            supplier = None
            if product.supplier_id is not None:
                supplier = await self.db.get(Supplier, product.supplier_id)
            quantity = self.quantity_for(product, supplier)
            suggestions.append(
                ReorderSuggestion(
                    product=product,
                    supplier=supplier,
                    quantity=quantity,
                    estimated_cost=Decimal(product.unit_price or 0) * quantity,
                )
            )
        return suggestions

    # ── Draft creation ──────────────────────────────────────────────────

    async def draft_from_alert(
        self,
        alert_id: uuid.UUID,
        *,
        requested_quantity: int | None = None,
        notes: str | None = None,
        expected_delivery: date | None = None,
        actor: str,
    ) -> PurchaseOrderDraft:
        _check_requested_quantity(requested_quantity)
        try:
            async with transaction(self.db):
                alert = await self.ledger.lock(alert_id)
                if alert.status == "resolved":
                    raise AlertAlreadyResolved(alert_id)
                existing = await self.open_draft_for_alert(alert_id)
                if existing is not None:
                    raise NoOpenDraftAllowed(alert_id, existing.draft_id)

                product = await self.db.get(Product, alert.product_id)
                if product is None or product.status != "active":
                    raise NotFound("product", alert.product_id)
                draft = await self._build_draft(
                    product,
                    requested_quantity=requested_quantity,
                    notes=notes,
                    expected_delivery=expected_delivery,
                    actor=actor,
                    source_alert_id=alert.alert_id,
                )
                self.ledger.record_action(
                    alert,
                    "draft_created",
                    taken_by=actor,
                    notes=f"Draft {draft.draft_id} for {draft.lines[0].quantity} units",
                )
        except IntegrityError as exc:
            # Lost a race the row lock could not serialize (e.g. SQLite).
            raise NoOpenDraftAllowed(alert_id, None) from exc
        return draft

    async def draft_for_product(
        self,
        product_id: uuid.UUID,
        *,
        requested_quantity: int | None = None,
        notes: str | None = None,
        expected_delivery: date | None = None,
        actor: str,
    ) -> PurchaseOrderDraft:
        """Manual draft with no source alert. No duplicate guard applies."""
        _check_requested_quantity(requested_quantity)
        async with transaction(self.db):
            product = await self.db.get(Product, product_id)
            if product is None or product.status != "active":
                raise NotFound("product", product_id)
            draft = await self._build_draft(
                product,
                requested_quantity=requested_quantity,
                notes=notes,
                expected_delivery=expected_delivery,
                actor=actor,
                source_alert_id=None,
            )
        return draft

    async def _build_draft(
        self,
        product: Product,
        *,
        requested_quantity: int | None,
        notes: str | None,
        expected_delivery: date | None,
        actor: str,
        source_alert_id: uuid.UUID | None,
    ) -> PurchaseOrderDraft:
        supplier = None
        if product.supplier_id is not None:
            supplier = await self.db.get(Supplier, product.supplier_id)

        quantity = requested_quantity or self.quantity_for(product, supplier)
        unit_price = Decimal(product.unit_price or 0)
        if expected_delivery is None:
            lead_time = (supplier.lead_time_days if supplier else None) or self.settings.default_lead_time_days
            expected_delivery = date.today() + timedelta(days=lead_time)

        draft = PurchaseOrderDraft(
            source_alert_id=source_alert_id,
            supplier_id=product.supplier_id,
            notes=notes,
            estimated_cost=unit_price * quantity,
            expected_delivery=expected_delivery,
            purchasing_status="draft",
            created_by=actor,
            lines=[
                PurchaseOrderDraftLine(
                    product_id=product.product_id,
                    quantity=quantity,
                    unit_price=unit_price,
                )
            ],
        )
        self.db.add(draft)
        await self.db.flush()

        logger.info(
            "planner.draft_created",
            draft_id=str(draft.draft_id),
            product_id=str(product.product_id),
            alert_id=str(source_alert_id) if source_alert_id else None,
            quantity=quantity,
            estimated_cost=str(draft.estimated_cost),
        )
        return draft

    def quantity_for(self, product: Product, supplier: Supplier | None) -> int:
        minimum = self.settings.minimum_order_size
        packaging_multiple = None
        if supplier is not None:
            minimum = supplier.min_order_quantity or minimum
            packaging_multiple = supplier.packaging_multiple
        return default_order_quantity(
            product.current_stock,
            product.low_stock_threshold,
            minimum_order_size=minimum,
            packaging_multiple=packaging_multiple,
        )

    # ── Purchasing hand-off ─────────────────────────────────────────────

    async def submit(self, draft_id: uuid.UUID, *, reclaim_stale: bool = False) -> PurchaseOrderDraft:
        """
        Hand the draft to Purchasing.

        The caller first claims the draft by moving it to ``submitting``;
        only the claimant calls Purchasing, every other caller gets the
        draft back unchanged. When Purchasing is unreachable the draft is
        parked as ``pending`` and can be resubmitted. ``reclaim_stale``
        lets the resubmit worker take over claims older than
        ``purchasing_claim_ttl_minutes``. Inventory is never touched here.
        """
        async with transaction(self.db):
            claimed = await self._claim(draft_id, reclaim_stale=reclaim_stale)
            draft = await self._reload(draft_id)
            payload = purchasing_payload(draft) if claimed else None
        if not claimed:
            return draft

        # No transaction or row lock is held across the network call.
        try:
            confirmation = await self.purchasing.submit_draft(payload)
        except PurchasingUnavailable as exc:
            logger.warning("purchasing.submit_failed", draft_id=str(draft_id), error=str(exc))
            confirmation = None

        async with transaction(self.db):
            draft = await self._lock(draft_id)
            # A webhook may have moved the draft on while the call was in flight.
            if draft.purchasing_status == SUBMITTING_STATUS:
                if confirmation is None:
                    draft.purchasing_status = "pending"
                else:
                    draft.purchasing_status = confirmation.status
                    draft.external_order_number = confirmation.order_number or draft.external_order_number
                draft.updated_at = datetime.utcnow()
        if confirmation is not None:
            logger.info(
                "purchasing.submitted",
                draft_id=str(draft_id),
                status=draft.purchasing_status,
                order_number=draft.external_order_number,
            )
        return draft

    async def record_purchasing_status(
        self,
        draft_id: uuid.UUID,
        status: str,
        order_number: str | None = None,
    ) -> PurchaseOrderDraft:
        """Mirror the external order lifecycle onto the draft."""
        if status not in PURCHASING_STATUSES:
            raise ConfigurationError(f"Unknown purchasing status '{status}'", status=status)

        async with transaction(self.db):
            draft = await self._lock(draft_id)
            current = draft.purchasing_status
            if current in TERMINAL_STATUSES and status != current:
                raise InvalidTransition(draft_id, current, status, entity="purchase_order_draft")
            draft.purchasing_status = status
            if order_number:
                draft.external_order_number = order_number
            draft.updated_at = datetime.utcnow()

        logger.info(
            "purchasing.status_recorded",
            draft_id=str(draft_id),
            from_status=current,
            to_status=status,
            order_number=draft.external_order_number,
        )
        return draft

    async def _claim(self, draft_id: uuid.UUID, *, reclaim_stale: bool) -> bool:
        """Compare-and-set the draft into ``submitting``. True for the single winner."""
        now = datetime.utcnow()
        claimable = PurchaseOrderDraft.purchasing_status.in_(SUBMITTABLE_STATUSES)
        if reclaim_stale:
            cutoff = now - timedelta(minutes=self.settings.purchasing_claim_ttl_minutes)
            claimable = or_(
                claimable,
                and_(
                    PurchaseOrderDraft.purchasing_status == SUBMITTING_STATUS,
                    PurchaseOrderDraft.submitted_at < cutoff,
                ),
            )
        result = await self.db.execute(
            update(PurchaseOrderDraft)
            .where(PurchaseOrderDraft.draft_id == draft_id, claimable)
            .values(purchasing_status=SUBMITTING_STATUS, submitted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _reload(self, draft_id: uuid.UUID) -> PurchaseOrderDraft:
        result = await self.db.execute(
            select(PurchaseOrderDraft)
            .where(PurchaseOrderDraft.draft_id == draft_id)
            .execution_options(populate_existing=True)
        )
        draft = result.scalar_one_or_none()
        if draft is None:
            raise NotFound("purchase_order_draft", draft_id)
        return draft

    async def _lock(self, draft_id: uuid.UUID) -> PurchaseOrderDraft:
        result = await self.db.execute(
            select(PurchaseOrderDraft)
            .where(PurchaseOrderDraft.draft_id == draft_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        draft = result.scalar_one_or_none()
        if draft is None:
            raise NotFound("purchase_order_draft", draft_id)
        return draft


def purchasing_payload(draft: PurchaseOrderDraft) -> dict:
    return {
        "draftId": str(draft.draft_id),
        "supplierId": str(draft.supplier_id) if draft.supplier_id else None,
        "orderDate": (draft.created_at or datetime.utcnow()).date().isoformat(),
        "expectedDeliveryDate": draft.expected_delivery.isoformat(),
        "notes": draft.notes,
        "estimatedCost": str(draft.estimated_cost),
        "items": [
            {
                "productId": str(line.product_id),
                "quantity": line.quantity,
                "unitPrice": str(line.unit_price),
            }
            for line in draft.lines
        ],
    }


def _check_requested_quantity(quantity: int | None) -> None:
    if quantity is not None and quantity < 1:
        raise InvalidQuantity("Requested quantity must be at least 1", requested_quantity=quantity)
