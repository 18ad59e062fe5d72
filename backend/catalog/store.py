"""
Catalog Store — authoritative product stock and threshold state.

All stock changes (dispatch, receiving, bill reconciliation) go through
``apply_delta`` so observers (the Threshold Monitor) have a single
observation point. Observers run inside the same transaction as the
stock write.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ConfigurationError, InvalidQuantity, NotFound
from db.models import Product, StockMovement, Supplier
from db.session import transaction

logger = structlog.get_logger()

StockObserver = Callable[[Product], Awaitable[Any]]

EDITABLE_FIELDS = {"name", "category", "low_stock_threshold", "unit_price", "supplier_id"}
REQUIRED_FIELDS = {"name", "low_stock_threshold", "unit_price"}


class CatalogStore:
    """Product reads and the stock mutation primitive."""

    def __init__(self, db: AsyncSession, observers: Iterable[StockObserver] = ()):
        self.db = db
        self._observers = list(observers)

    def subscribe(self, observer: StockObserver) -> None:
        self._observers.append(observer)

    # ── Reads ───────────────────────────────────────────────────────────

    async def get(self, product_id: uuid.UUID) -> Product:
        product = await self.db.get(Product, product_id)
        if product is None:
            raise NotFound("product", product_id)
        return product

    async def lock(self, product_id: uuid.UUID) -> Product | None:
        """SELECT ... FOR UPDATE on the product row, refreshing the identity map."""
        result = await self.db.execute(
            select(Product)
            .where(Product.product_id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list(
        self,
        *,
        category: str | None = None,
        status: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Product]:
        query = select(Product)
        if category:
            query = query.where(Product.category == category)
        if status:
            query = query.where(Product.status == status)
        query = query.order_by(Product.name).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_below_threshold(self) -> list[Product]:
        """Active products at or below threshold, most critical first."""
        ratio = (Product.current_stock * 1.0) / Product.low_stock_threshold
        result = await self.db.execute(
            select(Product)
            .where(
                Product.status == "active",
                Product.current_stock <= Product.low_stock_threshold,
            )
            .order_by(ratio.asc(), Product.name.asc())
        )
        return list(result.scalars().all())

    async def movements(self, product_id: uuid.UUID, limit: int = 100) -> list[StockMovement]:
        await self.get(product_id)
        result = await self.db.execute(
            select(StockMovement)
            .where(StockMovement.product_id == product_id)
            .order_by(StockMovement.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ── Stock mutation ──────────────────────────────────────────────────

    async def adjust_stock(self, product_id: uuid.UUID, delta: int, reason: str) -> Product:
        """Apply ``delta`` and commit, alerts included."""
        async with transaction(self.db):
            product = await self.apply_delta(product_id, delta, reason)
        return product

    async def apply_delta(self, product_id: uuid.UUID, delta: int, reason: str) -> Product:
        """
        Uncommitted stock mutation. The caller owns the transaction.

        The product row stays locked until the caller commits. The increment
        itself is a guarded ``current_stock + delta`` UPDATE, so concurrent
        deltas compose even where the dialect ignores FOR UPDATE.
        """
        if delta == 0:
            raise InvalidQuantity("Stock delta must be non-zero", product_id=product_id)

        product = await self.lock(product_id)
        if product is None or product.status != "active":
            raise NotFound("product", product_id)

        result = await self.db.execute(
            update(Product)
            .where(Product.product_id == product_id, Product.current_stock + delta >= 0)
            .values(current_stock=Product.current_stock + delta, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        product = await self.lock(product_id)
        if result.rowcount != 1:
            raise InvalidQuantity(
                f"Adjustment of {delta} would leave {product.name} at {product.current_stock + delta}",
                product_id=product_id,
                current_stock=product.current_stock,
                delta=delta,
            )

        new_stock = product.current_stock
        self.db.add(
            StockMovement(
                product_id=product.product_id,
                delta=delta,
                resulting_stock=new_stock,
                reason=reason,
            )
        )
        await self.db.flush()

        logger.info(
            "catalog.stock_adjusted",
            product_id=str(product_id),
            delta=delta,
            current_stock=new_stock,
            reason=reason,
        )

        for observer in self._observers:
            await observer(product)
        return product

    # ── Administrative edits ────────────────────────────────────────────

    async def create(
        self,
        *,
        sku: str,
        name: str,
        low_stock_threshold: int,
        unit_price: Decimal,
        category: str | None = None,
        current_stock: int = 0,
        supplier_id: uuid.UUID | None = None,
    ) -> Product:
        _check_threshold(low_stock_threshold)
        if current_stock < 0:
            raise InvalidQuantity("Initial stock cannot be negative", current_stock=current_stock)
        try:
            async with transaction(self.db):
                if supplier_id is not None:
                    await self._require_supplier(supplier_id)
                product = Product(
                    sku=sku,
                    name=name,
                    category=category,
                    current_stock=current_stock,
                    low_stock_threshold=low_stock_threshold,
                    unit_price=unit_price,
                    supplier_id=supplier_id,
                )
                self.db.add(product)
                await self.db.flush()
                for observer in self._observers:
                    await observer(product)
        except IntegrityError as exc:
            raise ConfigurationError(f"Product with SKU '{sku}' already exists", sku=sku) from exc
        logger.info("catalog.product_created", product_id=str(product.product_id), sku=sku)
        return product

    async def update(self, product_id: uuid.UUID, changes: dict[str, Any]) -> Product:
        """
        Edit catalog attributes. Stock is not editable here; use adjust_stock.

        Threshold edits re-run the observers so alert state follows.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ConfigurationError(f"Fields not editable: {sorted(unknown)}", fields=sorted(unknown))
        missing = sorted(field for field in REQUIRED_FIELDS if field in changes and changes[field] is None)
        if missing:
            raise ConfigurationError(f"Fields cannot be cleared: {missing}", fields=missing)
        if "low_stock_threshold" in changes:
            _check_threshold(changes["low_stock_threshold"])

        async with transaction(self.db):
            product = await self.lock(product_id)
            if product is None:
                raise NotFound("product", product_id)
            if changes.get("supplier_id") is not None:
                await self._require_supplier(changes["supplier_id"])

            threshold_changed = (
                "low_stock_threshold" in changes
                and changes["low_stock_threshold"] != product.low_stock_threshold
            )
            for field, value in changes.items():
                setattr(product, field, value)
            product.updated_at = datetime.utcnow()
            await self.db.flush()

            if threshold_changed and product.status == "active":
                for observer in self._observers:
                    await observer(product)
        return product

    async def deactivate(self, product_id: uuid.UUID) -> Product:
        """Soft-delete. Products referenced by alerts or drafts are never removed."""
        async with transaction(self.db):
            product = await self.lock(product_id)
            if product is None:
                raise NotFound("product", product_id)
            product.status = "inactive"
            product.updated_at = datetime.utcnow()
        logger.info("catalog.product_deactivated", product_id=str(product_id))
        return product

    async def _require_supplier(self, supplier_id: uuid.UUID) -> Supplier:
        supplier = await self.db.get(Supplier, supplier_id)
        if supplier is None:
            raise NotFound("supplier", supplier_id)
        return supplier


def _check_threshold(threshold: int) -> None:
    if threshold is None or threshold <= 0:
        raise ConfigurationError(
            "low_stock_threshold must be a positive integer",
            low_stock_threshold=threshold,
        )
