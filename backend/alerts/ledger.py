"""
Alert Ledger — alert records and their lifecycle.

State machine:
    active --acknowledge--> acknowledged --resolve--> resolved
    active --resolve--> resolved
    resolved is terminal.

At most one open (active or acknowledged) low_stock alert exists per
product. Upserts update that alert in place; the partial unique index
``uq_alerts_open_low_stock`` backs the invariant at the storage layer.
Alerts are never deleted.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ConfigurationError, InvalidTransition, NotFound
from db.models import OPEN_ALERT_STATUSES, Alert, AlertAction, Product
from db.session import transaction

logger = structlog.get_logger()

SYSTEM_ACTOR = "system"

UpsertOutcome = Literal["created", "updated", "unchanged"]

PRIORITY_RANK = case(
    (Alert.priority == "high", 0),
    (Alert.priority == "medium", 1),
    else_=2,
)


@dataclass
class UpsertResult:
    alert: Alert
    outcome: UpsertOutcome


def low_stock_message(product: Product, priority: str) -> str:
    return (
        f"Low stock: {product.name} ({product.sku}) at "
        f"{product.current_stock}/{product.low_stock_threshold} units, {priority} priority"
    )


class AlertLedger:
    """CRUD and lifecycle transitions for alerts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Reads ───────────────────────────────────────────────────────────

    async def get(self, alert_id: uuid.UUID) -> Alert:
        alert = await self.db.get(Alert, alert_id)
        if alert is None:
            raise NotFound("alert", alert_id)
        return alert

    async def lock(self, alert_id: uuid.UUID) -> Alert:
        result = await self.db.execute(
            select(Alert)
            .where(Alert.alert_id == alert_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        alert = result.scalar_one_or_none()
        if alert is None:
            raise NotFound("alert", alert_id)
        return alert

    async def open_low_stock_alert(self, product_id: uuid.UUID) -> Alert | None:
        result = await self.db.execute(
            select(Alert).where(
                Alert.product_id == product_id,
                Alert.kind == "low_stock",
                Alert.status.in_(OPEN_ALERT_STATUSES),
            )
        )
        return result.scalar_one_or_none()

    async def list(
        self,
        *,
        kind: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        product_id: uuid.UUID | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Alert]:
        """Most severe first: priority, then stock ratio at snapshot, then newest."""
        query = select(Alert)
        if kind:
            query = query.where(Alert.kind == kind)
        if status:
            query = query.where(Alert.status == status)
        if priority:
            query = query.where(Alert.priority == priority)
        if product_id:
            query = query.where(Alert.product_id == product_id)

        ratio = (Alert.snapshot_stock * 1.0) / Alert.snapshot_threshold
        query = (
            query.order_by(PRIORITY_RANK, ratio.asc().nulls_last(), Alert.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def summary(self) -> dict[str, Any]:
        """
        Alert counts by status (and by priority for open alerts), plus the
        restock value of every active product at or below its threshold.

        Restock value is ``unit_price × (threshold − current_stock)``; the
        category breakdown lists the ten categories with the most such
        products.
        """
        status_rows = (await self.db.execute(select(Alert.status, func.count()).group_by(Alert.status))).all()
        priority_rows = (
            await self.db.execute(
                select(Alert.priority, func.count())
                .where(Alert.status.in_(OPEN_ALERT_STATUSES))
                .group_by(Alert.priority)
            )
        ).all()
        by_status = {row[0]: row[1] for row in status_rows}
        by_priority = {row[0]: row[1] for row in priority_rows}

        shortfall_value = func.coalesce(
            func.sum(Product.unit_price * (Product.low_stock_threshold - Product.current_stock)), 0
        )
        below_threshold = (
            Product.status == "active",
            Product.current_stock <= Product.low_stock_threshold,
        )
        restock_value = await self.db.scalar(select(shortfall_value).where(*below_threshold))
        category_rows = (
            await self.db.execute(
                select(Product.category, func.count().label("count"), shortfall_value)
                .where(*below_threshold, Product.category.is_not(None))
                .group_by(Product.category)
                .order_by(func.count().desc(), Product.category)
                .limit(10)
            )
        ).all()

        return {
            "total": sum(by_status.values()),
            "active": by_status.get("active", 0),
            "acknowledged": by_status.get("acknowledged", 0),
            "resolved": by_status.get("resolved", 0),
            "high": by_priority.get("high", 0),
            "medium": by_priority.get("medium", 0),
            "low": by_priority.get("low", 0),
            "estimated_restock_value": float(restock_value or 0),
            "categories": [
                {"category": row[0], "count": row[1], "estimated_value": float(row[2] or 0)}
                for row in category_rows
            ],
        }

    async def actions(self, alert_id: uuid.UUID) -> list[AlertAction]:
        await self.get(alert_id)
        result = await self.db.execute(
            select(AlertAction).where(AlertAction.alert_id == alert_id).order_by(AlertAction.created_at)
        )
        return list(result.scalars().all())

    # ── Monitor-driven writes (caller owns the transaction) ─────────────

    async def upsert_low_stock_alert(self, product: Product, priority: str) -> UpsertResult:
        """
        Create the product's low_stock alert, or refresh the open one in place.

        Nothing is written when snapshot, priority and message are unchanged.
        """
        message = low_stock_message(product, priority)
        alert = await self.open_low_stock_alert(product.product_id)

        if alert is None:
            alert = Alert(
                product_id=product.product_id,
                kind="low_stock",
                priority=priority,
                status="active",
                message=message,
                snapshot_stock=product.current_stock,
                snapshot_threshold=product.low_stock_threshold,
            )
            self.db.add(alert)
            await self.db.flush()
            self.record_action(alert, "created", taken_by=SYSTEM_ACTOR, notes=message)
            await self.db.flush()
            logger.info(
                "alerts.created",
                alert_id=str(alert.alert_id),
                product_id=str(product.product_id),
                priority=priority,
            )
            return UpsertResult(alert=alert, outcome="created")

        unchanged = (
            alert.snapshot_stock == product.current_stock
            and alert.snapshot_threshold == product.low_stock_threshold
            and alert.priority == priority
            and alert.message == message
        )
        if unchanged:
            return UpsertResult(alert=alert, outcome="unchanged")

        alert.snapshot_stock = product.current_stock
        alert.snapshot_threshold = product.low_stock_threshold
        alert.priority = priority
        alert.message = message
        alert.updated_at = datetime.utcnow()
        await self.db.flush()
        logger.info(
            "alerts.updated",
            alert_id=str(alert.alert_id),
            product_id=str(product.product_id),
            priority=priority,
        )
        return UpsertResult(alert=alert, outcome="updated")

    async def auto_resolve(self, product: Product) -> Alert | None:
        """
        Resolve the product's open low_stock alert once stock is above threshold.

        Returns the resolved alert, or None when there was nothing to do.
        """
        if product.current_stock <= product.low_stock_threshold:
            return None
        alert = await self.open_low_stock_alert(product.product_id)
        if alert is None:
            return None

        note = (
            f"Auto-resolved: stock recovered to "
            f"{product.current_stock}/{product.low_stock_threshold} units"
        )
        self._mark_resolved(alert, note)
        self.record_action(alert, "auto_resolved", taken_by=SYSTEM_ACTOR, notes=note)
        await self.db.flush()
        logger.info(
            "alerts.auto_resolved",
            alert_id=str(alert.alert_id),
            product_id=str(product.product_id),
            current_stock=product.current_stock,
        )
        return alert

    # ── Operator actions ────────────────────────────────────────────────

    async def acknowledge(self, alert_id: uuid.UUID, actor: str) -> Alert:
        async with transaction(self.db):
            alert = await self.lock(alert_id)
            if alert.status == "resolved":
                raise InvalidTransition(alert_id, alert.status, "acknowledged")
            if alert.status == "active":
                alert.status = "acknowledged"
                alert.acknowledged_at = datetime.utcnow()
                alert.updated_at = alert.acknowledged_at
                self.record_action(alert, "acknowledged", taken_by=actor)
        logger.info("alerts.acknowledged", alert_id=str(alert_id), actor=actor)
        return alert

    async def resolve(self, alert_id: uuid.UUID, actor: str, notes: str | None = None) -> Alert:
        """Idempotent: resolving a resolved alert returns it unchanged."""
        async with transaction(self.db):
            alert = await self.lock(alert_id)
            if alert.status != "resolved":
                self._mark_resolved(alert, notes)
                self.record_action(alert, "resolved", taken_by=actor, notes=notes)
        logger.info("alerts.resolved", alert_id=str(alert_id), actor=actor)
        return alert

    async def create(
        self,
        *,
        product_id: uuid.UUID,
        kind: str,
        priority: str,
        message: str,
        actor: str,
    ) -> Alert:
        """Operator- or system-raised alert. low_stock alerts come from the monitor only."""
        if kind == "low_stock":
            raise ConfigurationError("low_stock alerts are raised by the threshold monitor", kind=kind)
        async with transaction(self.db):
            product = await self.db.get(Product, product_id)
            if product is None:
                raise NotFound("product", product_id)
            alert = Alert(
                product_id=product_id,
                kind=kind,
                priority=priority,
                status="active",
                message=message,
                snapshot_stock=product.current_stock,
                snapshot_threshold=product.low_stock_threshold,
            )
            self.db.add(alert)
            await self.db.flush()
            self.record_action(alert, "created", taken_by=actor, notes=message)
        return alert

    def record_action(self, alert: Alert, action_type: str, *, taken_by: str, notes: str | None = None) -> None:
        self.db.add(
            AlertAction(
                alert_id=alert.alert_id,
                action_type=action_type,
                notes=notes,
                taken_by=taken_by,
            )
        )

    @staticmethod
    def _mark_resolved(alert: Alert, note: str | None) -> None:
        now = datetime.utcnow()
        alert.status = "resolved"
        alert.resolved_at = now
        alert.updated_at = now
        alert.resolution_note = note
