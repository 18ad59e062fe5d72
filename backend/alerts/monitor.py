"""
Threshold Monitor — decides which products are low and at what priority.

Two entry points drive the Alert Ledger:
  - push: ``on_stock_changed`` is registered as a Catalog Store observer
    and runs inside the stock mutation's transaction
  - pull: ``sweep`` re-evaluates every active product, catching threshold
    edits and imported stock that bypassed adjust_stock

Priority from r = current_stock / low_stock_threshold:
    r <= 0.5                → high
    0.5 < r <= 1.0          → medium
    1.0 < r <= watch band   → low
    r > watch band          → no alert (open alert auto-resolved)

Both paths are idempotent: evaluating an unchanged product writes nothing.
"""

from typing import Literal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.ledger import AlertLedger
from catalog.store import CatalogStore
from core.config import Settings, get_settings
from core.errors import ConfigurationError
from db.models import Product
from db.session import transaction

logger = structlog.get_logger()

EvaluationOutcome = Literal["created", "updated", "unchanged", "resolved", "clear"]


def classify_priority(
    current_stock: int,
    threshold: int,
    *,
    high_ratio: float = 0.5,
    watch_band: float = 1.2,
) -> str | None:
    """Map stock / threshold to an alert priority, or None above the watch band."""
    if threshold is None or threshold <= 0:
        raise ConfigurationError(
            "low_stock_threshold must be positive to derive priority",
            low_stock_threshold=threshold,
        )
    ratio = current_stock / threshold
    if ratio <= high_ratio:
        return "high"
    if ratio <= 1.0:
        return "medium"
    if ratio <= watch_band:
        return "low"
    return None


def validate_bands(high_ratio: float, watch_band: float) -> None:
    if not 0 < high_ratio <= 1.0:
        raise ConfigurationError("high_priority_ratio must be in (0, 1]", high_priority_ratio=high_ratio)
    if watch_band < 1.0:
        raise ConfigurationError("watch_band_ratio must be >= 1.0", watch_band_ratio=watch_band)


class ThresholdMonitor:
    """Evaluate products against their thresholds and keep alerts in step."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        ledger: AlertLedger | None = None,
    ):
        settings = settings or get_settings()
        validate_bands(settings.high_priority_ratio, settings.watch_band_ratio)
        self.db = db
        self.high_ratio = settings.high_priority_ratio
        self.watch_band = settings.watch_band_ratio
        self.ledger = ledger or AlertLedger(db)

    def priority_for(self, product: Product) -> str | None:
        return classify_priority(
            product.current_stock,
            product.low_stock_threshold,
            high_ratio=self.high_ratio,
            watch_band=self.watch_band,
        )

    async def evaluate(self, product: Product) -> EvaluationOutcome:
        """Single-product pass. The caller owns the transaction."""
        priority = self.priority_for(product)
        if priority is not None:
            result = await self.ledger.upsert_low_stock_alert(product, priority)
            return result.outcome

        resolved = await self.ledger.auto_resolve(product)
        return "resolved" if resolved is not None else "clear"

    async def on_stock_changed(self, product: Product) -> None:
        outcome = await self.evaluate(product)
        if outcome not in ("unchanged", "clear"):
            logger.debug("monitor.push_evaluated", product_id=str(product.product_id), outcome=outcome)

    async def sweep(self) -> dict[str, int]:
        """
        Re-evaluate every active product, one short transaction each.

        A misconfigured product is logged and counted; it does not abort
        the sweep. Storage errors propagate.
        """
        counts = {
            "evaluated": 0,
            "created": 0,
            "updated": 0,
            "unchanged": 0,
            "resolved": 0,
            "clear": 0,
            "misconfigured": 0,
        }
        result = await self.db.execute(
            select(Product.product_id).where(Product.status == "active").order_by(Product.product_id)
        )
        product_ids = [row[0] for row in result.all()]
        # Release the read snapshot before taking per-product locks.
        await self.db.commit()

        catalog = CatalogStore(self.db)
        for product_id in product_ids:
            try:
                async with transaction(self.db):
                    product = await catalog.lock(product_id)
                    if product is None or product.status != "active":
                        continue
                    outcome = await self.evaluate(product)
            except ConfigurationError as exc:
                counts["misconfigured"] += 1
                logger.warning("monitor.misconfigured_product", product_id=str(product_id), error=exc.message)
                continue
            counts["evaluated"] += 1
            counts[outcome] += 1

        logger.info("monitor.sweep_complete", **counts)
        return counts
