"""
Bill Reconciliation Merger

Folds a reviewed scanned bill into inventory:

  ExtractionResult (OCR, untrusted) + LineAdjustments (human review)
      → effective lines
      → product mapping: explicit → name match → unmapped
      → one transaction: +quantity per mapped line, audit record

Either every mapped line applies or none does. Unmapped lines never touch
stock but are kept on the BillReconciliation record. OCR confidence is
carried through as-is and never filters a line.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from catalog.store import CatalogStore
from core.config import Settings, get_settings
from core.errors import (
    BillAlreadyReconciled,
    ConfigurationError,
    InvalidQuantity,
    NotFound,
    PartialApplyRejected,
)
from db.models import BillReconciliation, BillReconciliationLine, Product
from db.session import transaction
from reconciliation.matching import Candidate, NameMatcher, match_names

logger = structlog.get_logger()


# ─── Inputs ─────────────────────────────────────────────────────────────────


@dataclass
class ExtractedLine:
    raw_name: str
    quantity: int
    unit_price: Decimal
    confidence: float
    product_id: uuid.UUID | None = None


@dataclass
class ExtractionResult:
    bill_number: str
    lines: list[ExtractedLine]
    supplier_guess: str | None = None
    bill_date: date | None = None


@dataclass
class LineAdjustment:
    """Reviewer override for the line at ``index`` (0-based)."""

    index: int
    product_id: uuid.UUID | None = None
    name: str | None = None
    quantity: int | None = None
    unit_price: Decimal | None = None


# ─── Outputs ────────────────────────────────────────────────────────────────


@dataclass
class EffectiveLine:
    index: int
    raw_name: str
    name: str
    quantity: int
    unit_price: Decimal
    confidence: float
    product_id: uuid.UUID | None = None
    mapping_method: str = "unmapped"
    match_score: float | None = None


@dataclass
class AppliedDelta:
    line_index: int
    product_id: uuid.UUID
    quantity: int
    resulting_stock: int


@dataclass
class ReconciliationOutcome:
    reconciliation: BillReconciliation
    applied: list[AppliedDelta] = field(default_factory=list)
    unmapped: list[EffectiveLine] = field(default_factory=list)


def stock_reason(bill_number: str) -> str:
    return f"bill-reconciliation:{bill_number}"


def effective_lines(
    extraction: ExtractionResult,
    adjustments: Iterable[LineAdjustment] = (),
) -> list[EffectiveLine]:
    """Overlay reviewer adjustments on the extracted lines."""
    lines = []
    for index, extracted in enumerate(extraction.lines):
        if not 0.0 <= extracted.confidence <= 1.0:
            raise ConfigurationError(
                "Line confidence must be within [0, 1]",
                line_index=index,
                confidence=extracted.confidence,
            )
        lines.append(
            EffectiveLine(
                index=index,
                raw_name=extracted.raw_name,
                name=extracted.raw_name,
                quantity=extracted.quantity,
                unit_price=Decimal(extracted.unit_price),
                confidence=extracted.confidence,
                product_id=extracted.product_id,
                mapping_method="explicit" if extracted.product_id else "unmapped",
            )
        )

    for adjustment in adjustments:
        if not 0 <= adjustment.index < len(lines):
            raise ConfigurationError(
                f"Adjustment refers to line {adjustment.index}, bill has {len(lines)} lines",
                line_index=adjustment.index,
            )
        line = lines[adjustment.index]
        if adjustment.name is not None:
            line.name = adjustment.name
        if adjustment.quantity is not None:
            line.quantity = adjustment.quantity
        if adjustment.unit_price is not None:
            line.unit_price = Decimal(adjustment.unit_price)
        if adjustment.product_id is not None:
            line.product_id = adjustment.product_id
            line.mapping_method = "explicit"
    return lines


class BillReconciliationMerger:
    def __init__(
        self,
        db: AsyncSession,
        catalog: CatalogStore | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.catalog = catalog or CatalogStore(db)
        self.settings = settings or get_settings()

    async def get(self, reconciliation_id: uuid.UUID) -> BillReconciliation:
        record = await self.db.get(BillReconciliation, reconciliation_id)
        if record is None:
            raise NotFound("bill_reconciliation", reconciliation_id)
        return record

    async def list(self, *, skip: int = 0, limit: int = 50) -> list[BillReconciliation]:
        result = await self.db.execute(
            select(BillReconciliation)
            .order_by(BillReconciliation.reconciled_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def reconcile(
        self,
        extraction: ExtractionResult,
        adjustments: Sequence[LineAdjustment] = (),
        *,
        actor: str,
    ) -> ReconciliationOutcome:
        bill_number = (extraction.bill_number or "").strip()
        if not bill_number:
            raise ConfigurationError("Bill number is required")

        lines = effective_lines(extraction, adjustments)
        await self._map_by_name([line for line in lines if line.product_id is None])

        mapped = sorted(
            (line for line in lines if line.product_id is not None),
            key=lambda line: (line.product_id, line.index),
        )
        unmapped = [line for line in lines if line.product_id is None]
        reason = stock_reason(bill_number)
        applied: list[AppliedDelta] = []

        try:
            async with transaction(self.db):
                existing = await self.db.execute(
                    select(BillReconciliation.reconciliation_id).where(
                        BillReconciliation.bill_number == bill_number
                    )
                )
                if existing.first() is not None:
                    raise BillAlreadyReconciled(bill_number)

                # Product ids ascending, so concurrent bills lock in the same order.
                for line in mapped:
                    if line.quantity <= 0:
                        raise PartialApplyRejected(bill_number, line.index, "quantity must be positive")
                    try:
                        product = await self.catalog.apply_delta(line.product_id, line.quantity, reason)
                    except (NotFound, InvalidQuantity) as exc:
                        raise PartialApplyRejected(bill_number, line.index, exc.message) from exc
                    applied.append(
                        AppliedDelta(
                            line_index=line.index,
                            product_id=line.product_id,
                            quantity=line.quantity,
                            resulting_stock=product.current_stock,
                        )
                    )

                record = BillReconciliation(
                    bill_number=bill_number,
                    supplier_guess=extraction.supplier_guess,
                    bill_date=extraction.bill_date,
                    reconciled_by=actor,
                    lines=[
                        BillReconciliationLine(
                            line_index=line.index,
                            raw_name=line.raw_name,
                            effective_name=line.name,
                            quantity=line.quantity,
                            unit_price=line.unit_price,
                            confidence=line.confidence,
                            product_id=line.product_id,
                            mapping_method=line.mapping_method,
                            match_score=line.match_score,
                        )
                        for line in lines
                    ],
                )
                self.db.add(record)
                await self.db.flush()
        except PartialApplyRejected as exc:
            logger.warning(
                "reconciliation.rejected",
                bill_number=bill_number,
                line_index=exc.details["line_index"],
                reason=exc.details["reason"],
            )
            raise
        except IntegrityError as exc:
            raise BillAlreadyReconciled(bill_number) from exc

        applied.sort(key=lambda delta: delta.line_index)
        logger.info(
            "reconciliation.applied",
            bill_number=bill_number,
            applied=len(applied),
            unmapped=len(unmapped),
            units=sum(delta.quantity for delta in applied),
        )
        return ReconciliationOutcome(reconciliation=record, applied=applied, unmapped=unmapped)

    async def _map_by_name(self, lines: list[EffectiveLine]) -> None:
        if not lines:
            return
        result = await self.db.execute(
            select(Product.product_id, Product.sku, Product.name).where(Product.status == "active")
        )
        candidates = [Candidate(product_id=row[0], sku=row[1], name=row[2]) for row in result.all()]
        if not candidates:
            return

        matcher = NameMatcher(candidates, cutoff=self.settings.name_match_cutoff)
        matches = await match_names(
            matcher,
            [line.name for line in lines],
            timeout=self.settings.name_match_timeout_seconds,
        )
        for line, match in zip(lines, matches):
            if match is None:
                continue
            line.product_id = match.product_id
            line.mapping_method = "name_match"
            line.match_score = match.score
