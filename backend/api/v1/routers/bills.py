"""
Bills Router — confirm reviewed scanned bills into stock.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import Field

from api.deps import actor_of, get_current_user, get_merger, require_permission
from api.schemas import CamelModel, DataEnvelope
from reconciliation.merger import (
    BillReconciliationMerger,
    ExtractedLine,
    ExtractionResult,
    LineAdjustment,
)

router = APIRouter(prefix="/api/v1/bills", tags=["bills"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class BillLineIn(CamelModel):
    product_id: UUID | None = None
    raw_name: str = Field(..., max_length=500)
    quantity: int
    unit_price: Decimal = Field(..., ge=0)
    confidence: float = Field(..., ge=0, le=1)


class BillAdjustmentIn(CamelModel):
    index: int = Field(..., ge=0)
    product_id: UUID | None = None
    name: str | None = Field(None, max_length=500)
    quantity: int | None = None
    unit_price: Decimal | None = Field(None, ge=0)


class BillReconcileRequest(CamelModel):
    bill_number: str = Field(..., min_length=1, max_length=100)
    supplier_guess: str | None = None
    bill_date: date | None = None
    lines: list[BillLineIn]
    adjustments: list[BillAdjustmentIn] = []


class AppliedDeltaResponse(CamelModel):
    line_index: int
    product_id: UUID
    quantity: int
    resulting_stock: int


class UnmappedLineResponse(CamelModel):
    line_index: int
    raw_name: str
    name: str
    quantity: int
    unit_price: float
    confidence: float


class ReconcileResponse(CamelModel):
    reconciliation_id: UUID
    bill_number: str
    applied: list[AppliedDeltaResponse]
    unmapped: list[UnmappedLineResponse]


class BillLineResponse(CamelModel):
    line_index: int
    raw_name: str
    effective_name: str
    quantity: int
    unit_price: float
    confidence: float
    product_id: UUID | None
    mapping_method: str
    match_score: float | None


class BillResponse(CamelModel):
    reconciliation_id: UUID
    bill_number: str
    supplier_guess: str | None
    bill_date: date | None
    reconciled_by: str | None
    reconciled_at: datetime
    lines: list[BillLineResponse]


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/reconcile", response_model=ReconcileResponse, status_code=201)
async def reconcile_bill(
    body: BillReconcileRequest,
    merger: BillReconciliationMerger = Depends(get_merger),
    user: dict = Depends(require_permission("inventory:write")),
):
    """
    Apply a reviewed bill to stock.

    Every mapped line lands or none does. Lines that match no product are
    returned as unmapped and kept on the bill record.
    """
    extraction = ExtractionResult(
        bill_number=body.bill_number,
        supplier_guess=body.supplier_guess,
        bill_date=body.bill_date,
        lines=[
            ExtractedLine(
                raw_name=line.raw_name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                confidence=line.confidence,
                product_id=line.product_id,
            )
            for line in body.lines
        ],
    )
    adjustments = [LineAdjustment(**adjustment.model_dump()) for adjustment in body.adjustments]
    outcome = await merger.reconcile(extraction, adjustments, actor=actor_of(user))
    return ReconcileResponse(
        reconciliation_id=outcome.reconciliation.reconciliation_id,
        bill_number=outcome.reconciliation.bill_number,
        applied=[AppliedDeltaResponse.model_validate(delta) for delta in outcome.applied],
        unmapped=[
            UnmappedLineResponse(
                line_index=line.index,
                raw_name=line.raw_name,
                name=line.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                confidence=line.confidence,
            )
            for line in outcome.unmapped
        ],
    )


@router.get("", response_model=DataEnvelope[BillResponse])
async def list_bills(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    merger: BillReconciliationMerger = Depends(get_merger),
    _user: dict = Depends(get_current_user),
):
    return {"data": await merger.list(skip=skip, limit=limit)}


@router.get("/{reconciliation_id}", response_model=BillResponse)
async def get_bill(
    reconciliation_id: UUID,
    merger: BillReconciliationMerger = Depends(get_merger),
    _user: dict = Depends(get_current_user),
):
    return await merger.get(reconciliation_id)
