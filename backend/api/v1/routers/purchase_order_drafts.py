"""
Purchase Order Drafts Router — restock drafts from alerts or manual requests.

Drafts are intents; the Purchasing system confirms them and reports the
order lifecycle back through ``/purchasing-status``.
"""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import Field, model_validator

from api.deps import actor_of, get_current_user, get_planner, require_permission
from api.schemas import CamelModel, DataEnvelope
from replenishment.planner import ReplenishmentPlanner

router = APIRouter(prefix="/api/v1/purchase-order-drafts", tags=["purchase-order-drafts"])

PurchasingStatus = Literal["draft", "pending", "approved", "completed", "cancelled", "rejected"]
DraftStatus = Literal["draft", "pending", "submitting", "approved", "completed", "cancelled", "rejected"]


# ─── Schemas ────────────────────────────────────────────────────────────────


class DraftCreate(CamelModel):
    alert_id: UUID | None = None
    product_id: UUID | None = None
    quantity: int | None = None
    notes: str | None = None
    expected_delivery: date | None = None

    @model_validator(mode="after")
    def one_source(self):
        if (self.alert_id is None) == (self.product_id is None):
            raise ValueError("Provide exactly one of alertId or productId")
        return self


class DraftLineResponse(CamelModel):
    product_id: UUID
    quantity: int
    unit_price: float


class DraftResponse(CamelModel):
    draft_id: UUID
    source_alert_id: UUID | None
    supplier_id: UUID | None
    notes: str | None
    estimated_cost: float
    expected_delivery: date
    purchasing_status: str
    external_order_number: str | None
    created_by: str | None
    created_at: datetime
    submitted_at: datetime | None
    lines: list[DraftLineResponse]


class SuggestionResponse(CamelModel):
    product_id: UUID
    sku: str
    name: str
    category: str | None
    current_stock: int
    low_stock_threshold: int
    suggested_quantity: int
    unit_price: float
    estimated_cost: float
    supplier_id: UUID | None
    supplier_name: str | None
    supplier_email: str | None


class SuggestionsResponse(CamelModel):
    data: list[SuggestionResponse]
    total_items: int
    total_estimated_cost: float


class PurchasingStatusUpdate(CamelModel):
    status: PurchasingStatus
    order_number: str | None = Field(None, max_length=100)


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("", response_model=DraftResponse, status_code=201)
async def create_draft(
    body: DraftCreate,
    planner: ReplenishmentPlanner = Depends(get_planner),
    user: dict = Depends(require_permission("purchasing:write")),
):
    """
    Draft a restock order.

    From an alert the quantity defaults to restocking at twice the
    threshold; a second open draft for the same alert is refused.
    """
    if body.alert_id is not None:
        return await planner.draft_from_alert(
            body.alert_id,
            requested_quantity=body.quantity,
            notes=body.notes,
            expected_delivery=body.expected_delivery,
            actor=actor_of(user),
        )
    return await planner.draft_for_product(
        body.product_id,
        requested_quantity=body.quantity,
        notes=body.notes,
        expected_delivery=body.expected_delivery,
        actor=actor_of(user),
    )


@router.get("", response_model=DataEnvelope[DraftResponse])
async def list_drafts(
    alert_id: UUID | None = Query(None, alias="alertId"),
    status: DraftStatus | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    planner: ReplenishmentPlanner = Depends(get_planner),
    _user: dict = Depends(get_current_user),
):
    drafts = await planner.list(alert_id=alert_id, status=status, skip=skip, limit=limit)
    return {"data": drafts}


@router.get("/suggestions", response_model=SuggestionsResponse)
async def list_suggestions(
    limit: int = Query(50, ge=1, le=100),
    planner: ReplenishmentPlanner = Depends(get_planner),
    _user: dict = Depends(get_current_user),
):
    """What a draft would order for each product at or below threshold, with the total cost."""
    suggestions = await planner.suggestions(limit=limit)
    return SuggestionsResponse(
        data=[
            SuggestionResponse(
                product_id=s.product.product_id,
                sku=s.product.sku,
                name=s.product.name,
                category=s.product.category,
                current_stock=s.product.current_stock,
                low_stock_threshold=s.product.low_stock_threshold,
                suggested_quantity=s.quantity,
                unit_price=s.product.unit_price,
                estimated_cost=s.estimated_cost,
                supplier_id=s.supplier.supplier_id if s.supplier else None,
                supplier_name=s.supplier.name if s.supplier else None,
                supplier_email=s.supplier.contact_email if s.supplier else None,
            )
            for s in suggestions
        ],
        total_items=len(suggestions),
        total_estimated_cost=sum(s.estimated_cost for s in suggestions),
    )


@router.get("/{draft_id}", response_model=DraftResponse)
async def get_draft(
    draft_id: UUID,
    planner: ReplenishmentPlanner = Depends(get_planner),
    _user: dict = Depends(get_current_user),
):
    return await planner.get(draft_id)


@router.post("/{draft_id}/submit", response_model=DraftResponse)
async def submit_draft(
    draft_id: UUID,
    planner: ReplenishmentPlanner = Depends(get_planner),
    _user: dict = Depends(require_permission("purchasing:write")),
):
    """Hand the draft to Purchasing. Parks it as pending if Purchasing is unreachable."""
    return await planner.submit(draft_id)


@router.post("/{draft_id}/purchasing-status", response_model=DraftResponse)
async def record_purchasing_status(
    draft_id: UUID,
    body: PurchasingStatusUpdate,
    planner: ReplenishmentPlanner = Depends(get_planner),
    _user: dict = Depends(require_permission("purchasing:write")),
):
    return await planner.record_purchasing_status(draft_id, body.status, body.order_number)
