"""
Alerts Router — alert listing, lifecycle transitions and the threshold sweep.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from alerts.ledger import AlertLedger
from alerts.monitor import ThresholdMonitor
from api.deps import actor_of, get_current_user, get_ledger, get_monitor, require_permission
from api.schemas import DataEnvelope

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class AlertResponse(BaseModel):
    alert_id: UUID
    product_id: UUID
    kind: str
    priority: str
    status: str
    message: str
    snapshot_stock: int | None
    snapshot_threshold: int | None
    resolution_note: str | None
    created_at: datetime
    updated_at: datetime
    acknowledged_at: datetime | None
    resolved_at: datetime | None

    model_config = {"from_attributes": True}


class AlertCreate(BaseModel):
    product_id: UUID
    kind: Literal["manual", "system"] = "manual"
    priority: Literal["high", "medium", "low"] = "medium"
    message: str = Field(..., min_length=1)


class AlertResolve(BaseModel):
    notes: str | None = None


class CategoryShortfall(BaseModel):
    category: str
    count: int
    estimated_value: float


class AlertSummary(BaseModel):
    total: int
    active: int
    acknowledged: int
    resolved: int
    high: int
    medium: int
    low: int
    estimated_restock_value: float
    categories: list[CategoryShortfall]


class AlertActionResponse(BaseModel):
    action_id: UUID
    alert_id: UUID
    action_type: str
    notes: str | None
    taken_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class SweepResponse(BaseModel):
    evaluated: int
    created: int
    updated: int
    unchanged: int
    resolved: int
    clear: int
    misconfigured: int


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("", response_model=DataEnvelope[AlertResponse])
async def list_alerts(
    kind: Literal["low_stock", "system", "manual"] | None = Query(None, alias="type"),
    status: Literal["active", "acknowledged", "resolved"] | None = None,
    priority: Literal["high", "medium", "low"] | None = None,
    product_id: UUID | None = Query(None, alias="productId"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ledger: AlertLedger = Depends(get_ledger),
    _user: dict = Depends(get_current_user),
):
    """List alerts, most severe first."""
    alerts = await ledger.list(
        kind=kind,
        status=status,
        priority=priority,
        product_id=product_id,
        skip=skip,
        limit=limit,
    )
    return {"data": alerts}


@router.get("/summary", response_model=AlertSummary)
async def get_alert_summary(
    ledger: AlertLedger = Depends(get_ledger),
    _user: dict = Depends(get_current_user),
):
    """Counts by status and open priority, plus the restock value per category."""
    return await ledger.summary()


@router.post("/sweep", response_model=SweepResponse)
async def run_sweep(
    monitor: ThresholdMonitor = Depends(get_monitor),
    _user: dict = Depends(require_permission("alerts:write")),
):
    """Re-evaluate every active product now instead of waiting for the schedule."""
    return await monitor.sweep()


@router.post("", response_model=AlertResponse, status_code=201)
async def create_alert(
    body: AlertCreate,
    ledger: AlertLedger = Depends(get_ledger),
    user: dict = Depends(require_permission("alerts:write")),
):
    return await ledger.create(
        product_id=body.product_id,
        kind=body.kind,
        priority=body.priority,
        message=body.message,
        actor=actor_of(user),
    )


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(
    alert_id: UUID,
    ledger: AlertLedger = Depends(get_ledger),
    _user: dict = Depends(get_current_user),
):
    return await ledger.get(alert_id)


@router.get("/{alert_id}/actions", response_model=DataEnvelope[AlertActionResponse])
async def list_alert_actions(
    alert_id: UUID,
    ledger: AlertLedger = Depends(get_ledger),
    _user: dict = Depends(get_current_user),
):
    return {"data": await ledger.actions(alert_id)}


@router.post("/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: UUID,
    ledger: AlertLedger = Depends(get_ledger),
    user: dict = Depends(require_permission("alerts:write")),
):
    return await ledger.acknowledge(alert_id, actor=actor_of(user))


@router.post("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: UUID,
    body: AlertResolve | None = None,
    ledger: AlertLedger = Depends(get_ledger),
    user: dict = Depends(require_permission("alerts:write")),
):
    notes = body.notes if body else None
    return await ledger.resolve(alert_id, actor=actor_of(user), notes=notes)
