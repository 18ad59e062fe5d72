"""
Suppliers Router — supplier records used for order quantities and lead times.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db, require_permission
from api.schemas import DataEnvelope
from core.errors import NotFound
from db.models import Supplier
from db.session import transaction

router = APIRouter(prefix="/api/v1/suppliers", tags=["suppliers"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    contact_email: str | None = None
    lead_time_days: int | None = Field(None, gt=0)
    min_order_quantity: int | None = Field(None, gt=0)
    packaging_multiple: int | None = Field(None, gt=0)


class SupplierResponse(BaseModel):
    supplier_id: UUID
    name: str
    contact_email: str | None
    lead_time_days: int | None
    min_order_quantity: int | None
    packaging_multiple: int | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("", response_model=DataEnvelope[SupplierResponse])
async def list_suppliers(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(get_current_user),
):
    result = await db.execute(select(Supplier).order_by(Supplier.name).offset(skip).limit(limit))
    return {"data": result.scalars().all()}


@router.get("/{supplier_id}", response_model=SupplierResponse)
async def get_supplier(
    supplier_id: UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(get_current_user),
):
    supplier = await db.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFound("supplier", supplier_id)
    return supplier


@router.post("", response_model=SupplierResponse, status_code=201)
async def create_supplier(
    body: SupplierCreate,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("inventory:write")),
):
    supplier = Supplier(**body.model_dump())
    async with transaction(db):
        db.add(supplier)
    return supplier
