"""
Products Router — catalog CRUD, low-stock view and stock adjustments.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.deps import get_catalog, get_current_user, require_permission
from api.schemas import DataEnvelope
from catalog.store import CatalogStore

router = APIRouter(prefix="/api/v1/products", tags=["products"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ProductCreate(BaseModel):
    sku: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    category: str | None = None
    current_stock: int = Field(0, ge=0)
    low_stock_threshold: int
    unit_price: Decimal = Field(Decimal("0"), ge=0)
    supplier_id: UUID | None = None


class ProductUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    category: str | None = None
    low_stock_threshold: int | None = None
    unit_price: Decimal | None = Field(None, ge=0)
    supplier_id: UUID | None = None


class ProductResponse(BaseModel):
    product_id: UUID
    sku: str
    name: str
    category: str | None
    current_stock: int
    low_stock_threshold: int
    unit_price: float
    supplier_id: UUID | None
    status: str
    stock_ratio: float | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class StockAdjustment(BaseModel):
    delta: int
    reason: str = Field(..., min_length=1, max_length=255)


class StockMovementResponse(BaseModel):
    movement_id: UUID
    product_id: UUID
    delta: int
    resulting_stock: int
    reason: str
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("", response_model=DataEnvelope[ProductResponse])
async def list_products(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    category: str | None = None,
    status: str | None = None,
    catalog: CatalogStore = Depends(get_catalog),
    _user: dict = Depends(get_current_user),
):
    """List products with optional category and status filters."""
    products = await catalog.list(category=category, status=status, skip=skip, limit=limit)
    return {"data": products}


@router.get("/low-stock", response_model=DataEnvelope[ProductResponse])
async def list_low_stock(
    catalog: CatalogStore = Depends(get_catalog),
    _user: dict = Depends(get_current_user),
):
    """Active products at or below threshold, most critical first."""
    return {"data": await catalog.list_below_threshold()}


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: UUID,
    catalog: CatalogStore = Depends(get_catalog),
    _user: dict = Depends(get_current_user),
):
    return await catalog.get(product_id)


@router.post("", response_model=ProductResponse, status_code=201)
async def create_product(
    body: ProductCreate,
    catalog: CatalogStore = Depends(get_catalog),
    _user: dict = Depends(require_permission("inventory:write")),
):
    """Create a product. Its alert state is evaluated immediately."""
    return await catalog.create(**body.model_dump())


@router.patch("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: UUID,
    body: ProductUpdate,
    catalog: CatalogStore = Depends(get_catalog),
    _user: dict = Depends(require_permission("inventory:write")),
):
    """Edit catalog attributes. Stock changes go through stock-adjustments."""
    return await catalog.update(product_id, body.model_dump(exclude_unset=True))


@router.delete("/{product_id}", response_model=ProductResponse)
async def deactivate_product(
    product_id: UUID,
    catalog: CatalogStore = Depends(get_catalog),
    _user: dict = Depends(require_permission("inventory:write")),
):
    """Soft-delete: the product is marked inactive and kept for history."""
    return await catalog.deactivate(product_id)


@router.post("/{product_id}/stock-adjustments", response_model=ProductResponse)
async def adjust_stock(
    product_id: UUID,
    body: StockAdjustment,
    catalog: CatalogStore = Depends(get_catalog),
    _user: dict = Depends(require_permission("inventory:write")),
):
    return await catalog.adjust_stock(product_id, body.delta, body.reason)


@router.get("/{product_id}/stock-movements", response_model=DataEnvelope[StockMovementResponse])
async def list_stock_movements(
    product_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    catalog: CatalogStore = Depends(get_catalog),
    _user: dict = Depends(get_current_user),
):
    return {"data": await catalog.movements(product_id, limit=limit)}
