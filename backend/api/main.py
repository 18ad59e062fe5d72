"""
Replenishment Engine API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError
from starlette.requests import Request

from core.config import get_settings
from core.errors import ReplenishmentError, StorageUnavailable

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Replenishment API starting up", version=settings.app_version)
    yield
    logger.info("Replenishment API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Low-stock alerting, restock drafts and scanned-bill reconciliation",
    lifespan=lifespan,
)


@app.exception_handler(ReplenishmentError)
async def replenishment_error_handler(request: Request, exc: ReplenishmentError):
    if exc.status_code >= 500:
        logger.error("api.error", path=request.url.path, code=exc.code, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(OperationalError)
@app.exception_handler(InterfaceError)
async def storage_error_handler(request: Request, exc: Exception):
    """Connection failures outside a transaction() scope (plain reads)."""
    logger.error("storage.unavailable", path=request.url.path, error=str(exc))
    error = StorageUnavailable()
    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import (
    alerts,
    bills,
    products,
    purchase_order_drafts,
    suppliers,
)

app.include_router(products.router)
app.include_router(suppliers.router)
app.include_router(alerts.router)
app.include_router(purchase_order_drafts.router)
app.include_router(bills.router)


@app.get("/health")
@app.get("/api/v1/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
