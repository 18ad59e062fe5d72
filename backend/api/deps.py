"""
Replenishment Engine API Dependencies

Dependency injection for DB sessions, auth, permissions and the engine
services wired per request.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.ledger import AlertLedger
from alerts.monitor import ThresholdMonitor
from catalog.store import CatalogStore
from core.config import get_settings
from core.errors import PermissionDenied
from core.security import WILDCARD_PERMISSION, decode_access_token, has_permission
from db.session import AsyncSessionLocal
from integrations.purchasing import PurchasingClient
from reconciliation.merger import BillReconciliationMerger
from replenishment.planner import ReplenishmentPlanner

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {
            "sub": "dev-user",
            "email": "dev@replenish.local",
            "permissions": [WILDCARD_PERMISSION],
        }

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


def require_permission(permission: str):
    """Route dependency: the caller's token must carry ``permission``."""

    async def checker(user: dict = Depends(get_current_user)) -> dict:
        if not has_permission(user, permission):
            raise PermissionDenied(permission)
        return user

    return checker


def actor_of(user: dict) -> str:
    return user.get("email") or user.get("sub") or "unknown"


# ─── Services ───────────────────────────────────────────────────────────────


def get_monitor(db: AsyncSession = Depends(get_db)) -> ThresholdMonitor:
    return ThresholdMonitor(db)


def get_catalog(
    db: AsyncSession = Depends(get_db),
    monitor: ThresholdMonitor = Depends(get_monitor),
) -> CatalogStore:
    """Catalog with the monitor subscribed, so every stock write re-evaluates alerts."""
    return CatalogStore(db, observers=[monitor.on_stock_changed])


def get_ledger(db: AsyncSession = Depends(get_db)) -> AlertLedger:
    return AlertLedger(db)


def get_purchasing_client() -> PurchasingClient:
    return PurchasingClient.from_settings()


def get_planner(
    db: AsyncSession = Depends(get_db),
    purchasing: PurchasingClient = Depends(get_purchasing_client),
) -> ReplenishmentPlanner:
    return ReplenishmentPlanner(db, purchasing=purchasing)


def get_merger(
    db: AsyncSession = Depends(get_db),
    catalog: CatalogStore = Depends(get_catalog),
) -> BillReconciliationMerger:
    return BillReconciliationMerger(db, catalog=catalog)
