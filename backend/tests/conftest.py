"""
Test Configuration — Fixtures for async DB, test client, and mock data.

Every test gets its own in-memory SQLite database so engine code can
commit and roll back freely without leaking state between tests.
"""

from decimal import Decimal

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from alerts.ledger import AlertLedger
from alerts.monitor import ThresholdMonitor
from api.deps import get_current_user, get_db, get_purchasing_client
from api.main import app
from catalog.store import CatalogStore
from core.config import get_settings
from db.models import Product, Supplier
from db.session import Base
from integrations.purchasing import PurchasingClient

TEST_DATABASE_URL = "sqlite+aiosqlite://"
PURCHASING_URL = "http://purchasing.test"


@pytest.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def file_engine(tmp_path):
    """File-backed database so separate sessions run on separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'replenish.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def monitor(test_db, settings):
    return ThresholdMonitor(test_db, settings)


@pytest.fixture
def ledger(test_db):
    return AlertLedger(test_db)


@pytest.fixture
def catalog(test_db, monitor):
    """Catalog wired to the monitor the same way the API wires it."""
    return CatalogStore(test_db, observers=[monitor.on_stock_changed])


@pytest.fixture
def purchasing_handler():
    """Default Purchasing stub: accepts every draft as approved."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"orderNumber": f"PO-{len(calls):04d}", "status": "approved"})

    handler.calls = calls
    return handler


@pytest.fixture
def purchasing_client(purchasing_handler):
    return PurchasingClient(
        PURCHASING_URL,
        token="test-token",
        timeout=1.0,
        transport=httpx.MockTransport(purchasing_handler),
    )


@pytest.fixture
def mock_user():
    """Mock authenticated user with every permission."""
    return {
        "sub": "test-user-id",
        "email": "buyer@replenish.test",
        "permissions": ["*"],
    }


@pytest.fixture
async def client(test_db, mock_user, purchasing_client):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_purchasing_client] = lambda: purchasing_client

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_supplier(test_db):
    async def _make(**overrides) -> Supplier:
        values = {"name": "Test Distributor", "contact_email": "orders@testdist.com"}
        values.update(overrides)
        supplier = Supplier(**values)
        test_db.add(supplier)
        await test_db.commit()
        return supplier

    return _make


@pytest.fixture
def make_product(test_db):
    """Insert a product directly, bypassing the monitor."""
    counter = {"n": 0}

    async def _make(**overrides) -> Product:
        counter["n"] += 1
        values = {
            "sku": f"SKU-{counter['n']:04d}",
            "name": f"Test Product {counter['n']}",
            "category": "Dairy",
            "current_stock": 100,
            "low_stock_threshold": 20,
            "unit_price": Decimal("2.50"),
        }
        values.update(overrides)
        product = Product(**values)
        test_db.add(product)
        await test_db.commit()
        return product

    return _make


@pytest.fixture
async def seeded_db(make_supplier, make_product):
    """A supplier and a few products straddling their thresholds."""
    supplier = await make_supplier(lead_time_days=5)
    healthy = await make_product(name="Whole Milk 1L", sku="MILK-1L", current_stock=100, supplier_id=supplier.supplier_id)
    low = await make_product(name="Greek Yogurt", sku="YOG-GR", current_stock=15, supplier_id=supplier.supplier_id)
    empty = await make_product(name="Salted Butter", sku="BUT-SL", current_stock=0, supplier_id=supplier.supplier_id)
    return {"supplier": supplier, "healthy": healthy, "low": low, "empty": empty}
