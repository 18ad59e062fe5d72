"""
Tests for the Replenishment Planner — order quantities, the open-draft
guard and the Purchasing hand-off.
"""

import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func, select

from core.errors import (
    AlertAlreadyResolved,
    InvalidQuantity,
    InvalidTransition,
    NoOpenDraftAllowed,
    NotFound,
)
from db.models import Alert, AlertAction, PurchaseOrderDraft
from integrations.purchasing import PurchasingClient
from replenishment.planner import ReplenishmentPlanner, default_order_quantity


class TestDefaultOrderQuantity:
    def test_restocks_to_twice_threshold(self):
        assert default_order_quantity(10, 50, minimum_order_size=50) == 90

    def test_minimum_order_size_wins(self):
        assert default_order_quantity(45, 20, minimum_order_size=50) == 50

    def test_rounds_up_to_packaging_multiple(self):
        assert default_order_quantity(10, 50, minimum_order_size=50, packaging_multiple=12) == 96

    def test_exact_multiple_is_kept(self):
        assert default_order_quantity(10, 50, minimum_order_size=50, packaging_multiple=10) == 90


@pytest.fixture
def planner(test_db, settings, purchasing_client):
    return ReplenishmentPlanner(test_db, settings, purchasing=purchasing_client)


@pytest.fixture
async def low_alert(catalog, make_product, test_db):
    """threshold=50, stock=10 → high alert."""
    product = await make_product(current_stock=60, low_stock_threshold=50, unit_price=Decimal("2.50"))
    await catalog.adjust_stock(product.product_id, -50, "dispatch")
    alert = (await test_db.execute(select(Alert))).scalar_one()
    return alert


@pytest.mark.asyncio
class TestDraftFromAlert:
    async def test_default_quantity_and_cost(self, planner, low_alert, settings):
        draft = await planner.draft_from_alert(low_alert.alert_id, actor="buyer")

        assert draft.purchasing_status == "draft"
        assert draft.source_alert_id == low_alert.alert_id
        assert len(draft.lines) == 1
        assert draft.lines[0].quantity == 90
        assert draft.estimated_cost == Decimal("225.00")
        assert draft.expected_delivery == date.today() + timedelta(days=settings.default_lead_time_days)

    async def test_alert_status_unchanged_and_action_recorded(self, planner, low_alert, test_db):
        await planner.draft_from_alert(low_alert.alert_id, actor="buyer")

        await test_db.refresh(low_alert)
        assert low_alert.status == "active"
        actions = (
            await test_db.execute(select(AlertAction).where(AlertAction.alert_id == low_alert.alert_id))
        ).scalars().all()
        assert "draft_created" in [a.action_type for a in actions]

    async def test_second_draft_is_refused(self, planner, low_alert):
        alert_id = low_alert.alert_id
        first = await planner.draft_from_alert(alert_id, actor="buyer")
        first_id = first.draft_id

        with pytest.raises(NoOpenDraftAllowed) as exc_info:
            await planner.draft_from_alert(alert_id, actor="buyer")
        assert exc_info.value.details["draft_id"] == first_id

    async def test_cancelled_draft_frees_the_alert(self, planner, low_alert):
        first = await planner.draft_from_alert(low_alert.alert_id, actor="buyer")
        await planner.record_purchasing_status(first.draft_id, "cancelled")

        second = await planner.draft_from_alert(low_alert.alert_id, actor="buyer")

        assert second.draft_id != first.draft_id

    async def test_resolved_alert_is_refused(self, planner, ledger, low_alert):
        await ledger.resolve(low_alert.alert_id, actor="buyer")
        with pytest.raises(AlertAlreadyResolved):
            await planner.draft_from_alert(low_alert.alert_id, actor="buyer")

    async def test_unknown_alert(self, planner):
        with pytest.raises(NotFound):
            await planner.draft_from_alert(uuid.uuid4(), actor="buyer")

    @pytest.mark.parametrize("quantity", [0, -3])
    async def test_requested_quantity_must_be_positive(self, planner, low_alert, quantity):
        with pytest.raises(InvalidQuantity):
            await planner.draft_from_alert(low_alert.alert_id, requested_quantity=quantity, actor="buyer")

    async def test_requested_quantity_taken_as_is(self, planner, low_alert):
        draft = await planner.draft_from_alert(low_alert.alert_id, requested_quantity=7, actor="buyer")
        assert draft.lines[0].quantity == 7

    async def test_supplier_terms_apply(self, planner, catalog, make_supplier, make_product, test_db):
        supplier = await make_supplier(lead_time_days=3, min_order_quantity=120, packaging_multiple=25)
        product = await make_product(current_stock=30, low_stock_threshold=20, supplier_id=supplier.supplier_id)
        await catalog.adjust_stock(product.product_id, -25, "dispatch")
        alert = (await test_db.execute(select(Alert))).scalar_one()

        draft = await planner.draft_from_alert(alert.alert_id, actor="buyer")

        assert draft.lines[0].quantity == 125
        assert draft.supplier_id == supplier.supplier_id
        assert draft.expected_delivery == date.today() + timedelta(days=3)


@pytest.mark.asyncio
class TestManualDrafts:
    async def test_draft_for_product_has_no_alert(self, planner, make_product):
        product = await make_product(current_stock=100, low_stock_threshold=20)

        first = await planner.draft_for_product(product.product_id, actor="buyer")
        second = await planner.draft_for_product(product.product_id, requested_quantity=10, actor="buyer")

        assert first.source_alert_id is None
        assert first.lines[0].quantity == 50
        assert second.lines[0].quantity == 10

    async def test_inactive_product(self, planner, make_product):
        product = await make_product(status="inactive")
        with pytest.raises(NotFound):
            await planner.draft_for_product(product.product_id, actor="buyer")


@pytest.mark.asyncio
class TestPurchasingHandOff:
    async def test_submit_stores_order_number(self, planner, low_alert, purchasing_handler):
        draft = await planner.draft_from_alert(low_alert.alert_id, actor="buyer")

        submitted = await planner.submit(draft.draft_id)

        assert submitted.purchasing_status == "approved"
        assert submitted.external_order_number == "PO-0001"
        assert submitted.submitted_at is not None
        assert len(purchasing_handler.calls) == 1

    async def test_submit_twice_calls_purchasing_once(self, planner, low_alert, purchasing_handler):
        draft = await planner.draft_from_alert(low_alert.alert_id, actor="buyer")

        await planner.submit(draft.draft_id)
        await planner.submit(draft.draft_id)

        assert len(purchasing_handler.calls) == 1

    async def test_unreachable_purchasing_parks_draft_as_pending(self, test_db, settings, low_alert, catalog):
        def refuse(request):
            return httpx.Response(503, json={"error": "maintenance"})

        planner = ReplenishmentPlanner(
            test_db,
            settings,
            purchasing=PurchasingClient("http://purchasing.test", transport=httpx.MockTransport(refuse)),
        )
        draft = await planner.draft_from_alert(low_alert.alert_id, actor="buyer")
        stock_before = (await catalog.get(low_alert.product_id)).current_stock

        submitted = await planner.submit(draft.draft_id)

        assert submitted.purchasing_status == "pending"
        assert submitted.external_order_number is None
        assert (await catalog.get(low_alert.product_id)).current_stock == stock_before

    async def test_unconfigured_purchasing_parks_draft_as_pending(self, test_db, settings, low_alert):
        planner = ReplenishmentPlanner(test_db, settings, purchasing=PurchasingClient(""))
        draft = await planner.draft_from_alert(low_alert.alert_id, actor="buyer")

        submitted = await planner.submit(draft.draft_id)

        assert submitted.purchasing_status == "pending"

    async def test_record_purchasing_status(self, planner, low_alert):
        draft = await planner.draft_from_alert(low_alert.alert_id, actor="buyer")

        updated = await planner.record_purchasing_status(draft.draft_id, "approved", "EXT-77")

        assert updated.purchasing_status == "approved"
        assert updated.external_order_number == "EXT-77"

    async def test_closed_draft_cannot_reopen(self, planner, low_alert):
        draft = await planner.draft_from_alert(low_alert.alert_id, actor="buyer")
        await planner.record_purchasing_status(draft.draft_id, "rejected")

        with pytest.raises(InvalidTransition):
            await planner.record_purchasing_status(draft.draft_id, "approved")

    async def test_in_flight_claim_is_not_resent(self, planner, low_alert, purchasing_handler, test_db):
        draft = await planner.draft_from_alert(low_alert.alert_id, actor="buyer")
        draft.purchasing_status = "submitting"
        draft.submitted_at = datetime.utcnow()
        await test_db.commit()

        returned = await planner.submit(draft.draft_id)

        assert returned.purchasing_status == "submitting"
        assert purchasing_handler.calls == []

    async def test_stale_claim_is_reclaimed_with_same_key(self, planner, low_alert, purchasing_handler, test_db):
        draft = await planner.draft_from_alert(low_alert.alert_id, actor="buyer")
        draft_id = draft.draft_id
        draft.purchasing_status = "submitting"
        draft.submitted_at = datetime.utcnow() - timedelta(hours=1)
        await test_db.commit()

        assert (await planner.submit(draft_id)).purchasing_status == "submitting"
        returned = await planner.submit(draft_id, reclaim_stale=True)

        assert returned.purchasing_status == "approved"
        assert [c.headers["Idempotency-Key"] for c in purchasing_handler.calls] == [str(draft_id)]

    async def test_webhook_during_submit_wins(self, test_db, settings, low_alert):
        planner = None

        async def cancel_while_in_flight(request):
            await planner.record_purchasing_status(draft_id, "cancelled")
            return httpx.Response(200, json={"orderNumber": "PO-LATE", "status": "approved"})

        planner = ReplenishmentPlanner(
            test_db,
            settings,
            purchasing=PurchasingClient("http://purchasing.test", transport=httpx.MockTransport(cancel_while_in_flight)),
        )
        draft_id = (await planner.draft_from_alert(low_alert.alert_id, actor="buyer")).draft_id

        returned = await planner.submit(draft_id)

        assert returned.purchasing_status == "cancelled"
        assert returned.external_order_number is None


@pytest.mark.asyncio
class TestGuards:
    async def test_lost_race_maps_to_open_draft_error(self, planner, low_alert, monkeypatch):
        alert_id = low_alert.alert_id
        await planner.draft_from_alert(alert_id, actor="buyer")

        async def stale_read(alert_id):
            return None

        monkeypatch.setattr(planner, "open_draft_for_alert", stale_read)

        with pytest.raises(NoOpenDraftAllowed) as exc_info:
            await planner.draft_from_alert(alert_id, actor="buyer")
        assert exc_info.value.details["draft_id"] is None

    async def test_alert_for_inactive_product_is_refused(self, planner, catalog, low_alert):
        alert_id, product_id = low_alert.alert_id, low_alert.product_id
        await catalog.deactivate(product_id)

        with pytest.raises(NotFound) as exc_info:
            await planner.draft_from_alert(alert_id, actor="buyer")
        assert exc_info.value.details["entity"] == "product"


@pytest.mark.asyncio
class TestSuggestions:
    async def test_suggestions_for_products_below_threshold(self, planner, seeded_db):
        suggestions = await planner.suggestions()

        assert [s.product.sku for s in suggestions] == ["BUT-SL", "YOG-GR"]
        butter, yogurt = suggestions
        assert butter.quantity == 50
        assert butter.estimated_cost == Decimal("125.00")
        assert butter.supplier.supplier_id == seeded_db["supplier"].supplier_id
        assert yogurt.quantity == 50

    async def test_suggestions_apply_supplier_terms(self, planner, make_supplier, make_product):
        supplier = await make_supplier(min_order_quantity=120, packaging_multiple=25)
        await make_product(current_stock=5, low_stock_threshold=20, supplier_id=supplier.supplier_id)

        (suggestion,) = await planner.suggestions()

        assert suggestion.quantity == 125

    async def test_suggestions_write_nothing(self, planner, seeded_db, test_db):
        await planner.suggestions()

        assert await test_db.scalar(select(func.count()).select_from(PurchaseOrderDraft)) == 0
