"""
Tests for the scheduled replenishment workers.
"""

from datetime import datetime, timedelta

import httpx
import pytest
from sqlalchemy import select

from db.models import Alert
from integrations.purchasing import PurchasingClient
from replenishment.planner import ReplenishmentPlanner
from workers.celery_app import celery_app
from workers.sweep import resubmit_drafts, sweep_thresholds


def test_beat_schedule_runs_sweep():
    entry = celery_app.conf.beat_schedule["threshold-sweep"]
    assert entry["task"] == "workers.sweep.run_threshold_sweep"


@pytest.mark.asyncio
class TestSweepWorker:
    async def test_sweep_thresholds(self, session_factory, seeded_db, test_db):
        counts = await sweep_thresholds(session_factory)

        assert counts["created"] == 2
        alerts = (await test_db.execute(select(Alert))).scalars().all()
        assert len(alerts) == 2

    async def test_resubmit_pending_drafts(self, session_factory, test_db, settings, make_product):
        product = await make_product(current_stock=100, low_stock_threshold=20)
        offline = PurchasingClient("")
        planner = ReplenishmentPlanner(test_db, settings, purchasing=offline)
        draft = await planner.draft_for_product(product.product_id, actor="buyer")
        await planner.submit(draft.draft_id)

        def accept(request):
            return httpx.Response(200, json={"orderNumber": "PO-42", "status": "approved"})

        online = PurchasingClient("http://purchasing.test", transport=httpx.MockTransport(accept))
        counts = await resubmit_drafts(session_factory, purchasing=online)

        assert counts == {"attempted": 1, "confirmed": 1, "still_pending": 0}
        await test_db.refresh(draft)
        assert draft.purchasing_status == "approved"
        assert draft.external_order_number == "PO-42"

    async def test_resubmit_reclaims_only_stale_claims(
        self, session_factory, test_db, settings, make_product, purchasing_client, purchasing_handler
    ):
        product = await make_product(current_stock=100, low_stock_threshold=20)
        planner = ReplenishmentPlanner(test_db, settings, purchasing=PurchasingClient(""))
        stale = await planner.draft_for_product(product.product_id, actor="buyer")
        fresh = await planner.draft_for_product(product.product_id, actor="buyer")
        stale.purchasing_status = fresh.purchasing_status = "submitting"
        stale.submitted_at = datetime.utcnow() - timedelta(hours=2)
        fresh.submitted_at = datetime.utcnow()
        await test_db.commit()
        stale_id = stale.draft_id

        counts = await resubmit_drafts(session_factory, purchasing=purchasing_client)

        assert counts == {"attempted": 1, "confirmed": 1, "still_pending": 0}
        assert [c.headers["Idempotency-Key"] for c in purchasing_handler.calls] == [str(stale_id)]
