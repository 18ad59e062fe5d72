"""
Scheduled Replenishment Workers

Workers:
  1. run_threshold_sweep: re-evaluate every active product against its
     threshold (catches threshold edits and stock imported outside
     adjust_stock)
  2. resubmit_pending_drafts: retry drafts Purchasing could not confirm
"""

import asyncio
from datetime import datetime, timedelta

import structlog
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


async def sweep_thresholds(session_factory: async_sessionmaker) -> dict:
    from alerts.monitor import ThresholdMonitor

    async with session_factory() as db:
        return await ThresholdMonitor(db).sweep()


async def resubmit_drafts(session_factory: async_sessionmaker, purchasing=None) -> dict:
    from core.config import get_settings
    from db.models import SUBMITTING_STATUS, PurchaseOrderDraft
    from replenishment.planner import ReplenishmentPlanner

    settings = get_settings()
    stale_before = datetime.utcnow() - timedelta(minutes=settings.purchasing_claim_ttl_minutes)
    counts = {"attempted": 0, "confirmed": 0, "still_pending": 0}
    async with session_factory() as db:
        result = await db.execute(
            select(PurchaseOrderDraft.draft_id)
            .where(
                or_(
                    PurchaseOrderDraft.purchasing_status == "pending",
                    and_(
                        PurchaseOrderDraft.purchasing_status == SUBMITTING_STATUS,
                        PurchaseOrderDraft.submitted_at < stale_before,
                    ),
                )
            )
            .order_by(PurchaseOrderDraft.created_at)
        )
        draft_ids = [row[0] for row in result.all()]
        planner = ReplenishmentPlanner(db, settings, purchasing=purchasing)
        for draft_id in draft_ids:
            counts["attempted"] += 1
            draft = await planner.submit(draft_id, reclaim_stale=True)
            if draft.purchasing_status in ("pending", SUBMITTING_STATUS):
                counts["still_pending"] += 1
            else:
                counts["confirmed"] += 1
    return counts


def _run_with_engine(job):
    from core.config import get_settings

    async def _run():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            return await job(session_factory)
        finally:
            await engine.dispose()

    return asyncio.run(_run())


@celery_app.task(
    name="workers.sweep.run_threshold_sweep",
    bind=True,
    max_retries=1,
    default_retry_delay=30,
)
def run_threshold_sweep(self):
    """Periodic pull-mode evaluation of every active product."""
    logger.info("monitor.sweep_started")
    try:
        return _run_with_engine(sweep_thresholds)
    except Exception as exc:
        logger.error("monitor.sweep_failed", error=str(exc))
        raise


@celery_app.task(
    name="workers.sweep.resubmit_pending_drafts",
    bind=True,
    max_retries=1,
    default_retry_delay=60,
)
def resubmit_pending_drafts(self):
    try:
        counts = _run_with_engine(resubmit_drafts)
    except Exception as exc:
        logger.error("purchasing.resubmit_failed", error=str(exc))
        raise
    logger.info("purchasing.resubmit_complete", **counts)
    return counts
