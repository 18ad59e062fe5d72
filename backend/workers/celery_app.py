"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "replenishment",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.sweep.*": {"queue": "sweep"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # Pull-mode safety net behind the per-mutation push evaluation.
        "threshold-sweep": {
            "task": "workers.sweep.run_threshold_sweep",
            "schedule": crontab(minute=f"*/{settings.sweep_interval_minutes}"),
            "options": {"queue": "sweep"},
        },
        "resubmit-pending-drafts-hourly": {
            "task": "workers.sweep.resubmit_pending_drafts",
            "schedule": crontab(minute=5),
            "options": {"queue": "sweep"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"], related_name="sweep")
