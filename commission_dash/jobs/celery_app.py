"""Celery worker and beat schedule for periodic Stripe syncs."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from celery import Celery
from dotenv import load_dotenv

from commission_dash.config import Settings
from commission_dash.jobs.sync import SyncResult, run_sync
from commission_dash.utils.dates import today_utc

load_dotenv()
settings = Settings.from_env()

celery_app = Celery("commission_dash", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.timezone = "UTC"
celery_app.conf.beat_schedule = {
    # Not forced, so a month synced within the staleness window is skipped.
    "sync-current-month": {
        "task": "commission_dash.jobs.sync_current_month",
        "schedule": timedelta(minutes=settings.sync_schedule_minutes),
    },
}


def _as_payload(result: SyncResult) -> dict[str, object]:
    return {
        "sessionsProcessed": result.sessions_processed,
        "commissionsFound": result.commissions_found,
        "skipped": result.skipped,
        "message": result.message,
    }


@celery_app.task(name="commission_dash.jobs.sync_current_month")
def sync_current_month_task() -> dict[str, object]:  # pragma: no cover - executed by worker
    today = today_utc()
    return _as_payload(asyncio.run(run_sync(today.year, today.month)))


@celery_app.task(name="commission_dash.jobs.sync_month")
def sync_month_task(year: int, month: int, force_refresh: bool = False) -> dict[str, object]:  # pragma: no cover
    return _as_payload(asyncio.run(run_sync(year, month, force_refresh=force_refresh)))
