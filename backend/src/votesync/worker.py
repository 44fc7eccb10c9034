"""Celery worker configuration for votesync.

Runs the periodic syncs: the news feed sync and the retry-queue drain.
Each task opens its own store handle and closes it before returning.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .db import Database
from .ingestion import QueueDrainer, TriggerRequest, trigger
from .ingestion.news import NEWS_SOURCE
from .logging import get_logger
from .sync import UnfinishedRunError

logger = get_logger(__name__)

settings = get_settings()

T = TypeVar("T")

# Create Celery app
app = Celery(
    "votesync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=3600,
    task_soft_time_limit=3300,
    worker_prefetch_multiplier=1,
    result_expires=86400,
    task_routes={
        "votesync.worker.*": {"queue": "sync"},
    },
)

app.conf.beat_schedule = {
    # News feeds every 3 hours
    "sync-news": {
        "task": "votesync.worker.sync_news",
        "schedule": crontab(hour="*/3", minute=0),
        "options": {"queue": "sync"},
        "kwargs": {"enabled": settings.enable_news_sync},
    },
    # Retry queue every 15 minutes
    "drain-queue": {
        "task": "votesync.worker.drain_queue",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "sync"},
    },
}


def _run(func: Callable[[Database], Awaitable[T]]) -> T:
    async def runner() -> T:
        db = Database.from_settings()
        await db.open()
        try:
            return await func(db)
        finally:
            await db.close()

    return asyncio.run(runner())


@app.task(name="votesync.worker.sync_news")
def sync_news(enabled: bool = True, limit: int | None = None) -> dict[str, Any]:
    """Run one news sync. An unfinished run is reported, not retried."""
    if not enabled:
        return {"status": "disabled"}

    request = TriggerRequest(source=NEWS_SOURCE, limit=limit)
    try:
        result = _run(lambda db: trigger(db, request))
    except UnfinishedRunError as e:
        logger.warning(f"News sync not started: {e}")
        return {"status": "blocked", "error": str(e)}
    return result.model_dump(mode="json")


@app.task(name="votesync.worker.drain_queue")
def drain_queue(source: str | None = None, max_tasks: int = 50) -> dict[str, Any]:
    """Process due retry-queue tasks."""
    result = _run(lambda db: QueueDrainer(db).drain(source, max_tasks))
    return result.model_dump()
