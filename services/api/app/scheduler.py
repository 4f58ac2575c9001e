"""
Daily similarity rebuild.

An APScheduler AsyncIOScheduler runs inside the API process and fires
rebuild_similarity() on a cron schedule (03:00 UTC by default), the same
function the admin endpoint calls. max_instances=1 + coalesce keep a slow
run from stacking up behind itself.
"""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config import settings
from app.similarity import rebuild_similarity

logger = logging.getLogger(__name__)

JOB_ID = "similarity-rebuild"

_scheduler: Optional[AsyncIOScheduler] = None


async def run_scheduled_rebuild() -> None:
    logger.info("Starting scheduled similarity rebuild...")
    try:
        await rebuild_similarity(trigger="schedule")
    except Exception:
        # The next tick retries; the previous relation is still being served
        logger.exception("Scheduled similarity rebuild failed")


def build_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=settings.similarity_timezone)
    scheduler.add_job(
        run_scheduled_rebuild,
        CronTrigger(
            hour=settings.similarity_cron_hour,
            minute=settings.similarity_cron_minute,
            timezone=settings.similarity_timezone,
        ),
        id=JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


def start_scheduler() -> None:
    global _scheduler
    if not settings.similarity_schedule_enabled:
        logger.info("Similarity schedule disabled")
        return
    _scheduler = build_scheduler()
    _scheduler.start()
    logger.info(
        "Similarity rebuild scheduled daily at %02d:%02d %s",
        settings.similarity_cron_hour,
        settings.similarity_cron_minute,
        settings.similarity_timezone,
    )


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
