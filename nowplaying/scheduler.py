from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime
from typing import Optional
import logging

from nowplaying.config import settings

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "nowplaying_stale_sweep"

scheduler = AsyncIOScheduler()


def get_next_run_time() -> Optional[datetime]:
    """Get the next scheduled sweep time."""
    job = scheduler.get_job(SWEEP_JOB_ID)
    if job:
        return job.next_run_time
    return None


async def scheduled_sweep():
    """Run the stale session sweep."""
    from nowplaying.deps import get_manager
    from nowplaying.errors import Conflict
    from nowplaying.services.sweep import end_stale_sessions

    try:
        await end_stale_sessions(get_manager(), trigger="scheduled")
    except Conflict:
        logger.info("Previous sweep still running, skipping")


def update_sweep_schedule():
    """(Re)register the sweep job from current settings."""
    if scheduler.get_job(SWEEP_JOB_ID):
        scheduler.remove_job(SWEEP_JOB_ID)

    if not settings.sweep_enabled:
        logger.info("Stale session sweep disabled")
        return

    trigger = IntervalTrigger(seconds=settings.sweep_interval_seconds)
    scheduler.add_job(
        scheduled_sweep,
        trigger,
        id=SWEEP_JOB_ID,
        max_instances=1,
        coalesce=True
    )
    logger.info(
        f"Sweep scheduled every {settings.sweep_interval_seconds}s "
        f"(stale after {settings.stale_after_minutes} min)"
    )


def start_scheduler():
    """Start the scheduler."""
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
