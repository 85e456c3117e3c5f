from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime
from typing import Optional
import logging

from upnext.services.sync import SyncService

logger = logging.getLogger(__name__)

JOB_ID = "upnext_sync"


def create_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler()


def get_next_run_time(scheduler: AsyncIOScheduler) -> Optional[datetime]:
    """Get the next scheduled run time."""
    job = scheduler.get_job(JOB_ID)
    if job:
        return job.next_run_time
    return None


async def scheduled_sync(service: SyncService):
    """Run the periodic sync of every stored show."""
    if service.progress.is_running:
        logger.info("Sync already running, skipping scheduled run")
        return
    logger.info("Starting scheduled sync")
    result = await service.sync_all_shows()
    if result.failed_shows:
        logger.warning(f"Scheduled sync finished with {result.failure_count} failed show(s)")


def update_schedule(scheduler: AsyncIOScheduler, service: SyncService, interval_hours: int):
    """Replace the sync job. An interval of 0 disables it."""
    if scheduler.get_job(JOB_ID):
        scheduler.remove_job(JOB_ID)

    if interval_hours <= 0:
        logger.info("Scheduled sync disabled")
        return

    scheduler.add_job(
        scheduled_sync,
        IntervalTrigger(hours=interval_hours),
        args=[service],
        id=JOB_ID,
        max_instances=1,
        coalesce=True
    )
    logger.info(f"Scheduled sync every {interval_hours} hour(s)")


def start_scheduler(scheduler: AsyncIOScheduler):
    """Start the scheduler."""
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler(scheduler: AsyncIOScheduler):
    """Stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
