"""Background scheduler for periodic tasks.

Uses APScheduler to run the daily TikTok ingestion in-process, as an
alternative to an external cron hitting /api/cron.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import async_session
from services.errors import PersistenceError
from services.ingestion import IngestionJob
from services.redis_store import record_run
from services.snapshot_store import SnapshotStore
from services.tiktok_service import TikTokClient
from services.token_vault import TokenVault

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler(timezone="UTC")

INGESTION_JOB_ID = "tiktok_daily_ingestion"


async def run_scheduled_ingestion():
    """Background task that snapshots every connected TikTok account."""
    settings = get_settings()
    logger.info("Starting scheduled TikTok ingestion...")

    async with async_session() as db:
        job = IngestionJob(
            SnapshotStore(db),
            TikTokClient(settings),
            TokenVault.from_settings(settings),
            settings,
        )
        try:
            summary = await job.run()
        except PersistenceError as e:
            logger.error(f"Scheduled ingestion could not list accounts: {e}")
            return

    await record_run(summary.model_dump(mode="json", by_alias=True), trigger="scheduler")


def start_scheduler():
    """Start the background scheduler with the daily ingestion job."""
    settings = get_settings()
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    scheduler.add_job(
        run_scheduled_ingestion,
        trigger=CronTrigger(hour=settings.ingest_schedule_hour, minute=0, timezone="UTC"),
        id=INGESTION_JOB_ID,
        name="Daily TikTok stats ingestion",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(
        f"Background scheduler started (TikTok ingestion daily at "
        f"{settings.ingest_schedule_hour:02d}:00 UTC)"
    )


def stop_scheduler():
    """Stop the background scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Background scheduler stopped")
