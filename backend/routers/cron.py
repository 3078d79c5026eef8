"""Cron router - triggers the daily TikTok ingestion.

Meant to be hit by an external scheduler (e.g. a platform cron) with the
shared CRON_SECRET; the in-process APScheduler job runs the same code.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from redis.exceptions import RedisError

from dependencies import get_ingestion_job
from middleware.auth import verify_cron_secret
from services.errors import PersistenceError
from services.ingestion import IngestionJob
from services.redis_store import RedisStore, record_run

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/cron",
    tags=["cron"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.api_route("", methods=["GET", "POST"])
async def run_ingestion(
    job: Annotated[IngestionJob, Depends(get_ingestion_job)],
):
    """Snapshot every connected account.

    Per-account failures are reported in errorsByAccount with a 200; only a
    failure to list accounts is a 500.
    """
    try:
        summary = await job.run()
    except PersistenceError as e:
        logger.error(f"Cron job failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to run cron job",
        )

    payload = summary.model_dump(mode="json", by_alias=True)
    await record_run(payload, trigger="cron")
    return payload


@router.get("/runs")
async def list_ingestion_runs(
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
):
    """Recent ingestion run summaries, newest first."""
    try:
        runs = await RedisStore.list_runs(limit)
    except (RedisError, OSError) as e:
        logger.error(f"Could not read ingestion runs from Redis: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Run log unavailable",
        )
    return {"runs": runs}
