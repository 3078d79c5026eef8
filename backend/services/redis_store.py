"""Redis-based run log for ingestion jobs.

Each ingestion run (cron-triggered or scheduled) is stored as a JSON summary
so operators can see recent outcomes without digging through logs. Runs
expire after 30 days. Redis is an optional dependency: record_run() never
lets a Redis failure affect the run itself.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from config import get_settings

logger = logging.getLogger(__name__)

# Redis key prefixes
RUNS_PREFIX = "tiktok-ingest:runs:"
RUNS_LIST = "tiktok-ingest:runs_list"

# TTL for stored runs (30 days)
RUN_TTL = 60 * 60 * 24 * 30


class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime objects."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO format datetime string."""
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None


class RedisStore:
    """Async Redis store for ingestion run summaries."""

    _pool: Optional[redis.Redis] = None

    @classmethod
    async def get_client(cls) -> redis.Redis:
        """Get or create Redis connection pool."""
        if cls._pool is None:
            cls._pool = redis.from_url(
                get_settings().redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return cls._pool

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection pool."""
        if cls._pool is not None:
            await cls._pool.aclose()
            cls._pool = None

    @classmethod
    async def save_run(cls, run_data: dict, run_id: Optional[str] = None) -> str:
        """Save a run summary and index it by start time."""
        client = await cls.get_client()
        run_id = run_id or str(uuid.uuid4())
        run_data = {**run_data, "id": run_id}

        await client.set(
            f"{RUNS_PREFIX}{run_id}",
            json.dumps(run_data, cls=DateTimeEncoder),
            ex=RUN_TTL,
        )

        started_at = run_data.get("startedAt")
        if isinstance(started_at, datetime):
            score = started_at.timestamp()
        elif isinstance(started_at, str) and parse_datetime(started_at):
            score = parse_datetime(started_at).timestamp()
        else:
            score = datetime.now(timezone.utc).timestamp()

        await client.zadd(RUNS_LIST, {run_id: score})
        # Drop index entries whose run keys have expired
        cutoff = datetime.now(timezone.utc).timestamp() - RUN_TTL
        await client.zremrangebyscore(RUNS_LIST, "-inf", cutoff)
        return run_id

    @classmethod
    async def get_run(cls, run_id: str) -> Optional[dict]:
        client = await cls.get_client()
        data = await client.get(f"{RUNS_PREFIX}{run_id}")
        if data is None:
            return None
        return json.loads(data)

    @classmethod
    async def list_runs(cls, limit: int = 20) -> list[dict]:
        """List recent runs, newest first."""
        client = await cls.get_client()
        run_ids = await client.zrevrange(RUNS_LIST, 0, limit - 1)

        runs = []
        for run_id in run_ids:
            run = await cls.get_run(run_id)
            if run:
                runs.append(run)
        return runs

    # --- Health Check ---

    @classmethod
    async def health_check(cls) -> bool:
        """Check if Redis is available."""
        try:
            client = await cls.get_client()
            await client.ping()
            return True
        except (RedisError, OSError):
            return False


async def record_run(summary: dict, trigger: str) -> Optional[str]:
    """Store a run summary, logging instead of raising when Redis is down."""
    try:
        return await RedisStore.save_run({**summary, "trigger": trigger})
    except (RedisError, OSError) as e:
        logger.warning(f"Could not record ingestion run in Redis: {e}")
        return None
