#!/usr/bin/env python3
"""Run one TikTok ingestion pass from the command line.

Same job as /api/cron, without going through HTTP. Useful for backfilling
today's snapshot after fixing a broken account.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import get_settings
from database import async_session, engine
from models import Base
from services.errors import PersistenceError
from services.ingestion import IngestionJob
from services.redis_store import RedisStore, record_run
from services.snapshot_store import SnapshotStore
from services.tiktok_service import TikTokClient
from services.token_vault import TokenVault


async def run_ingestion(record: bool) -> int:
    """Run the job once and print the summary. Returns a process exit code."""
    settings = get_settings()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

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
            print(f"Ingestion failed: {e}")
            return 1

    payload = summary.model_dump(mode="json", by_alias=True)
    if record:
        await record_run(payload, trigger="cli")
        await RedisStore.close()
    await engine.dispose()

    print(json.dumps(payload, indent=2))
    return 1 if summary.errors else 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    args = sys.argv[1:]
    if args and args[0] not in ("--no-record",):
        print("Usage: python3 run_ingestion.py [--no-record]")
        sys.exit(2)

    sys.exit(asyncio.run(run_ingestion(record="--no-record" not in args)))
