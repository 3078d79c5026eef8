"""Ingestion job - daily stats snapshot for every connected TikTok account.

Accounts are processed one at a time, never concurrently: TikTok's rate
limit is shared per application, so the job paces itself with fixed delays
between accounts and pages and pauses for a cooldown after a 429.
Each account is independent. A failure is recorded in the summary and the
job moves on; re-running on the same UTC day overwrites that day's snapshot.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from config import Settings
from models.metric_snapshot import MetricSnapshot
from models.tiktok_account import TikTokAccount
from services.errors import (
    InvalidOrExpiredSeal,
    PersistenceError,
    ProviderError,
    RateLimited,
    TikTokAPIError,
    TokenExpired,
)
from services.snapshot_store import SnapshotMetrics, SnapshotStore, utc_day_bounds
from services.tiktok_service import TikTokClient
from services.token_vault import TokenVault

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountError(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    account_id: str
    username: Optional[str] = None
    error: str


class IngestionSummary(BaseModel):
    """Result of one run, returned by the cron endpoint and kept in the run log."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str = "Cron job completed"
    total_accounts: int = 0
    processed: int = 0
    errors: int = 0
    errors_by_account: list[AccountError] = []
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def record_error(self, account: "AccountRef", error: Exception) -> None:
        self.errors += 1
        self.errors_by_account.append(AccountError(
            account_id=account.id,
            username=account.display_name,
            error=str(error) or type(error).__name__,
        ))


@dataclass(frozen=True)
class AccountRef:
    """Plain copy of the account columns the job reads.

    A rollback expires every ORM instance in the session, so the job never
    touches the loaded TikTokAccount rows after enumerating them.
    """
    id: str
    display_name: Optional[str]
    access_token: Optional[str]
    refresh_token: Optional[str]

    @classmethod
    def from_model(cls, account: TikTokAccount) -> "AccountRef":
        return cls(
            id=account.id,
            display_name=account.display_name,
            access_token=account.access_token,
            refresh_token=account.refresh_token,
        )


@dataclass
class AccountTokens:
    """Plaintext tokens for the account being processed."""
    access_token: str
    refresh_token: str
    refreshed: bool = False


class IngestionJob:
    """Sequential fetch-aggregate-upsert loop over all connected accounts."""

    def __init__(
        self,
        store: SnapshotStore,
        client: TikTokClient,
        vault: TokenVault,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.client = client
        self.vault = vault
        self.account_delay = settings.ingest_account_delay_seconds
        self.page_delay = settings.ingest_page_delay_seconds
        self.rate_limit_cooldown = settings.ingest_rate_limit_cooldown_seconds
        self.max_pages = settings.ingest_max_pages
        self._sleep = sleep
        self._clock = clock

    async def run(self) -> IngestionSummary:
        """Process every ingestible account.

        Only a failure to enumerate accounts raises; per-account failures
        are collected in the summary.
        """
        summary = IngestionSummary(started_at=self._clock())
        accounts = [
            AccountRef.from_model(account)
            for account in await self.store.list_ingestible_accounts()
        ]
        summary.total_accounts = len(accounts)

        if not accounts:
            logger.info("No TikTok accounts to process")
            summary.message = "No TikTok accounts to process"
            summary.finished_at = self._clock()
            return summary

        logger.info(f"Starting ingestion for {len(accounts)} account(s)...")

        for index, account in enumerate(accounts):
            if index > 0:
                await self._sleep(self.account_delay)

            label = f"{account.display_name} ({account.id})"
            try:
                await self.ingest_account(account)
                summary.processed += 1
                logger.info(f"Successfully processed account {label}")
            except RateLimited as e:
                summary.record_error(account, e)
                logger.warning(
                    f"Rate limit hit on account {label}, waiting "
                    f"{self.rate_limit_cooldown}s before continuing..."
                )
                await self._sleep(self.rate_limit_cooldown)
            except (TikTokAPIError, InvalidOrExpiredSeal, PersistenceError) as e:
                summary.record_error(account, e)
                logger.error(f"Error processing account {label}: {e}")
            except Exception as e:
                summary.record_error(account, e)
                logger.exception(f"Unexpected error processing account {label}: {e}")

        summary.finished_at = self._clock()
        logger.info(
            f"Ingestion complete: {summary.processed}/{summary.total_accounts} processed, "
            f"{summary.errors} error(s)"
        )
        return summary

    async def ingest_account(self, account: AccountRef) -> MetricSnapshot:
        """Fetch, aggregate and store today's snapshot for one account."""
        tokens = self._open_tokens(account)

        profile = await self._call_with_refresh(account, tokens, self.client.fetch_profile)
        totals = await self._collect_videos(account, tokens)

        metrics = SnapshotMetrics(
            follower_count=profile.follower_count,
            following_count=0,  # not exposed by the scopes in use
            **totals,
        )

        now = self._clock()
        day_start, _ = utc_day_bounds(now)
        snapshot = await self.store.upsert_daily_snapshot(
            account.id, day_start.date(), metrics, recorded_at=now
        )

        # Roll the sealed envelope forward so it outlives the next run
        if not tokens.refreshed:
            await self.store.update_account_tokens(
                account.id,
                self.vault.seal_token(tokens.access_token),
                self.vault.seal_token(tokens.refresh_token),
            )

        logger.info(
            f"Saved snapshot for account {account.id}: followers={metrics.follower_count}, "
            f"likes={metrics.total_likes}, videos={metrics.video_count}"
        )
        return snapshot

    def _open_tokens(self, account: AccountRef) -> AccountTokens:
        try:
            return AccountTokens(
                access_token=self.vault.open_token(account.access_token),
                refresh_token=self.vault.open_token(account.refresh_token),
            )
        except InvalidOrExpiredSeal as e:
            raise InvalidOrExpiredSeal(
                f"Failed to decrypt tokens for account {account.id}; reconnect required"
            ) from e

    async def _call_with_refresh(self, account: AccountRef, tokens: AccountTokens, fetch, *args):
        """Call fetch(access_token, *args); on TokenExpired refresh once and retry once."""
        try:
            return await fetch(tokens.access_token, *args)
        except TokenExpired:
            logger.info(f"Token expired for account {account.id}, refreshing...")
            await self._refresh(account, tokens)
            return await fetch(tokens.access_token, *args)

    async def _refresh(self, account: AccountRef, tokens: AccountTokens) -> None:
        try:
            grant = await self.client.refresh_access_token(tokens.refresh_token)
        except RateLimited:
            raise
        except TikTokAPIError as e:
            raise ProviderError(
                f"Failed to refresh token for account {account.id}: {e.message}. "
                f"Please reconnect the account.",
                e.status_code,
                e.error_code,
            ) from e

        tokens.access_token = grant.access_token
        if grant.refresh_token:
            tokens.refresh_token = grant.refresh_token
        tokens.refreshed = True

        expires_at = (
            self._clock() + timedelta(seconds=grant.expires_in)
            if grant.expires_in
            else None
        )
        await self.store.update_account_tokens(
            account.id,
            self.vault.seal_token(tokens.access_token),
            self.vault.seal_token(tokens.refresh_token),
            expires_at,
        )
        logger.info(f"Successfully refreshed token for account {account.id}")

    async def _collect_videos(self, account: AccountRef, tokens: AccountTokens) -> dict[str, int]:
        """Page through all videos and sum their engagement counters."""
        totals = {
            "total_likes": 0,
            "total_views": 0,
            "total_comments": 0,
            "total_shares": 0,
            "video_count": 0,
        }
        cursor: Optional[str] = None
        has_more = True
        page_count = 0

        while has_more and page_count < self.max_pages:
            page = await self._call_with_refresh(
                account, tokens, self.client.fetch_video_page, cursor
            )
            page_count += 1

            for video in page.videos:
                totals["total_likes"] += video.like_count
                totals["total_views"] += video.view_count
                totals["total_comments"] += video.comment_count
                totals["total_shares"] += video.share_count
            totals["video_count"] += len(page.videos)

            has_more = page.has_more
            if has_more and not page.cursor:
                logger.warning(f"Video list for account {account.id} has more pages but no cursor; stopping")
                break
            cursor = page.cursor

            if has_more:
                if page_count >= self.max_pages:
                    logger.warning(
                        f"Reached {self.max_pages}-page limit for account {account.id}; "
                        f"remaining videos skipped"
                    )
                    break
                await self._sleep(self.page_delay)

        return totals
