"""Snapshot store - persistence for users, TikTok accounts and daily snapshots.

Every write commits on success. Database failures roll the session back and
surface as PersistenceError so callers never see a half-applied change.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.metric_snapshot import MetricSnapshot
from models.tiktok_account import TikTokAccount
from models.user import User
from services.errors import PersistenceError

logger = logging.getLogger(__name__)


class SnapshotMetrics(BaseModel):
    """Aggregated metrics for one account on one day."""
    follower_count: int = 0
    following_count: int = 0
    total_likes: int = 0
    total_views: int = 0
    total_comments: int = 0
    total_shares: int = 0
    video_count: int = 0


class SnapshotGrowth(BaseModel):
    """Change between the latest snapshot and the one at-or-before a cutoff.

    insufficient_data is set instead of reporting zero deltas when there is
    no older snapshot to compare against.
    """
    days: int
    insufficient_data: bool
    baseline_date: Optional[date] = None
    latest_date: Optional[date] = None
    follower_delta: Optional[int] = None
    likes_delta: Optional[int] = None
    views_delta: Optional[int] = None
    video_delta: Optional[int] = None


def utc_day_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """Return [midnight UTC, next midnight UTC) around moment."""
    moment = moment.astimezone(timezone.utc)
    start = datetime(moment.year, moment.month, moment.day, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _is_uuid(value: str) -> bool:
    try:
        UUID(str(value))
        return True
    except ValueError:
        return False


class SnapshotStore:
    """Async store over a single AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _guard(self, action: str):
        try:
            yield
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Database error while trying to {action}: {e}")
            raise PersistenceError(f"Failed to {action}") from e

    # ============== Accounts ==============

    async def list_ingestible_accounts(self) -> list[TikTokAccount]:
        """Accounts holding both tokens, most recently connected first."""
        async with self._guard("list accounts"):
            result = await self.db.execute(
                select(TikTokAccount)
                .where(
                    TikTokAccount.access_token.is_not(None),
                    TikTokAccount.refresh_token.is_not(None),
                )
                .order_by(TikTokAccount.connected_at.desc())
            )
            return list(result.scalars().all())

    async def get_account(self, account_id: str) -> Optional[TikTokAccount]:
        if not _is_uuid(account_id):
            return None
        async with self._guard("load account"):
            return await self.db.get(TikTokAccount, account_id)

    async def upsert_account_by_provider_id(
        self,
        provider_user_id: str,
        access_token: str,
        refresh_token: Optional[str],
        display_name: Optional[str],
        avatar_url: Optional[str] = None,
        token_expires_at: Optional[datetime] = None,
    ) -> TikTokAccount:
        """Create or update the account for a TikTok open_id.

        New identities also get an owning User row, created in the same
        transaction as the account.
        """
        now = datetime.now(timezone.utc)

        async with self._guard("upsert account"):
            result = await self.db.execute(
                select(TikTokAccount).where(TikTokAccount.tiktok_user_id == provider_user_id)
            )
            account = result.scalar_one_or_none()

            if account:
                account.access_token = access_token
                if refresh_token:
                    account.refresh_token = refresh_token
                account.display_name = display_name
                if avatar_url:
                    account.avatar_url = avatar_url
                account.token_expires_at = token_expires_at
                account.connected_at = now
                account.updated_at = now
                logger.info(f"Updated TikTok account {account.id} ({provider_user_id})")
            else:
                email = User.email_for_open_id(provider_user_id)
                result = await self.db.execute(select(User).where(User.email == email))
                user = result.scalar_one_or_none()
                if not user:
                    user = User(email=email)
                    self.db.add(user)
                    await self.db.flush()

                account = TikTokAccount(
                    user_id=user.id,
                    tiktok_user_id=provider_user_id,
                    display_name=display_name,
                    avatar_url=avatar_url or None,
                    access_token=access_token,
                    refresh_token=refresh_token,
                    token_expires_at=token_expires_at,
                    connected_at=now,
                )
                self.db.add(account)
                logger.info(f"Created TikTok account for {provider_user_id}")

            await self.db.commit()
        return account

    async def update_account_tokens(
        self,
        account_id: str,
        access_token: str,
        refresh_token: str,
        token_expires_at: Optional[datetime] = None,
    ) -> None:
        """Replace an account's sealed tokens (after a refresh or re-seal)."""
        async with self._guard("update account tokens"):
            account = await self.db.get(TikTokAccount, account_id)
            if account is None:
                raise PersistenceError(f"Account {account_id} not found")
            account.access_token = access_token
            account.refresh_token = refresh_token
            if token_expires_at is not None:
                account.token_expires_at = token_expires_at
            account.updated_at = datetime.now(timezone.utc)
            await self.db.commit()

    async def list_accounts_with_latest(self) -> list[tuple[TikTokAccount, Optional[MetricSnapshot]]]:
        async with self._guard("list accounts"):
            result = await self.db.execute(
                select(TikTokAccount).order_by(TikTokAccount.connected_at.desc())
            )
            accounts = list(result.scalars().all())
        return [(account, await self.latest_snapshot(account.id)) for account in accounts]

    async def delete_account_cascade(self, account_id: str) -> bool:
        """Delete an account and all its snapshots in one transaction.

        Returns False when the account does not exist.
        """
        if not _is_uuid(account_id):
            return False

        async with self._guard("delete account"):
            account = await self.db.get(TikTokAccount, account_id)
            if account is None:
                return False

            await self.db.execute(
                delete(MetricSnapshot).where(MetricSnapshot.account_id == account_id)
            )
            await self.db.execute(
                delete(TikTokAccount).where(TikTokAccount.id == account_id)
            )
            await self.db.commit()

        logger.info(f"Deleted TikTok account {account_id} and its snapshots")
        return True

    async def delete_user_cascade(self, user_id: str) -> bool:
        """Delete a user, its accounts and their snapshots in one transaction."""
        if not _is_uuid(user_id):
            return False

        async with self._guard("delete user"):
            user = await self.db.get(User, user_id)
            if user is None:
                return False

            result = await self.db.execute(
                select(TikTokAccount.id).where(TikTokAccount.user_id == user_id)
            )
            account_ids = [row[0] for row in result.fetchall()]

            if account_ids:
                await self.db.execute(
                    delete(MetricSnapshot).where(MetricSnapshot.account_id.in_(account_ids))
                )
                await self.db.execute(
                    delete(TikTokAccount).where(TikTokAccount.user_id == user_id)
                )
            await self.db.execute(delete(User).where(User.id == user_id))
            await self.db.commit()

        logger.info(f"Deleted user {user_id} with {len(account_ids)} account(s)")
        return True

    # ============== Snapshots ==============

    async def _snapshot_for_day(self, account_id: str, day: date) -> Optional[MetricSnapshot]:
        result = await self.db.execute(
            select(MetricSnapshot).where(
                MetricSnapshot.account_id == account_id,
                MetricSnapshot.snapshot_date == day,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_daily_snapshot(
        self,
        account_id: str,
        day: date,
        metrics: SnapshotMetrics,
        recorded_at: Optional[datetime] = None,
    ) -> MetricSnapshot:
        """Update the (account, day) snapshot if it exists, else insert it."""
        recorded_at = recorded_at or datetime.now(timezone.utc)

        async with self._guard("upsert daily snapshot"):
            snapshot = await self._snapshot_for_day(account_id, day)

            if snapshot is None:
                snapshot = MetricSnapshot(
                    account_id=account_id,
                    snapshot_date=day,
                    recorded_at=recorded_at,
                    **metrics.model_dump(),
                )
                self.db.add(snapshot)
                try:
                    await self.db.commit()
                    return snapshot
                except IntegrityError:
                    # Another writer inserted the same day first
                    await self.db.rollback()
                    snapshot = await self._snapshot_for_day(account_id, day)
                    if snapshot is None:
                        raise

            for field, value in metrics.model_dump().items():
                setattr(snapshot, field, value)
            snapshot.recorded_at = recorded_at
            await self.db.commit()

        return snapshot

    async def latest_snapshot(self, account_id: str) -> Optional[MetricSnapshot]:
        async with self._guard("load latest snapshot"):
            result = await self.db.execute(
                select(MetricSnapshot)
                .where(MetricSnapshot.account_id == account_id)
                .order_by(MetricSnapshot.snapshot_date.desc(), MetricSnapshot.recorded_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def recent_snapshots(self, account_id: str, limit: int) -> list[MetricSnapshot]:
        """Newest-first snapshots, at most limit rows."""
        async with self._guard("load snapshots"):
            result = await self.db.execute(
                select(MetricSnapshot)
                .where(MetricSnapshot.account_id == account_id)
                .order_by(MetricSnapshot.snapshot_date.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def snapshots_in_range(
        self, account_id: str, start: date, end: date
    ) -> list[MetricSnapshot]:
        """Snapshots with start <= snapshot_date <= end, oldest first."""
        async with self._guard("load snapshots"):
            result = await self.db.execute(
                select(MetricSnapshot)
                .where(
                    MetricSnapshot.account_id == account_id,
                    MetricSnapshot.snapshot_date >= start,
                    MetricSnapshot.snapshot_date <= end,
                )
                .order_by(MetricSnapshot.snapshot_date.asc())
            )
            return list(result.scalars().all())

    async def snapshots_since(
        self, account_id: str, days: int, now: Optional[datetime] = None
    ) -> list[MetricSnapshot]:
        """Snapshots from the last `days` UTC days (today included), oldest first."""
        today = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()
        return await self.snapshots_in_range(account_id, today - timedelta(days=days - 1), today)

    async def growth_since(
        self, account_id: str, days: int = 7, now: Optional[datetime] = None
    ) -> SnapshotGrowth:
        """Compare the latest snapshot with the nearest one at-or-before the cutoff."""
        latest = await self.latest_snapshot(account_id)
        if latest is None:
            return SnapshotGrowth(days=days, insufficient_data=True)

        cutoff = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date() - timedelta(days=days)
        async with self._guard("load baseline snapshot"):
            result = await self.db.execute(
                select(MetricSnapshot)
                .where(
                    MetricSnapshot.account_id == account_id,
                    MetricSnapshot.snapshot_date <= cutoff,
                )
                .order_by(MetricSnapshot.snapshot_date.desc())
                .limit(1)
            )
            baseline = result.scalar_one_or_none()

        if baseline is None or baseline.id == latest.id:
            return SnapshotGrowth(
                days=days,
                insufficient_data=True,
                latest_date=latest.snapshot_date,
            )

        return SnapshotGrowth(
            days=days,
            insufficient_data=False,
            baseline_date=baseline.snapshot_date,
            latest_date=latest.snapshot_date,
            follower_delta=latest.follower_count - baseline.follower_count,
            likes_delta=latest.total_likes - baseline.total_likes,
            views_delta=latest.total_views - baseline.total_views,
            video_delta=latest.video_count - baseline.video_count,
        )
