"""Accounts router - connected TikTok accounts and their stored snapshots."""

import logging
from datetime import date, datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import Settings, get_settings
from dependencies import get_snapshot_store
from middleware.rate_limit import RATE_LIMIT_MESSAGE, limiter, upstream_rate_limited
from models.tiktok_account import TikTokAccount
from routers.oauth import dashboard_redirect
from services.errors import PersistenceError
from services.snapshot_store import SnapshotGrowth, SnapshotStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/accounts", tags=["accounts"])

DEFAULT_RANGE_DAYS = 30


# Response schemas
class SnapshotResponse(BaseModel):
    id: str
    snapshot_date: date
    follower_count: int
    following_count: int
    total_likes: int
    total_views: int
    total_comments: int
    total_shares: int
    video_count: int
    recorded_at: datetime

    class Config:
        from_attributes = True


class AccountResponse(BaseModel):
    id: str
    user_id: str
    tiktok_user_id: str
    display_name: str | None
    avatar_url: str | None
    connected_at: datetime
    is_ingestible: bool

    class Config:
        from_attributes = True


class AccountListItem(BaseModel):
    account: AccountResponse
    latest_snapshot: SnapshotResponse | None


class AccountDetailResponse(BaseModel):
    account: AccountResponse
    latest_snapshot: SnapshotResponse | None
    last_7_snapshots: list[SnapshotResponse]
    last_30_snapshots: list[SnapshotResponse]
    growth_7d: SnapshotGrowth


class SnapshotRangeResponse(BaseModel):
    account_id: str
    start: date | None = None
    end: date | None = None
    days: int | None = None
    snapshots: list[SnapshotResponse]


class DisconnectResponse(BaseModel):
    success: bool
    message: str


async def _load_account(store: SnapshotStore, account_id: str) -> TikTokAccount:
    try:
        account = await store.get_account(account_id)
    except PersistenceError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load account",
        )
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found",
        )
    return account


@router.get("", response_model=list[AccountListItem])
async def list_accounts(
    store: Annotated[SnapshotStore, Depends(get_snapshot_store)],
):
    """All connected accounts with their most recent snapshot."""
    try:
        rows = await store.list_accounts_with_latest()
    except PersistenceError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load accounts",
        )

    return [
        AccountListItem(
            account=AccountResponse.model_validate(account),
            latest_snapshot=SnapshotResponse.model_validate(latest) if latest else None,
        )
        for account, latest in rows
    ]


@router.delete("", response_model=DisconnectResponse)
@limiter.limit("10/minute")
async def delete_account(
    request: Request,
    store: Annotated[SnapshotStore, Depends(get_snapshot_store)],
    account_id: Annotated[Optional[str], Query(alias="id")] = None,
):
    """Disconnect an account, removing it and all of its snapshots."""
    if upstream_rate_limited(request):
        return JSONResponse(status_code=429, content={"error": RATE_LIMIT_MESSAGE})

    if not account_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Account ID is required",
        )

    try:
        deleted = await store.delete_account_cascade(account_id)
    except PersistenceError as e:
        logger.error(f"Error disconnecting account {account_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to disconnect account",
        )

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found",
        )

    return DisconnectResponse(success=True, message="Account disconnected successfully")


@router.post("/{account_id}/disconnect")
@limiter.limit("10/minute")
async def disconnect_account(
    request: Request,
    account_id: str,
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[SnapshotStore, Depends(get_snapshot_store)],
):
    """Form-friendly disconnect: same cascade, then back to the connect page."""
    try:
        deleted = await store.delete_account_cascade(account_id)
    except PersistenceError as e:
        logger.error(f"Error disconnecting account {account_id}: {e}")
        deleted = False

    if not deleted:
        return dashboard_redirect(settings, error="disconnect_failed")
    return dashboard_redirect(settings, success="account_disconnected")


@router.get("/{account_id}", response_model=AccountDetailResponse)
async def get_account_detail(
    account_id: str,
    store: Annotated[SnapshotStore, Depends(get_snapshot_store)],
):
    """Account with its latest snapshot, recent history and week-over-week growth."""
    account = await _load_account(store, account_id)

    try:
        latest = await store.latest_snapshot(account.id)
        last_7 = await store.recent_snapshots(account.id, 7)
        last_30 = await store.recent_snapshots(account.id, 30)
        growth = await store.growth_since(account.id, days=7)
    except PersistenceError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load snapshots",
        )

    return AccountDetailResponse(
        account=AccountResponse.model_validate(account),
        latest_snapshot=SnapshotResponse.model_validate(latest) if latest else None,
        last_7_snapshots=[SnapshotResponse.model_validate(s) for s in last_7],
        last_30_snapshots=[SnapshotResponse.model_validate(s) for s in last_30],
        growth_7d=growth,
    )


@router.get("/{account_id}/snapshots", response_model=SnapshotRangeResponse)
async def get_account_snapshots(
    account_id: str,
    store: Annotated[SnapshotStore, Depends(get_snapshot_store)],
    start: Annotated[Optional[date], Query()] = None,
    end: Annotated[Optional[date], Query()] = None,
    days: Annotated[Optional[int], Query(ge=1, le=365)] = None,
):
    """Snapshots for an inclusive date range, or for the last N days (default 30)."""
    account = await _load_account(store, account_id)

    if (start is None) != (end is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Both start and end are required for a date range",
        )
    if start is not None and start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start must not be after end",
        )

    try:
        if start is not None:
            snapshots = await store.snapshots_in_range(account.id, start, end)
        else:
            days = days or DEFAULT_RANGE_DAYS
            snapshots = await store.snapshots_since(account.id, days)
    except PersistenceError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load snapshots",
        )

    return SnapshotRangeResponse(
        account_id=account.id,
        start=start,
        end=end,
        days=None if start is not None else days,
        snapshots=[SnapshotResponse.model_validate(s) for s in snapshots],
    )
