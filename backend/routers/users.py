"""Users router - removes an owner together with everything it connected."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from dependencies import get_snapshot_store
from middleware.rate_limit import RATE_LIMIT_MESSAGE, limiter, upstream_rate_limited
from routers.accounts import DisconnectResponse
from services.errors import PersistenceError
from services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/users", tags=["users"])


@router.delete("/{user_id}", response_model=DisconnectResponse)
@limiter.limit("10/minute")
async def delete_user(
    request: Request,
    user_id: str,
    store: Annotated[SnapshotStore, Depends(get_snapshot_store)],
):
    """Delete a user, its TikTok accounts and their snapshots."""
    if upstream_rate_limited(request):
        return JSONResponse(status_code=429, content={"error": RATE_LIMIT_MESSAGE})

    try:
        deleted = await store.delete_user_cascade(user_id)
    except PersistenceError as e:
        logger.error(f"Error deleting user {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete user",
        )

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    return DisconnectResponse(success=True, message="User and connected accounts deleted")
