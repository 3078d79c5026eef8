"""Authentication middleware - shared-secret check for the cron endpoints."""

import hmac
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings, get_settings

security = HTTPBearer(auto_error=False)


async def verify_cron_secret(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """Require `Authorization: Bearer <CRON_SECRET>` when a secret is configured.

    With no CRON_SECRET set the endpoint is open, which is only meant for
    local development.
    """
    if not settings.cron_secret:
        return

    provided = credentials.credentials if credentials else ""
    if not hmac.compare_digest(provided.encode(), settings.cron_secret.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
