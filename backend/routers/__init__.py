"""Routers package."""

from .accounts import router as accounts_router
from .cron import router as cron_router
from .oauth import router as oauth_router
from .users import router as users_router

__all__ = [
    "accounts_router",
    "cron_router",
    "oauth_router",
    "users_router",
]
