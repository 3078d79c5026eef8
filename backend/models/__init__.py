"""Database models."""

from database import Base

from models.user import User
from models.tiktok_account import TikTokAccount
from models.metric_snapshot import MetricSnapshot

__all__ = [
    "Base",
    "User",
    "TikTokAccount",
    "MetricSnapshot",
]
