"""MetricSnapshot model - one row of account metrics per account per UTC day."""

from datetime import date, datetime, timezone
from uuid import uuid4

from sqlalchemy import BigInteger, Date, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class MetricSnapshot(Base):
    """Daily aggregate of a TikTok account's public metrics.

    Written by the ingestion job. Re-running the job on the same UTC day
    updates the existing row instead of inserting a new one.
    Enables "you gained X followers this week" insights and growth charts.
    """

    __tablename__ = "metric_snapshots"
    __table_args__ = (
        UniqueConstraint("account_id", "snapshot_date", name="uq_metric_snapshots_account_day"),
    )

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4())
    )
    account_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("tiktok_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)

    follower_count: Mapped[int] = mapped_column(Integer, default=0)
    following_count: Mapped[int] = mapped_column(Integer, default=0)
    total_likes: Mapped[int] = mapped_column(BigInteger, default=0)
    total_views: Mapped[int] = mapped_column(BigInteger, default=0)
    total_comments: Mapped[int] = mapped_column(BigInteger, default=0)
    total_shares: Mapped[int] = mapped_column(BigInteger, default=0)
    video_count: Mapped[int] = mapped_column(Integer, default=0)

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    account: Mapped["TikTokAccount"] = relationship(
        "TikTokAccount", back_populates="snapshots"
    )

    def __repr__(self) -> str:
        return (
            f"<MetricSnapshot {self.account_id} {self.snapshot_date}: "
            f"{self.follower_count} followers, {self.video_count} videos>"
        )


from models.tiktok_account import TikTokAccount
