"""Connected TikTok accounts."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import String, DateTime, Text, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TikTokAccount(Base):
    """OAuth connection to one TikTok identity.

    Tokens are stored sealed (see services.token_vault), never in plaintext.
    One row per TikTok open_id; reconnecting updates the existing row.
    """

    __tablename__ = "tiktok_accounts"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # TikTok identity
    tiktok_user_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True
    )  # open_id
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Sealed OAuth tokens
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Metadata
    connected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="accounts")
    snapshots: Mapped[list["MetricSnapshot"]] = relationship(
        "MetricSnapshot",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_ingestible(self) -> bool:
        """Both tokens are present, so the ingestion job can use this account."""
        return bool(self.access_token and self.refresh_token)

    def __repr__(self) -> str:
        return f"<TikTokAccount {self.tiktok_user_id}: {self.display_name}>"


from models.user import User
from models.metric_snapshot import MetricSnapshot
