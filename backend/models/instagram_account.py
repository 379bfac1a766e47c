"""Connected Instagram Business/Creator accounts."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class InstagramAccount(Base):
    """An Instagram account connected through Instagram Business Login.

    One row per (owner, Instagram user). Reconnecting the same Instagram
    account under the same owner updates the existing row.
    """

    __tablename__ = "instagram_accounts"
    __table_args__ = (
        UniqueConstraint("owner_user_id", "ig_user_id", name="uix_instagram_accounts_owner_ig_user"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4())
    )
    owner_user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Instagram identity
    ig_user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_type: Mapped[str | None] = mapped_column(String(50), nullable=True)  # BUSINESS, MEDIA_CREATOR
    profile_picture_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    biography: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Profile metrics
    followers_count: Mapped[int] = mapped_column(Integer, default=0)
    follows_count: Mapped[int] = mapped_column(Integer, default=0)
    media_count: Mapped[int] = mapped_column(Integer, default=0)

    # Long-lived token, Fernet-encrypted
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

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

    snapshots: Mapped[list["AccountSnapshot"]] = relationship(
        "AccountSnapshot",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def is_token_valid(self) -> bool:
        """Check if the stored token has not expired yet."""
        if not self.token_expires_at:
            return True
        expires_at = self.token_expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) < expires_at

    def __repr__(self) -> str:
        return f"<InstagramAccount @{self.username} ({self.ig_user_id})>"


from models.account_snapshot import AccountSnapshot  # noqa: E402
