"""AccountSnapshot model - daily account metrics for trend analysis."""

from datetime import date, datetime, timezone
from uuid import uuid4

from sqlalchemy import Date, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class AccountSnapshot(Base):
    """One row per account per calendar day (UTC).

    Later writes on the same day overwrite the row instead of adding another.
    """

    __tablename__ = "account_snapshots"
    __table_args__ = (
        UniqueConstraint("account_id", "snapshot_date", name="uix_account_snapshots_account_date"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4())
    )
    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("instagram_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)

    followers_count: Mapped[int] = mapped_column(Integer, default=0)
    follows_count: Mapped[int] = mapped_column(Integer, default=0)
    media_count: Mapped[int] = mapped_column(Integer, default=0)

    avg_engagement_rate: Mapped[float] = mapped_column(Float, default=0.0)
    avg_reach: Mapped[float] = mapped_column(Float, default=0.0)
    total_likes: Mapped[int] = mapped_column(Integer, default=0)
    total_comments: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
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

    account = relationship("InstagramAccount", back_populates="snapshots")

    def __repr__(self) -> str:
        return f"<AccountSnapshot {self.account_id} {self.snapshot_date}: {self.followers_count} followers>"
