"""
Re-engagement campaign model - one multi-stage nudge sequence per inactive user.
Levels 1-4 are due at fixed offsets from last_activity_date (the anchor).
At most one active campaign per user, enforced by a partial unique index.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Boolean, DateTime, Index, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from reengage.database import Base


class ReengagementCampaign(Base):
    __tablename__ = "reengagement_campaigns"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Scheduling
    last_activity_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )  # Anchor for every level's due date
    campaign_start_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    current_level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)  # 1-4
    next_notification_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True)
    )  # NULL = nothing more scheduled
    last_notification_sent: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    total_notifications_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    returned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    unsubscribed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    notifications: Mapped[list["ReengagementNotification"]] = relationship(
        back_populates="campaign"
    )

    __table_args__ = (
        Index("ix_reengagement_campaigns_user_id", "user_id"),
        Index("ix_reengagement_campaigns_due", "is_active", "next_notification_date"),
        Index(
            "uq_reengagement_campaigns_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("is_active = true"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    def __repr__(self) -> str:
        return f"<ReengagementCampaign user={self.user_id} level={self.current_level} active={self.is_active}>"
