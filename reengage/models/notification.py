"""
Re-engagement notification model - one row per send attempt of a campaign level.
Written with sent=False BEFORE delivery, flipped to sent=True with device counts after.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from reengage.database import Base


class ReengagementNotification(Base):
    __tablename__ = "reengagement_notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("reengagement_campaigns.id"), nullable=False
    )

    # What was chosen
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    message_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # emotional, educational, motivational, mixed
    variant_id: Mapped[str] = mapped_column(String(50), nullable=False)

    # Rendered content
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False)

    # Delivery
    sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Engagement
    clicked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    clicked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    campaign: Mapped["ReengagementCampaign"] = relationship(back_populates="notifications")

    __table_args__ = (
        Index("ix_reengagement_notifications_campaign_id", "campaign_id"),
        Index("ix_reengagement_notifications_sent_at", "sent_at"),
    )

    def __repr__(self) -> str:
        return f"<ReengagementNotification {self.variant_id} L{self.level} sent={self.sent}>"
