"""
Push subscription model - one row per registered device/browser of a user.
Rows the transport reports as gone (404/410) are deleted by the dispatch worker.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from reengage.database import Base


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    keys: Mapped[Optional[dict]] = mapped_column(JSONB)  # {"p256dh": "...", "auth": "..."}

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_push_subscriptions_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<PushSubscription user={self.user_id}>"
