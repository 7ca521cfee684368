"""
Daily re-engagement metrics snapshot - one row per UTC day, written by the metrics worker.
open_rate stays NULL until an open-tracking source exists (NULL != measured zero).
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional
from sqlalchemy import Integer, Float, Date, DateTime
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from reengage.database import Base


class ReengagementDailyMetrics(Base):
    __tablename__ = "reengagement_daily_metrics"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    day: Mapped[date] = mapped_column(Date, unique=True, nullable=False)

    active_campaigns: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notifications_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    users_returned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    sent_by_level: Mapped[Optional[dict]] = mapped_column(
        JSONB, default=dict
    )  # {"1": 12, "2": 4, "3": 0, "4": 1}
    sent_by_type: Mapped[Optional[dict]] = mapped_column(
        JSONB, default=dict
    )  # {"emotional": 12, "educational": 4, ...}

    click_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    return_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    open_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<ReengagementDailyMetrics {self.day} sent={self.notifications_sent}>"
