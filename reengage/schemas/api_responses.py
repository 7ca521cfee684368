"""
API request/response schemas for the re-engagement endpoints.
"""
from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field


class SchedulerRunResult(BaseModel):
    new_campaigns: int
    scheduled_notifications: int
    closed_campaigns: int


class TriggerResponse(BaseModel):
    success: bool
    result: Optional[SchedulerRunResult] = None
    error: Optional[str] = None


class UnsubscribeResponse(BaseModel):
    success: bool = True
    user_id: str
    campaigns_closed: int = 0


class SettingsUpdate(BaseModel):
    enabled: bool


class SettingsResponse(BaseModel):
    user_id: str
    enabled: bool
    unsubscribed_at: Optional[datetime] = None


class ClickResponse(BaseModel):
    success: bool = True


class MetricsOverview(BaseModel):
    total_campaigns: int = 0
    active_campaigns: int = 0
    total_notifications_sent: int = 0
    clicked_notifications: int = 0
    returned_users: int = 0
    unsubscribed_users: int = 0
    click_rate: float = Field(0.0, description="Percent, 2 decimals")
    return_rate: float = Field(0.0, description="Percent, 2 decimals")


class BucketMetrics(BaseModel):
    sent: int = 0
    clicked: int = 0
    click_rate: float = 0.0


class RecentCampaign(BaseModel):
    id: str
    user_id: str
    username: Optional[str] = None
    campaign_start_date: datetime
    level: int
    notifications_sent: int = 0
    clicked: int = 0
    returned: bool = False
    unsubscribed: bool = False
    is_active: bool = True


class ReengagementMetrics(BaseModel):
    overview: MetricsOverview
    by_level: dict[str, BucketMetrics]
    by_type: dict[str, BucketMetrics]
    recent_campaigns: list[RecentCampaign]


class DailyMetric(BaseModel):
    day: date
    active_campaigns: int
    notifications_sent: int
    users_returned: int
    sent_by_level: dict[str, int] = {}
    sent_by_type: dict[str, int] = {}
    click_rate: float
    return_rate: float
    open_rate: Optional[float] = None
