"""
Re-engagement endpoints.

User-facing: unsubscribe, read settings, opt out via settings, click tracking.
Operator (X-Admin-Key): re-enabling a user, manual scheduler trigger, metrics.
"""
import hmac
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.config import get_settings
from reengage.database import get_db
from reengage.schemas.api_responses import (
    ClickResponse,
    DailyMetric,
    ReengagementMetrics,
    SettingsResponse,
    SettingsUpdate,
    TriggerResponse,
    UnsubscribeResponse,
)
from reengage.services.campaign_manager import (
    get_user_settings,
    set_reengagement_enabled,
    track_notification_click,
    unsubscribe_user,
)
from reengage.services.metrics import get_daily_metrics, get_reengagement_metrics
from reengage.services.scheduler import manual_trigger_scheduler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/reengagement", tags=["reengagement"])


async def require_admin(x_admin_key: Optional[str] = Header(None)) -> None:
    """Operator endpoints need X-Admin-Key matching admin_api_key. Unset key = disabled."""
    expected = get_settings().admin_api_key
    if not expected:
        raise HTTPException(status_code=403, detail="Operator endpoints are disabled")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=401, detail="Invalid admin key")


@router.post("/trigger", response_model=TriggerResponse, dependencies=[Depends(require_admin)])
async def trigger_scheduler():
    """Run a scheduler pass now."""
    return await manual_trigger_scheduler()


@router.post("/unsubscribe/{user_id}", response_model=UnsubscribeResponse)
async def unsubscribe(user_id: str, db: AsyncSession = Depends(get_db)):
    closed = await unsubscribe_user(db, user_id)
    return UnsubscribeResponse(user_id=user_id, campaigns_closed=closed)


@router.get("/settings/{user_id}", response_model=SettingsResponse)
async def read_settings(user_id: str, db: AsyncSession = Depends(get_db)):
    settings = await get_user_settings(db, user_id)
    if settings is None:
        return SettingsResponse(user_id=user_id, enabled=True)
    return SettingsResponse(
        user_id=user_id,
        enabled=settings.enabled,
        unsubscribed_at=settings.unsubscribed_at,
    )


@router.put("/settings/{user_id}", response_model=SettingsResponse)
async def update_settings(
    user_id: str,
    body: SettingsUpdate,
    db: AsyncSession = Depends(get_db),
    x_admin_key: Optional[str] = Header(None),
):
    """Users may only opt out here. Turning re-engagement back on needs the operator key."""
    if body.enabled:
        await require_admin(x_admin_key)

    settings = await set_reengagement_enabled(db, user_id, body.enabled)
    return SettingsResponse(
        user_id=user_id,
        enabled=settings.enabled,
        unsubscribed_at=settings.unsubscribed_at,
    )


@router.post("/notifications/{notification_id}/click", response_model=ClickResponse)
async def track_click(notification_id: str, db: AsyncSession = Depends(get_db)):
    try:
        notification_uuid = uuid.UUID(notification_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid notification_id format")

    # Unknown ids are not an error for the client
    await track_notification_click(db, notification_uuid)
    return ClickResponse(success=True)


@router.get("/metrics", response_model=ReengagementMetrics, dependencies=[Depends(require_admin)])
async def metrics_overview(db: AsyncSession = Depends(get_db)):
    return await get_reengagement_metrics(db)


@router.get("/metrics/daily", response_model=list[DailyMetric], dependencies=[Depends(require_admin)])
async def metrics_daily(
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    return await get_daily_metrics(db, days=days)
