"""
Re-engagement metrics - daily snapshot plus the operator overview.
"""
import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select, func, and_, case
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.models.campaign import ReengagementCampaign
from reengage.models.daily_metrics import ReengagementDailyMetrics
from reengage.models.notification import ReengagementNotification
from reengage.models.training import User
from reengage.schemas.api_responses import (
    BucketMetrics,
    DailyMetric,
    MetricsOverview,
    RecentCampaign,
    ReengagementMetrics,
)
from reengage.services.campaign_manager import MAX_LEVEL
from reengage.services.message_library import MESSAGE_TYPES
from reengage.utils.timeutils import day_bounds, utcnow

logger = logging.getLogger(__name__)

RECENT_CAMPAIGNS_LIMIT = 20


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def _percent(numerator: int, denominator: int) -> float:
    return round(_ratio(numerator, denominator) * 100, 2)


async def _count(db: AsyncSession, *conditions) -> int:
    stmt = select(func.count(ReengagementCampaign.id))
    if conditions:
        stmt = stmt.where(and_(*conditions))
    result = await db.execute(stmt)
    return result.scalar() or 0


async def record_daily_metrics(
    db: AsyncSession,
    day: Optional[date] = None,
) -> ReengagementDailyMetrics:
    """
    Snapshot one UTC day. Re-running for the same day overwrites its row.

    click_rate = clicked / sent and return_rate = returned / sent, both over
    the day's sends (0.0 when nothing was sent). open_rate stays None.
    """
    day = day or utcnow().date()
    start, end = day_bounds(day)

    sent_today = and_(
        ReengagementNotification.sent.is_(True),
        ReengagementNotification.sent_at >= start,
        ReengagementNotification.sent_at < end,
    )

    active_campaigns = await _count(db, ReengagementCampaign.is_active.is_(True))

    totals_result = await db.execute(
        select(
            func.count(ReengagementNotification.id),
            func.coalesce(func.sum(case((ReengagementNotification.clicked.is_(True), 1), else_=0)), 0),
        ).where(sent_today)
    )
    notifications_sent, clicked = totals_result.one()

    by_level_result = await db.execute(
        select(ReengagementNotification.level, func.count(ReengagementNotification.id))
        .where(sent_today)
        .group_by(ReengagementNotification.level)
    )
    level_counts = dict(by_level_result.all())
    sent_by_level = {str(level): level_counts.get(level, 0) for level in range(1, MAX_LEVEL + 1)}

    by_type_result = await db.execute(
        select(ReengagementNotification.message_type, func.count(ReengagementNotification.id))
        .where(sent_today)
        .group_by(ReengagementNotification.message_type)
    )
    type_counts = dict(by_type_result.all())
    sent_by_type = {message_type: type_counts.get(message_type, 0) for message_type in MESSAGE_TYPES}

    users_returned = await _count(
        db,
        ReengagementCampaign.returned.is_(True),
        ReengagementCampaign.returned_at >= start,
        ReengagementCampaign.returned_at < end,
    )

    result = await db.execute(
        select(ReengagementDailyMetrics).where(ReengagementDailyMetrics.day == day)
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = ReengagementDailyMetrics(day=day)
        db.add(row)

    row.active_campaigns = active_campaigns
    row.notifications_sent = notifications_sent
    row.users_returned = users_returned
    row.sent_by_level = sent_by_level
    row.sent_by_type = sent_by_type
    row.click_rate = round(_ratio(clicked, notifications_sent), 4)
    row.return_rate = round(_ratio(users_returned, notifications_sent), 4)
    row.open_rate = None

    await db.flush()

    logger.info(
        "Daily re-engagement metrics for %s: active=%d sent=%d returned=%d click_rate=%.4f",
        day.isoformat(), active_campaigns, notifications_sent, users_returned, row.click_rate,
    )
    return row


async def _bucket_metrics(db: AsyncSession, column) -> dict:
    result = await db.execute(
        select(
            column,
            func.count(ReengagementNotification.id),
            func.coalesce(func.sum(case((ReengagementNotification.clicked.is_(True), 1), else_=0)), 0),
        )
        .where(ReengagementNotification.sent.is_(True))
        .group_by(column)
    )
    return {key: (sent, clicked) for key, sent, clicked in result.all()}


def _bucket(counts: tuple[int, int]) -> BucketMetrics:
    sent, clicked = counts
    return BucketMetrics(sent=sent, clicked=clicked, click_rate=_percent(clicked, sent))


async def get_reengagement_metrics(db: AsyncSession) -> ReengagementMetrics:
    """All-time overview, per level and per type breakdowns, and the latest campaigns."""
    total_campaigns = await _count(db)
    active_campaigns = await _count(db, ReengagementCampaign.is_active.is_(True))
    returned = await _count(db, ReengagementCampaign.returned.is_(True))
    unsubscribed = await _count(db, ReengagementCampaign.unsubscribed.is_(True))

    notif_result = await db.execute(
        select(
            func.count(ReengagementNotification.id),
            func.coalesce(func.sum(case((ReengagementNotification.clicked.is_(True), 1), else_=0)), 0),
        ).where(ReengagementNotification.sent.is_(True))
    )
    total_sent, total_clicked = notif_result.one()

    overview = MetricsOverview(
        total_campaigns=total_campaigns,
        active_campaigns=active_campaigns,
        total_notifications_sent=total_sent,
        clicked_notifications=total_clicked,
        returned_users=returned,
        unsubscribed_users=unsubscribed,
        click_rate=_percent(total_clicked, total_sent),
        return_rate=_percent(returned, total_campaigns),
    )

    level_counts = await _bucket_metrics(db, ReengagementNotification.level)
    type_counts = await _bucket_metrics(db, ReengagementNotification.message_type)

    by_level = {
        f"level_{level}": _bucket(level_counts.get(level, (0, 0)))
        for level in range(1, MAX_LEVEL + 1)
    }
    by_type = {
        message_type: _bucket(type_counts.get(message_type, (0, 0)))
        for message_type in MESSAGE_TYPES
    }

    return ReengagementMetrics(
        overview=overview,
        by_level=by_level,
        by_type=by_type,
        recent_campaigns=await _recent_campaigns(db),
    )


async def _recent_campaigns(db: AsyncSession) -> list[RecentCampaign]:
    result = await db.execute(
        select(ReengagementCampaign, User.username)
        .outerjoin(User, User.id == ReengagementCampaign.user_id)
        .order_by(ReengagementCampaign.campaign_start_date.desc())
        .limit(RECENT_CAMPAIGNS_LIMIT)
    )
    rows = result.all()
    if not rows:
        return []

    campaign_ids = [campaign.id for campaign, _ in rows]
    counts_result = await db.execute(
        select(
            ReengagementNotification.campaign_id,
            func.count(ReengagementNotification.id),
            func.coalesce(func.sum(case((ReengagementNotification.clicked.is_(True), 1), else_=0)), 0),
        )
        .where(ReengagementNotification.campaign_id.in_(campaign_ids))
        .group_by(ReengagementNotification.campaign_id)
    )
    counts = {campaign_id: (sent, clicked) for campaign_id, sent, clicked in counts_result.all()}

    recent = []
    for campaign, username in rows:
        sent, clicked = counts.get(campaign.id, (0, 0))
        recent.append(RecentCampaign(
            id=str(campaign.id),
            user_id=campaign.user_id,
            username=username,
            campaign_start_date=campaign.campaign_start_date,
            level=campaign.current_level,
            notifications_sent=sent,
            clicked=clicked,
            returned=campaign.returned,
            unsubscribed=campaign.unsubscribed,
            is_active=campaign.is_active,
        ))
    return recent


async def get_daily_metrics(db: AsyncSession, days: int = 30) -> list[DailyMetric]:
    """Stored daily snapshots for the last `days` days, newest first."""
    since = utcnow().date() - timedelta(days=max(days, 1) - 1)
    result = await db.execute(
        select(ReengagementDailyMetrics)
        .where(ReengagementDailyMetrics.day >= since)
        .order_by(ReengagementDailyMetrics.day.desc())
    )
    return [
        DailyMetric(
            day=row.day,
            active_campaigns=row.active_campaigns,
            notifications_sent=row.notifications_sent,
            users_returned=row.users_returned,
            sent_by_level=row.sent_by_level or {},
            sent_by_type=row.sent_by_type or {},
            click_rate=row.click_rate,
            return_rate=row.return_rate,
            open_rate=row.open_rate,
        )
        for row in result.scalars().all()
    ]
