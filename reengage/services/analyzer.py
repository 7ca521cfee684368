"""
Activity analyzer - finds users who stopped training after being active.

Two passes: one grouped query bounds the scan to users with a completed step
in the last MAX_ANALYSIS_DAYS, then each candidate is checked against the
inactivity, history, and opt-out policy.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.models.campaign import ReengagementCampaign
from reengage.models.settings import ReengagementSettings
from reengage.models.training import UserStep, UserTraining, STATUS_COMPLETED
from reengage.utils.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

MIN_DAYS_INACTIVE = 5
MIN_COMPLETED_STEPS = 2
MAX_ANALYSIS_DAYS = 60


@dataclass(frozen=True)
class InactiveUser:
    user_id: str
    last_activity_date: datetime
    days_since_activity: int
    total_completions: int
    has_active_campaign: bool


def days_since(moment: datetime, now: Optional[datetime] = None) -> int:
    """Whole days elapsed (floor), so 5d 23h counts as 5."""
    now = as_utc(now) or utcnow()
    return (now - as_utc(moment)).days


async def find_inactive_users(
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> list[InactiveUser]:
    """
    Scan for inactive users eligible for re-engagement.

    Skips users active within MIN_DAYS_INACTIVE days, users with fewer than
    MIN_COMPLETED_STEPS completed steps, and users who disabled re-engagement
    or unsubscribed. Any data-store error is logged and re-raised.
    """
    now = as_utc(now) or utcnow()
    window_start = now - timedelta(days=MAX_ANALYSIS_DAYS)

    try:
        last_activity = func.max(UserStep.updated_at)
        result = await db.execute(
            select(
                UserTraining.user_id,
                last_activity.label("last_activity"),
                func.count(UserStep.id).label("completions"),
            )
            .join(UserTraining, UserTraining.id == UserStep.user_training_id)
            .where(UserStep.status == STATUS_COMPLETED)
            .group_by(UserTraining.user_id)
            .having(last_activity >= window_start)
        )
        candidates = result.all()

        logger.info("Users with activity in the last %d days: %d", MAX_ANALYSIS_DAYS, len(candidates))

        if not candidates:
            return []

        user_ids = [row.user_id for row in candidates]

        settings_result = await db.execute(
            select(ReengagementSettings).where(ReengagementSettings.user_id.in_(user_ids))
        )
        opted_out = {s.user_id for s in settings_result.scalars().all() if s.opted_out}

        active_result = await db.execute(
            select(ReengagementCampaign.user_id).where(
                and_(
                    ReengagementCampaign.user_id.in_(user_ids),
                    ReengagementCampaign.is_active.is_(True),
                )
            )
        )
        with_active_campaign = set(active_result.scalars().all())
    except Exception as e:
        logger.error("Inactive user analysis failed: %s", str(e))
        raise

    inactive_users = []
    for row in candidates:
        if row.last_activity is None:
            continue

        last_activity_date = as_utc(row.last_activity)
        inactive_days = days_since(last_activity_date, now)

        if inactive_days < MIN_DAYS_INACTIVE:
            continue

        if row.completions < MIN_COMPLETED_STEPS:
            continue

        if row.user_id in opted_out:
            continue

        inactive_users.append(InactiveUser(
            user_id=row.user_id,
            last_activity_date=last_activity_date,
            days_since_activity=inactive_days,
            total_completions=row.completions,
            has_active_campaign=row.user_id in with_active_campaign,
        ))

    logger.info("Inactive users found: %d", len(inactive_users))
    return inactive_users


async def check_user_returned(
    db: AsyncSession,
    user_id: str,
    campaign_start_date: datetime,
) -> bool:
    """True when the user completed any step on or after the campaign start."""
    try:
        result = await db.execute(
            select(UserStep.id)
            .join(UserTraining, UserTraining.id == UserStep.user_training_id)
            .where(
                and_(
                    UserTraining.user_id == user_id,
                    UserStep.status == STATUS_COMPLETED,
                    UserStep.updated_at >= campaign_start_date,
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None
    except Exception as e:
        logger.error("Return check failed for user %s: %s", str(user_id)[:8], str(e))
        raise


async def get_last_activity_date(db: AsyncSession, user_id: str) -> Optional[datetime]:
    result = await db.execute(
        select(func.max(UserStep.updated_at))
        .join(UserTraining, UserTraining.id == UserStep.user_training_id)
        .where(
            and_(
                UserTraining.user_id == user_id,
                UserStep.status == STATUS_COMPLETED,
            )
        )
    )
    return as_utc(result.scalar())
