"""
Campaign manager - the re-engagement campaign state machine.

    no campaign -> active(L1) -> active(L2) -> active(L3) -> active(L4) -> closed

Closure may also happen from any active level when the user returns or
unsubscribes. Every level's due date is an absolute offset from the
campaign's anchor (last_activity_date), never from "now" or from the
previous send, so a missed scheduler run cannot shift the schedule.

Functions here flush but never commit: the caller owns the transaction.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.models.campaign import ReengagementCampaign
from reengage.models.notification import ReengagementNotification
from reengage.models.settings import ReengagementSettings
from reengage.services.analyzer import check_user_returned
from reengage.utils.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

# Days after the anchor at which each level is due
NOTIFICATION_INTERVALS = {1: 5, 2: 12, 3: 20, 4: 30}
MAX_LEVEL = 4


class ActiveCampaignExistsError(Exception):
    """Raised when a user already has an active campaign."""
    pass


@dataclass
class CampaignData:
    id: uuid.UUID
    user_id: str
    current_level: int
    sent_variant_ids: list[str]
    last_activity_date: datetime
    is_active: bool = True


def calculate_next_notification_date(level: int, last_activity_date: datetime) -> datetime:
    interval = NOTIFICATION_INTERVALS.get(level, NOTIFICATION_INTERVALS[1])
    return as_utc(last_activity_date) + timedelta(days=interval)


async def create_campaign(
    db: AsyncSession,
    user_id: str,
    last_activity_date: datetime,
    now: Optional[datetime] = None,
) -> uuid.UUID:
    """
    Start a level-1 campaign for a user.

    The caller must know the user has no active campaign (analyzer's
    has_active_campaign). The partial unique index on active campaigns
    rejects a concurrent duplicate with ActiveCampaignExistsError; the
    session then needs a rollback.
    """
    now = as_utc(now) or utcnow()
    campaign = ReengagementCampaign(
        user_id=user_id,
        last_activity_date=as_utc(last_activity_date),
        campaign_start_date=now,
        current_level=1,
        next_notification_date=calculate_next_notification_date(1, last_activity_date),
        is_active=True,
    )
    db.add(campaign)

    try:
        await db.flush()
    except IntegrityError as e:
        logger.warning("User %s already has an active campaign", str(user_id)[:8])
        raise ActiveCampaignExistsError(user_id) from e

    logger.info(
        "Campaign created: id=%s user=%s first_due=%s",
        str(campaign.id)[:8], str(user_id)[:8], campaign.next_notification_date.isoformat(),
        extra={"campaign_id": str(campaign.id), "user_id": user_id},
    )
    return campaign.id


async def update_campaign_after_send(
    db: AsyncSession,
    campaign_id: uuid.UUID,
    notification_id: uuid.UUID,
    success_count: int,
    failed_count: int,
    now: Optional[datetime] = None,
) -> None:
    """
    Record a finished delivery attempt and advance the campaign.

    Levels 1-3 advance by one with the due date recomputed from the anchor;
    level 4 is terminal and deactivates the campaign. The campaign advances
    even when every device failed. Calling twice for the same notification
    is a no-op the second time. A campaign closed while the send was in
    flight only gets the notification marked sent.
    """
    now = as_utc(now) or utcnow()

    notification = await db.get(ReengagementNotification, notification_id, populate_existing=True)
    if not notification:
        logger.warning("Notification %s not found for campaign update", str(notification_id)[:8])
        return

    if notification.sent:
        logger.warning(
            "Notification %s already recorded as sent, not advancing campaign %s again",
            str(notification_id)[:8], str(campaign_id)[:8],
        )
        return

    notification.sent = True
    notification.sent_at = now
    notification.success_count = success_count
    notification.failed_count = failed_count

    # Re-read under a row lock: an unsubscribe or return may have closed it during the send
    campaign = await db.get(
        ReengagementCampaign, campaign_id, populate_existing=True, with_for_update=True,
    )
    if not campaign:
        logger.warning("Campaign %s not found for update", str(campaign_id)[:8])
        await db.flush()
        return

    campaign.total_notifications_sent = (campaign.total_notifications_sent or 0) + 1
    campaign.last_notification_sent = now

    if not campaign.is_active:
        logger.info(
            "Campaign %s closed during send, not advancing", str(campaign_id)[:8],
            extra={"campaign_id": str(campaign_id)},
        )
        await db.flush()
        return

    if campaign.current_level >= MAX_LEVEL:
        campaign.current_level = MAX_LEVEL
        campaign.is_active = False
        campaign.next_notification_date = None
    else:
        campaign.current_level = campaign.current_level + 1
        campaign.next_notification_date = calculate_next_notification_date(
            campaign.current_level, campaign.last_activity_date,
        )

    await db.flush()

    logger.info(
        "Campaign %s updated after send: level=%d active=%s next=%s success=%d failed=%d",
        str(campaign_id)[:8], campaign.current_level, campaign.is_active,
        campaign.next_notification_date.isoformat() if campaign.next_notification_date else None,
        success_count, failed_count,
        extra={"campaign_id": str(campaign_id), "notification_id": str(notification_id)},
    )


async def close_campaign(
    db: AsyncSession,
    campaign_id: uuid.UUID,
    returned: bool = False,
    unsubscribed: bool = False,
    now: Optional[datetime] = None,
) -> None:
    campaign = await db.get(
        ReengagementCampaign, campaign_id, populate_existing=True, with_for_update=True,
    )
    if not campaign:
        logger.warning("Campaign %s not found for close", str(campaign_id)[:8])
        return

    campaign.is_active = False
    campaign.next_notification_date = None
    if returned:
        campaign.returned = True
        campaign.returned_at = as_utc(now) or utcnow()
    if unsubscribed:
        campaign.unsubscribed = True

    await db.flush()
    logger.info(
        "Campaign %s closed (returned=%s unsubscribed=%s)",
        str(campaign_id)[:8], returned, unsubscribed,
        extra={"campaign_id": str(campaign_id), "user_id": campaign.user_id},
    )


async def get_campaign_data(db: AsyncSession, campaign_id: uuid.UUID) -> Optional[CampaignData]:
    """Campaign state plus every variant id already used by it."""
    campaign = await db.get(ReengagementCampaign, campaign_id)
    if not campaign:
        return None

    result = await db.execute(
        select(ReengagementNotification.variant_id).where(
            ReengagementNotification.campaign_id == campaign_id
        )
    )

    return CampaignData(
        id=campaign.id,
        user_id=campaign.user_id,
        current_level=campaign.current_level,
        sent_variant_ids=list(result.scalars().all()),
        last_activity_date=as_utc(campaign.last_activity_date),
        is_active=campaign.is_active,
    )


async def get_user_settings(db: AsyncSession, user_id: str) -> Optional[ReengagementSettings]:
    result = await db.execute(
        select(ReengagementSettings).where(ReengagementSettings.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def _get_or_create_settings(db: AsyncSession, user_id: str) -> ReengagementSettings:
    settings = await get_user_settings(db, user_id)
    if settings is not None:
        return settings

    try:
        async with db.begin_nested():
            settings = ReengagementSettings(user_id=user_id)
            db.add(settings)
            await db.flush()
    except IntegrityError:
        # A concurrent request inserted the row first
        logger.info("Settings row for user %s created concurrently, reusing it", str(user_id)[:8])
        settings = await get_user_settings(db, user_id)
    return settings


async def unsubscribe_user(
    db: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
) -> int:
    """
    Disable re-engagement for a user and close every active campaign of theirs.

    Both writes land in the caller's transaction and commit together.
    Returns the number of campaigns closed.
    """
    now = as_utc(now) or utcnow()

    try:
        settings = await _get_or_create_settings(db, user_id)
        settings.enabled = False
        settings.unsubscribed_at = now

        result = await db.execute(
            select(ReengagementCampaign)
            .where(
                and_(
                    ReengagementCampaign.user_id == user_id,
                    ReengagementCampaign.is_active.is_(True),
                )
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        campaigns = result.scalars().all()
        for campaign in campaigns:
            campaign.is_active = False
            campaign.unsubscribed = True
            campaign.next_notification_date = None
        await db.flush()
    except Exception as e:
        logger.error("Unsubscribe failed for user %s: %s", str(user_id)[:8], str(e))
        raise

    closed = len(campaigns)
    logger.info(
        "User %s unsubscribed from re-engagement (%d campaigns closed)",
        str(user_id)[:8], closed,
        extra={"user_id": user_id},
    )
    return closed


async def set_reengagement_enabled(
    db: AsyncSession,
    user_id: str,
    enabled: bool,
) -> ReengagementSettings:
    """
    Re-enabling clears unsubscribed_at; disabling is an unsubscribe.
    The API only lets operators re-enable.
    """
    if not enabled:
        await unsubscribe_user(db, user_id)
        return await get_user_settings(db, user_id)

    settings = await _get_or_create_settings(db, user_id)
    settings.enabled = True
    settings.unsubscribed_at = None
    await db.flush()

    logger.info("Re-engagement re-enabled for user %s", str(user_id)[:8], extra={"user_id": user_id})
    return settings


async def create_notification_record(
    db: AsyncSession,
    campaign_id: uuid.UUID,
    level: int,
    message_type: str,
    variant_id: str,
    title: str,
    body: str,
    url: str,
) -> uuid.UUID:
    """
    Register intent to send (sent=False) before the delivery attempt.

    An unsent record left for the same campaign and level by a crashed
    earlier attempt is reused and overwritten instead of duplicated.
    """
    result = await db.execute(
        select(ReengagementNotification)
        .where(
            and_(
                ReengagementNotification.campaign_id == campaign_id,
                ReengagementNotification.level == level,
                ReengagementNotification.sent.is_(False),
            )
        )
        .order_by(ReengagementNotification.created_at.desc())
        .limit(1)
    )
    notification = result.scalar_one_or_none()

    if notification is None:
        notification = ReengagementNotification(campaign_id=campaign_id, level=level, sent=False)
        db.add(notification)
    else:
        logger.info(
            "Reusing unsent notification %s for campaign %s level %d",
            str(notification.id)[:8], str(campaign_id)[:8], level,
        )

    notification.message_type = message_type
    notification.variant_id = variant_id
    notification.title = title
    notification.body = body
    notification.url = url

    await db.flush()
    return notification.id


async def close_returned_campaigns(
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> list[str]:
    """
    Close, with returned=True, every active campaign whose user trained since
    it started. Returns the user ids whose campaigns were closed.
    """
    result = await db.execute(
        select(ReengagementCampaign).where(
            and_(
                ReengagementCampaign.is_active.is_(True),
                ReengagementCampaign.returned.is_(False),
            )
        )
    )
    campaigns = result.scalars().all()

    returned_users = []
    for campaign in campaigns:
        if await check_user_returned(db, campaign.user_id, as_utc(campaign.campaign_start_date)):
            await close_campaign(db, campaign.id, returned=True, now=now)
            returned_users.append(campaign.user_id)

    if returned_users:
        logger.info("Closed %d campaigns of returned users", len(returned_users))
    return returned_users


async def check_and_close_returned_campaigns(
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> int:
    return len(await close_returned_campaigns(db, now))


async def get_active_campaign(db: AsyncSession, user_id: str) -> Optional[ReengagementCampaign]:
    result = await db.execute(
        select(ReengagementCampaign)
        .where(
            and_(
                ReengagementCampaign.user_id == user_id,
                ReengagementCampaign.is_active.is_(True),
            )
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def track_notification_click(
    db: AsyncSession,
    notification_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> bool:
    """Mark a notification clicked. Returns False for unknown ids. Repeat clicks keep the first timestamp."""
    notification = await db.get(ReengagementNotification, notification_id)
    if not notification:
        logger.debug("Click for unknown notification %s", str(notification_id)[:8])
        return False

    if not notification.clicked:
        notification.clicked = True
        notification.clicked_at = as_utc(now) or utcnow()
        await db.flush()
        logger.info(
            "Notification %s clicked", str(notification_id)[:8],
            extra={"notification_id": str(notification_id)},
        )
    return True
