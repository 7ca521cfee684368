"""
Re-engagement dispatch - handles one send_reengagement_notification task.

Runs under a per-campaign Redis lock so two jobs never advance the same
campaign concurrently. Every "nothing to do" outcome (campaign closed,
stale level, nothing eligible) is a no-op result, not an error; only
data-store and transient delivery failures raise so the queue retries.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.config import get_settings
from reengage.database import async_session_factory
from reengage.integrations.push_base import PushDeliveryError, PushResult, PushTransport
from reengage.integrations.push_gateway import get_push_transport
from reengage.models.campaign import ReengagementCampaign
from reengage.models.push_subscription import PushSubscription
from reengage.services.campaign_manager import (
    close_campaign,
    create_notification_record,
    get_campaign_data,
    get_user_settings,
    update_campaign_after_send,
)
from reengage.services.message_library import select_message_variant
from reengage.services.personalizer import personalize_message, validate_personalized_message
from reengage.services.user_data import PlatformStatsCache, collect_user_data
from reengage.utils.locks import campaign_lock
from reengage.utils.logging import bind_log_fields, log_run

logger = logging.getLogger(__name__)

# Shared by every job in this process
platform_stats_cache = PlatformStatsCache()


def _skipped(reason: str) -> dict:
    return {"status": "skipped", "reason": reason}


async def load_push_subscriptions(db: AsyncSession, user_id: str) -> list[dict]:
    """The user's subscriptions in web-push shape. Rows with malformed keys are ignored."""
    result = await db.execute(
        select(PushSubscription).where(PushSubscription.user_id == user_id)
    )

    subscriptions = []
    for sub in result.scalars().all():
        keys = sub.keys or {}
        if isinstance(keys.get("p256dh"), str) and isinstance(keys.get("auth"), str):
            subscriptions.append({
                "endpoint": sub.endpoint,
                "keys": {"p256dh": keys["p256dh"], "auth": keys["auth"]},
            })
    return subscriptions


async def delete_subscriptions(db: AsyncSession, user_id: str, endpoints: list[str]) -> int:
    if not endpoints:
        return 0
    result = await db.execute(
        delete(PushSubscription).where(
            and_(
                PushSubscription.user_id == user_id,
                PushSubscription.endpoint.in_(endpoints),
            )
        )
    )
    return result.rowcount or 0


def build_push_payload(message: dict, notification_id: uuid.UUID) -> dict:
    settings = get_settings()
    return {
        "title": message["title"],
        "body": message["body"],
        "icon": settings.push_icon_url,
        "badge": settings.push_badge_url,
        "data": {
            **message["data"],
            "notification_id": str(notification_id),
            "url": message["url"],
        },
    }


async def process_reengagement_job(
    payload: dict,
    final_attempt: bool = False,
    transport: Optional[PushTransport] = None,
    stats_cache: Optional[PlatformStatsCache] = None,
) -> dict:
    """
    Send the notification for one campaign level.

    payload: {"campaign_id": str, "user_id": str, "level": int}
    On the final attempt a transient delivery failure is recorded as a
    fully failed send and the campaign still advances.
    """
    try:
        campaign_id = uuid.UUID(str(payload.get("campaign_id")))
        level = int(payload.get("level"))
    except (TypeError, ValueError):
        logger.warning("Invalid re-engagement job payload: %s", payload)
        return _skipped("invalid payload")

    with log_run(campaign_id=str(campaign_id), campaign_level=level):
        async with campaign_lock(str(campaign_id)):
            async with async_session_factory() as db:
                return await _send_campaign_notification(
                    db,
                    campaign_id,
                    level,
                    final_attempt,
                    transport or get_push_transport(),
                    stats_cache or platform_stats_cache,
                )


async def _send_campaign_notification(
    db: AsyncSession,
    campaign_id: uuid.UUID,
    level: int,
    final_attempt: bool,
    transport: PushTransport,
    stats_cache: PlatformStatsCache,
) -> dict:
    campaign = await db.get(ReengagementCampaign, campaign_id)
    if not campaign:
        logger.warning("Campaign %s not found", str(campaign_id)[:8])
        return _skipped("campaign not found")

    user_id = campaign.user_id
    bind_log_fields(user_id=user_id)

    if not campaign.is_active:
        logger.info("Campaign %s inactive, skipping", str(campaign_id)[:8])
        return _skipped("campaign inactive")

    if campaign.returned or campaign.unsubscribed:
        await close_campaign(db, campaign_id, returned=campaign.returned, unsubscribed=campaign.unsubscribed)
        await db.commit()
        return _skipped("user returned" if campaign.returned else "user unsubscribed")

    if campaign.current_level != level:
        logger.info(
            "Stale job for campaign %s: job level %d, campaign level %d",
            str(campaign_id)[:8], level, campaign.current_level,
        )
        return _skipped("stale level")

    settings = await get_user_settings(db, user_id)
    if settings is not None and settings.opted_out:
        await close_campaign(db, campaign_id, unsubscribed=True)
        await db.commit()
        logger.info("User %s opted out, campaign closed", str(user_id)[:8])
        return _skipped("user opted out")

    user_data = await collect_user_data(db, user_id, stats_cache)
    if user_data is None:
        return _skipped("user not found")

    campaign_data = await get_campaign_data(db, campaign_id)
    variant = select_message_variant(level, user_data, campaign_data.sent_variant_ids)
    if variant is None:
        logger.warning(
            "No eligible level %d variant for user %s (%d already sent)",
            level, str(user_id)[:8], len(campaign_data.sent_variant_ids),
        )
        return _skipped("no eligible variant")

    message = personalize_message(variant, user_data)
    validate_personalized_message(message)

    notification_id = await create_notification_record(
        db,
        campaign_id,
        level,
        variant.type,
        variant.id,
        message["title"],
        message["body"],
        message["url"],
    )
    await db.commit()
    bind_log_fields(notification_id=str(notification_id))

    subscriptions = await load_push_subscriptions(db, user_id)
    if not subscriptions:
        logger.warning("User %s has no push subscriptions", str(user_id)[:8])
        await update_campaign_after_send(db, campaign_id, notification_id, 0, 0)
        await db.commit()
        return {
            "status": "sent",
            "notification_id": str(notification_id),
            "variant_id": variant.id,
            "success_count": 0,
            "failed_count": 0,
        }

    try:
        result = await transport.send_notifications(
            subscriptions, build_push_payload(message, notification_id),
        )
    except PushDeliveryError as e:
        if not final_attempt:
            logger.warning("Push delivery failed, will retry: %s", str(e))
            raise
        logger.error("Push delivery failed on final attempt: %s", str(e))
        result = PushResult(success_count=0, failure_count=len(subscriptions))

    gone = await delete_subscriptions(db, user_id, result.gone_endpoints)
    if gone:
        logger.info("Deleted %d expired push subscriptions for user %s", gone, str(user_id)[:8])

    await update_campaign_after_send(
        db, campaign_id, notification_id, result.success_count, result.failure_count,
    )
    await db.commit()

    logger.info(
        "Re-engagement notification sent: campaign=%s variant=%s success=%d failed=%d",
        str(campaign_id)[:8], variant.id, result.success_count, result.failure_count,
    )
    return {
        "status": "sent",
        "notification_id": str(notification_id),
        "variant_id": variant.id,
        "success_count": result.success_count,
        "failed_count": result.failure_count,
    }
