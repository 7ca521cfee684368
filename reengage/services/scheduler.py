"""
Re-engagement scheduler - one pass of campaign orchestration.

Order matters, and each step commits before the next starts:
  1. close campaigns of users who came back
  2. find inactive users
  3. create a campaign + level-1 job for users without one
  4. enqueue a job at the current level for campaigns that are due

The scheduler never renders or sends anything; the job processor does.
Only one pass runs at a time (Redis scheduler lock).
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from reengage.database import async_session_factory
from reengage.services.analyzer import find_inactive_users
from reengage.services.campaign_manager import (
    close_returned_campaigns,
    create_campaign,
    get_active_campaign,
)
from reengage.services.task_dispatch import enqueue_task
from reengage.utils.locks import scheduler_lock
from reengage.utils.logging import log_run
from reengage.utils.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

REENGAGEMENT_TASK_TYPE = "send_reengagement_notification"
JOB_MAX_ATTEMPTS = 3
JOB_PRIORITY = 5


def job_dedup_key(campaign_id) -> str:
    return f"reengagement:{campaign_id}"


async def add_notification_job(campaign_id: uuid.UUID, user_id: str, level: int) -> str:
    """Queue a send for one campaign level. At most one live job per campaign."""
    try:
        task_id = await enqueue_task(
            task_type=REENGAGEMENT_TASK_TYPE,
            payload={
                "campaign_id": str(campaign_id),
                "user_id": user_id,
                "level": level,
            },
            priority=JOB_PRIORITY,
            max_retries=JOB_MAX_ATTEMPTS,
            dedup_key=job_dedup_key(campaign_id),
        )
    except Exception as e:
        logger.error(
            "Failed to enqueue notification job: campaign=%s user=%s level=%d error=%s",
            str(campaign_id)[:8], str(user_id)[:8], level, str(e),
        )
        raise

    logger.info(
        "Notification job queued: campaign=%s user=%s level=%d",
        str(campaign_id)[:8], str(user_id)[:8], level,
        extra={"campaign_id": str(campaign_id), "user_id": user_id, "campaign_level": level, "job_id": task_id},
    )
    return task_id


async def schedule_reengagement_campaigns(now: Optional[datetime] = None) -> dict:
    """
    Run one scheduler pass.

    Raises LockTimeoutError when another pass holds the scheduler lock.
    Per-user failures are logged and skipped; anything else is re-raised.

    Returns:
        {"new_campaigns": int, "scheduled_notifications": int, "closed_campaigns": int}
    """
    now = as_utc(now) or utcnow()
    with log_run():
        async with scheduler_lock():
            logger.info("Re-engagement scheduler pass started")

            try:
                async with async_session_factory() as db:
                    returned_users = await close_returned_campaigns(db, now=now)
                    await db.commit()

                    inactive_users = await find_inactive_users(db, now=now)

                    new_campaigns = 0
                    scheduled = 0
                    skip_users = set(returned_users)

                    for user in inactive_users:
                        if user.user_id in skip_users:
                            continue

                        try:
                            if not user.has_active_campaign:
                                campaign_id = await create_campaign(
                                    db, user.user_id, user.last_activity_date, now=now,
                                )
                                await db.commit()
                                new_campaigns += 1

                                await add_notification_job(campaign_id, user.user_id, 1)
                                scheduled += 1
                                continue

                            campaign = await get_active_campaign(db, user.user_id)
                            if not campaign or campaign.next_notification_date is None:
                                continue

                            if as_utc(campaign.next_notification_date) <= now:
                                await add_notification_job(campaign.id, user.user_id, campaign.current_level)
                                scheduled += 1
                        except Exception as e:
                            await db.rollback()
                            logger.error(
                                "Scheduling failed for user %s: %s", str(user.user_id)[:8], str(e),
                                extra={"user_id": user.user_id},
                            )
            except Exception as e:
                logger.error("Re-engagement scheduler pass failed: %s", str(e))
                raise

        result = {
            "new_campaigns": new_campaigns,
            "scheduled_notifications": scheduled,
            "closed_campaigns": len(returned_users),
        }
        logger.info(
            "Re-engagement scheduler pass finished: inactive=%d new=%d scheduled=%d closed=%d",
            len(inactive_users), new_campaigns, scheduled, len(returned_users),
        )
        return result


async def manual_trigger_scheduler() -> dict:
    """Operator entry point: run a pass now and report instead of raising."""
    logger.info("Manual re-engagement scheduler trigger")
    try:
        result = await schedule_reengagement_campaigns()
        return {"success": True, "result": result}
    except Exception as e:
        logger.error("Manual scheduler trigger failed: %s", str(e))
        return {"success": False, "error": str(e) or e.__class__.__name__}
