"""
Re-engagement scheduler worker - runs one scheduler pass per day at
scheduler_run_hour_utc. A pass is skipped when another one holds the lock.
"""
import asyncio
import logging

from reengage.config import get_settings
from reengage.services.scheduler import schedule_reengagement_campaigns
from reengage.utils.locks import LockTimeoutError
from reengage.utils.redis_client import write_heartbeat
from reengage.utils.timeutils import seconds_until_hour

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL_SECONDS = 300
HEARTBEAT_TTL = 900


async def sleep_until_hour(hour_utc: int, worker_name: str) -> None:
    """Sleep until the next HH:00 UTC, heartbeating along the way."""
    remaining = seconds_until_hour(hour_utc)
    while remaining > 0:
        chunk = min(remaining, HEARTBEAT_INTERVAL_SECONDS)
        await asyncio.sleep(chunk)
        remaining -= chunk
        await write_heartbeat(worker_name, HEARTBEAT_TTL)


async def run_scheduler_once() -> dict | None:
    try:
        result = await schedule_reengagement_campaigns()
    except LockTimeoutError:
        logger.info("Scheduler pass skipped: another pass is running")
        return None
    except Exception as e:
        logger.error("Re-engagement scheduler error: %s", str(e))
        return None

    logger.info(
        "Re-engagement scheduler: %d new campaigns, %d notifications queued, %d closed",
        result["new_campaigns"], result["scheduled_notifications"], result["closed_campaigns"],
    )
    return result


async def run_reengagement_scheduler():
    """Main loop - one pass per day."""
    hour = get_settings().scheduler_run_hour_utc
    logger.info("Re-engagement scheduler started (daily at %02d:00 UTC)", hour)

    while True:
        await write_heartbeat("reengagement_scheduler", HEARTBEAT_TTL)
        await sleep_until_hour(hour, "reengagement_scheduler")
        await run_scheduler_once()
