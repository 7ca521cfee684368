"""
Metrics worker - snapshots the day's re-engagement metrics at metrics_run_hour_utc.
"""
import logging

from reengage.config import get_settings
from reengage.database import async_session_factory
from reengage.services.metrics import record_daily_metrics
from reengage.utils.redis_client import write_heartbeat
from reengage.workers.reengagement_scheduler import HEARTBEAT_TTL, sleep_until_hour

logger = logging.getLogger(__name__)


async def record_metrics_once() -> None:
    async with async_session_factory() as db:
        await record_daily_metrics(db)
        await db.commit()


async def run_metrics_worker():
    """Main loop - one snapshot per day."""
    hour = get_settings().metrics_run_hour_utc
    logger.info("Metrics worker started (daily at %02d:00 UTC)", hour)

    while True:
        await write_heartbeat("metrics", HEARTBEAT_TTL)
        await sleep_until_hour(hour, "metrics")
        try:
            await record_metrics_once()
        except Exception as e:
            logger.error("Daily metrics error: %s", str(e))
