"""
Run re-engagement operations by hand.

Commands:
- analyze   list inactive users the next scheduler pass would act on (read-only)
- schedule  run one scheduler pass (same as POST /api/v1/reengagement/trigger)
- metrics   record the daily metrics snapshot for a day (default: today, UTC)

Usage:
    python scripts/run_reengagement.py analyze
    python scripts/run_reengagement.py schedule
    python scripts/run_reengagement.py metrics --day 2026-10-17
"""
import argparse
import asyncio
import logging
from datetime import date

from reengage.database import async_session_factory, dispose_engine
from reengage.services.analyzer import find_inactive_users
from reengage.services.metrics import record_daily_metrics
from reengage.services.scheduler import manual_trigger_scheduler

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


async def analyze():
    async with async_session_factory() as db:
        users = await find_inactive_users(db)

    logger.info("%d inactive users", len(users))
    for user in users:
        logger.info(
            "  %s  inactive %3d days  %4d steps  %s",
            user.user_id, user.days_since_activity, user.total_completions,
            "campaign active" if user.has_active_campaign else "no campaign",
        )


async def schedule():
    outcome = await manual_trigger_scheduler()
    if outcome["success"]:
        result = outcome["result"]
        logger.info(
            "Scheduler pass done: %d new campaigns, %d notifications queued, %d closed",
            result["new_campaigns"], result["scheduled_notifications"], result["closed_campaigns"],
        )
    else:
        logger.error("Scheduler pass failed: %s", outcome["error"])


async def metrics(day: date | None):
    async with async_session_factory() as db:
        row = await record_daily_metrics(db, day)
        await db.commit()

    logger.info(
        "%s: active=%d sent=%d returned=%d click_rate=%.2f%% return_rate=%.2f%%",
        row.day, row.active_campaigns, row.notifications_sent, row.users_returned,
        row.click_rate * 100, row.return_rate * 100,
    )


async def main():
    parser = argparse.ArgumentParser(description="Re-engagement operations")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("analyze")
    sub.add_parser("schedule")
    metrics_parser = sub.add_parser("metrics")
    metrics_parser.add_argument("--day", type=date.fromisoformat, default=None)
    args = parser.parse_args()

    try:
        if args.command == "analyze":
            await analyze()
        elif args.command == "schedule":
            await schedule()
        else:
            await metrics(args.day)
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
