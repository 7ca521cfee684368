"""
Task processor worker - polls the task_queue table and dispatches tasks.
Handles retries with exponential backoff (1s, 2s, 4s, ...).

Uses BRPOP on a Redis notification key for near-instant wake on new tasks,
with a timeout falling back to DB poll as safety net.

Completed tasks are deleted; failed tasks are kept for inspection, pruned
to the newest MAX_FAILED_TASKS_KEPT per task type.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.config import get_settings
from reengage.database import async_session_factory
from reengage.models.task_queue import TaskQueue
from reengage.services.task_dispatch import TASK_NOTIFY_KEY
from reengage.utils.redis_client import get_redis, write_heartbeat

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 30  # Fallback DB poll interval
MAX_TASKS_PER_CYCLE = 20
BRPOP_TIMEOUT = 30  # seconds to wait for Redis notification
BACKOFF_BASE_SECONDS = 1
MAX_FAILED_TASKS_KEPT = 50
STUCK_TASK_SECONDS = 15 * 60  # processing longer than this = worker died mid-task
HEARTBEAT_TTL = 120


async def run_task_processor():
    """Main loop - wait for notification or poll every 30s."""
    logger.info("Task processor started (adaptive polling, BRPOP %ds timeout)", BRPOP_TIMEOUT)

    while True:
        try:
            await process_cycle()
        except Exception as e:
            logger.error("Task processor cycle error: %s", str(e))

        await write_heartbeat("task_processor", HEARTBEAT_TTL)

        # Wait for either a Redis notification or timeout
        try:
            redis = await get_redis()
            # BRPOP blocks until a notification arrives or timeout expires
            result = await redis.brpop(TASK_NOTIFY_KEY, timeout=BRPOP_TIMEOUT)
            if result:
                # Drain any additional notifications to avoid stacking
                while await redis.rpop(TASK_NOTIFY_KEY):
                    pass
        except Exception as e:
            # If Redis is unavailable, fall back to sleep
            logger.debug("Redis BRPOP unavailable, falling back to sleep: %s", str(e))
            await asyncio.sleep(POLL_INTERVAL_SECONDS)


def backoff_seconds(attempt: int) -> int:
    """Delay before retrying after the given failed attempt (1-based)."""
    return BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))


async def process_cycle(concurrency: Optional[int] = None) -> int:
    """
    Claim due pending tasks and execute them, at most `concurrency` at a time.
    Returns the number of tasks executed.
    """
    if concurrency is None:
        concurrency = get_settings().job_concurrency
    now = datetime.now(timezone.utc)

    async with async_session_factory() as db:
        await _recover_stuck_tasks(db, now)

        # Fetch pending tasks that are due, ordered by priority (high first)
        result = await db.execute(
            select(TaskQueue)
            .where(
                and_(
                    TaskQueue.status == "pending",
                    TaskQueue.scheduled_at <= now,
                )
            )
            .order_by(TaskQueue.priority.desc(), TaskQueue.created_at)
            .limit(MAX_TASKS_PER_CYCLE)
            .with_for_update(skip_locked=True)
        )
        tasks = result.scalars().all()

        if not tasks:
            await db.commit()
            return 0

        for task in tasks:
            task.status = "processing"
            task.started_at = now
        task_ids = [task.id for task in tasks]
        await db.commit()

    logger.info("Processing %d pending tasks", len(task_ids))

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _run(task_id: uuid.UUID) -> None:
        async with semaphore:
            try:
                await _execute_task(task_id)
            except Exception as e:
                logger.error("Task %s execution error: %s", str(task_id)[:8], str(e))

    await asyncio.gather(*(_run(task_id) for task_id in task_ids))

    async with async_session_factory() as db:
        await _prune_failed_tasks(db)
        await db.commit()

    return len(task_ids)


async def _recover_stuck_tasks(db: AsyncSession, now: datetime) -> None:
    """Put tasks orphaned in 'processing' by a dead worker back to pending."""
    cutoff = now - timedelta(seconds=STUCK_TASK_SECONDS)
    result = await db.execute(
        select(TaskQueue).where(
            and_(
                TaskQueue.status == "processing",
                TaskQueue.started_at < cutoff,
            )
        )
    )
    stuck = result.scalars().all()
    for task in stuck:
        task.status = "pending"
        task.scheduled_at = now
        logger.warning("Recovered stuck task: id=%s type=%s", str(task.id)[:8], task.task_type)


async def _execute_task(task_id: uuid.UUID) -> None:
    """Execute a single claimed task and handle success/failure."""
    async with async_session_factory() as db:
        task = await db.get(TaskQueue, task_id)
        if task is None or task.status != "processing":
            return

        attempt = task.retry_count + 1
        final_attempt = attempt >= task.max_retries

        try:
            await _dispatch_task(task.task_type, dict(task.payload or {}), final_attempt)
            logger.info(
                "Task completed: id=%s type=%s", str(task.id)[:8], task.task_type,
                extra={"job_id": str(task.id)},
            )
            await db.delete(task)

        except Exception as e:
            task.retry_count = attempt
            error_msg = str(e) or e.__class__.__name__

            if final_attempt:
                task.status = "failed"
                task.error_message = error_msg
                task.completed_at = datetime.now(timezone.utc)
                logger.error(
                    "Task failed (max retries): id=%s type=%s error=%s",
                    str(task.id)[:8], task.task_type, error_msg,
                    extra={"job_id": str(task.id)},
                )
            else:
                backoff = backoff_seconds(attempt)
                task.status = "pending"
                task.scheduled_at = datetime.now(timezone.utc) + timedelta(seconds=backoff)
                task.error_message = error_msg
                logger.warning(
                    "Task retry %d/%d: id=%s type=%s backoff=%ds",
                    attempt, task.max_retries,
                    str(task.id)[:8], task.task_type, backoff,
                    extra={"job_id": str(task.id)},
                )

        await db.commit()


async def _prune_failed_tasks(db: AsyncSession) -> int:
    """Keep only the newest MAX_FAILED_TASKS_KEPT failed tasks per task type."""
    types_result = await db.execute(
        select(TaskQueue.task_type).where(TaskQueue.status == "failed").distinct()
    )

    pruned = 0
    for task_type in types_result.scalars().all():
        old_result = await db.execute(
            select(TaskQueue.id)
            .where(
                and_(
                    TaskQueue.status == "failed",
                    TaskQueue.task_type == task_type,
                )
            )
            .order_by(TaskQueue.completed_at.desc(), TaskQueue.created_at.desc())
            .offset(MAX_FAILED_TASKS_KEPT)
        )
        old_ids = list(old_result.scalars().all())
        if old_ids:
            await db.execute(delete(TaskQueue).where(TaskQueue.id.in_(old_ids)))
            pruned += len(old_ids)

    if pruned:
        logger.info("Pruned %d old failed tasks", pruned)
    return pruned


async def _dispatch_task(task_type: str, payload: dict, final_attempt: bool = False) -> dict:
    """
    Route task to its handler function.
    Each handler receives the payload dict and the final-attempt flag, and returns a result dict.
    """
    handlers = {
        "send_reengagement_notification": _handle_send_reengagement_notification,
    }

    handler = handlers.get(task_type)
    if not handler:
        logger.warning("Unknown task type: %s", task_type)
        return {"status": "skipped", "reason": f"unknown task type: {task_type}"}

    return await handler(payload, final_attempt)


async def _handle_send_reengagement_notification(payload: dict, final_attempt: bool) -> dict:
    """Send the next re-engagement notification of a campaign."""
    from reengage.workers.reengagement_dispatch import process_reengagement_job

    return await process_reengagement_job(payload, final_attempt=final_attempt)
