"""
Task dispatch service - enqueue tasks for background processing.
Central helper for creating tasks in the task queue.

Also pushes a notification to Redis so the task processor can wake
immediately via BRPOP instead of waiting for its next poll.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, and_

from reengage.database import async_session_factory
from reengage.models.task_queue import TaskQueue

logger = logging.getLogger(__name__)

TASK_NOTIFY_KEY = "reengage:task_notify"

# Statuses that count as a live job for dedup
LIVE_STATUSES = ("pending", "processing")


async def enqueue_task(
    task_type: str,
    payload: Optional[dict] = None,
    priority: int = 5,
    delay_seconds: int = 0,
    max_retries: int = 3,
    dedup_key: Optional[str] = None,
) -> str:
    """
    Enqueue a task for background processing.

    Args:
        task_type: Type of task (send_reengagement_notification)
        payload: Task-specific data as JSON-serializable dict
        priority: 0=low, 5=normal, 10=high
        delay_seconds: Delay before task becomes eligible for processing
        max_retries: Total attempts before the task is marked failed
        dedup_key: When a pending/processing task has the same key,
            no new task is created and the existing id is returned

    Returns:
        Task ID as string
    """
    scheduled_at = datetime.now(timezone.utc)
    if delay_seconds > 0:
        scheduled_at = scheduled_at + timedelta(seconds=delay_seconds)

    async with async_session_factory() as db:
        if dedup_key:
            existing = await db.execute(
                select(TaskQueue.id)
                .where(
                    and_(
                        TaskQueue.dedup_key == dedup_key,
                        TaskQueue.status.in_(LIVE_STATUSES),
                    )
                )
                .limit(1)
            )
            existing_id = existing.scalar_one_or_none()
            if existing_id is not None:
                logger.info(
                    "Task already queued: type=%s key=%s id=%s",
                    task_type, dedup_key, str(existing_id)[:8],
                )
                return str(existing_id)

        task = TaskQueue(
            task_type=task_type,
            payload=payload or {},
            priority=priority,
            max_retries=max_retries,
            scheduled_at=scheduled_at,
            dedup_key=dedup_key,
        )
        db.add(task)
        await db.commit()
        task_id = str(task.id)

    logger.info(
        "Task enqueued: type=%s priority=%d delay=%ds id=%s",
        task_type, priority, delay_seconds, task_id[:8],
        extra={"job_id": task_id},
    )

    # Notify task processor to wake immediately (non-blocking, best-effort)
    if delay_seconds == 0:
        try:
            from reengage.utils.redis_client import get_redis
            redis = await get_redis()
            await redis.lpush(TASK_NOTIFY_KEY, task_id)
        except Exception as e:
            logger.debug("Failed to notify task processor: %s", str(e))

    return task_id
