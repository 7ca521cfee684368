"""
Redis distributed locks - serialize scheduler passes and per-campaign advancement.
Uses Redis SET NX with TTL for automatic expiration.
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 30
LOCK_WAIT_SECONDS = 5
LOCK_POLL_INTERVAL = 0.1  # 100ms

SCHEDULER_LOCK_KEY = "reengage:lock:scheduler"
SCHEDULER_LOCK_TTL_SECONDS = 30 * 60


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout."""
    pass


@asynccontextmanager
async def redis_lock(
    lock_key: str,
    ttl: int = LOCK_TTL_SECONDS,
    wait: float = LOCK_WAIT_SECONDS,
):
    """
    Acquire a distributed lock on an arbitrary key.

    Usage:
        async with redis_lock("reengage:lock:campaign:<id>"):
            # read-modify-write safely
    """
    lock_value = uuid.uuid4().hex  # Unique value to ensure we only release our own lock

    acquired = False
    try:
        acquired = await _acquire_lock(lock_key, lock_value, ttl, wait)
        if not acquired:
            raise LockTimeoutError(f"Could not acquire lock {lock_key} within {wait}s")
        yield
    finally:
        if acquired:
            await _release_lock(lock_key, lock_value)


def campaign_lock(campaign_id: str, ttl: int = 120, wait: float = LOCK_WAIT_SECONDS):
    """Lock held for the whole dispatch of one campaign's job."""
    return redis_lock(f"reengage:lock:campaign:{campaign_id}", ttl=ttl, wait=wait)


def scheduler_lock():
    """Single-flight lock for scheduler passes. Does not wait: an overlapping pass is skipped."""
    return redis_lock(SCHEDULER_LOCK_KEY, ttl=SCHEDULER_LOCK_TTL_SECONDS, wait=0)


async def _acquire_lock(
    key: str,
    value: str,
    ttl: int,
    wait: float,
) -> bool:
    """Try to acquire a Redis lock with polling."""
    try:
        from reengage.utils.redis_client import get_redis
        redis = await get_redis()

        # Immediate attempt
        was_set = await redis.set(key, value, nx=True, ex=ttl)
        if was_set:
            return True

        # Poll until timeout
        elapsed = 0.0
        while elapsed < wait:
            await asyncio.sleep(LOCK_POLL_INTERVAL)
            elapsed += LOCK_POLL_INTERVAL
            was_set = await redis.set(key, value, nx=True, ex=ttl)
            if was_set:
                return True

        logger.warning("Lock acquisition timed out for %s", key)
        return False
    except Exception as e:
        # Redis failure should not block re-engagement; the partial unique
        # index still guards the one-active-campaign invariant.
        logger.warning("Redis lock error for %s: %s. Proceeding without lock.", key, str(e))
        return True


async def _release_lock(key: str, value: str) -> None:
    """Release a Redis lock only if we still own it (compare-and-delete)."""
    try:
        from reengage.utils.redis_client import get_redis
        redis = await get_redis()

        lua_script = """
        if redis.call('get', KEYS[1]) == ARGV[1] then
            return redis.call('del', KEYS[1])
        else
            return 0
        end
        """
        await redis.eval(lua_script, 1, key, value)
    except Exception as e:
        logger.warning("Redis lock release error for %s: %s", key, str(e))
