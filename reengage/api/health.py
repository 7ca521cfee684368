"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health         - basic liveness (always 200 if app running)
- GET /health/ready   - readiness check (DB + Redis)
- GET /health/workers - worker heartbeat freshness
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from reengage.database import get_db, ping_database
from reengage.utils.redis_client import HEARTBEAT_KEY_PREFIX, get_redis

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"
WORKER_NAMES = ("reengagement_scheduler", "task_processor", "metrics")


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness check - verifies database and Redis connectivity.
    """
    checks = {"database": False, "redis": False}

    checks["database"] = await ping_database(db)

    # Check Redis
    try:
        redis = await get_redis()
        await redis.ping()
        checks["redis"] = True
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))

    all_healthy = all(checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/workers")
async def worker_health():
    """Check worker heartbeat timestamps in Redis."""
    try:
        redis = await get_redis()

        workers = {}
        for name in WORKER_NAMES:
            heartbeat = await redis.get(f"{HEARTBEAT_KEY_PREFIX}:{name}")
            workers[name] = {
                "healthy": heartbeat is not None,
                "last_heartbeat": heartbeat,
            }

        all_healthy = all(w["healthy"] for w in workers.values())
        return {"healthy": all_healthy, "workers": workers}
    except Exception as e:
        logger.warning("Worker health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}
