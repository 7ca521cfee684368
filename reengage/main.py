"""
Re-engagement engine - brings back users who stopped training.
Main FastAPI application entry point: API routes plus the background workers
(daily scheduler, job processor, daily metrics).
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from reengage.config import get_settings
from reengage.api.router import api_router
from reengage.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("reengage")

SHUTDOWN_TIMEOUT_SECONDS = 10.0


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


def start_workers(settings) -> list[asyncio.Task]:
    """Start the background loops enabled in settings."""
    worker_tasks: list[asyncio.Task] = []

    if settings.job_processor_enabled:
        from reengage.workers.task_processor import run_task_processor
        worker_tasks.append(asyncio.create_task(run_task_processor()))
        logger.info("Task processor started (concurrency=%d)", settings.job_concurrency)
    else:
        logger.info("Task processor disabled (JOB_PROCESSOR_ENABLED=false)")

    if settings.scheduler_enabled:
        from reengage.workers.reengagement_scheduler import run_reengagement_scheduler
        worker_tasks.append(asyncio.create_task(run_reengagement_scheduler()))
        logger.info("Re-engagement scheduler started")
    else:
        logger.info("Re-engagement scheduler disabled (SCHEDULER_ENABLED=false)")

    if settings.metrics_enabled:
        from reengage.workers.metrics_worker import run_metrics_worker
        worker_tasks.append(asyncio.create_task(run_metrics_worker()))
        logger.info("Metrics worker started")
    else:
        logger.info("Metrics worker disabled (METRICS_ENABLED=false)")

    return worker_tasks


async def stop_workers(worker_tasks: list[asyncio.Task]) -> None:
    """Cancel the workers and wait up to SHUTDOWN_TIMEOUT_SECONDS for them."""
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        done, pending = await asyncio.wait(worker_tasks, timeout=SHUTDOWN_TIMEOUT_SECONDS)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("Re-engagement engine starting up (env=%s)", settings.app_env)

    if not settings.admin_api_key:
        logger.warning("ADMIN_API_KEY not set - operator endpoints (trigger, metrics) are disabled.")
    if not settings.push_gateway_url:
        logger.warning("PUSH_GATEWAY_URL not set - notifications will be logged, not delivered.")

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    worker_tasks = start_workers(settings)

    yield

    # Graceful shutdown - give workers time to finish current work
    logger.info("Shutting down - stopping %d workers...", len(worker_tasks))
    await stop_workers(worker_tasks)

    from reengage.database import dispose_engine
    from reengage.utils.redis_client import close_redis
    await close_redis()
    await dispose_engine()
    logger.info("Shutdown complete - all %d workers stopped", len(worker_tasks))


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Re-engagement Engine",
        description="Inactivity detection and multi-stage re-engagement push campaigns",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            settings.app_base_url,
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=[
            "Content-Type", "X-Correlation-ID", "X-Admin-Key",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    # Include all routes
    application.include_router(api_router)

    return application


app = create_app()
