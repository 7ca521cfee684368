"""
Engine and sessions for the campaign store.

PostgreSQL (asyncpg) in production. A sqlite+aiosqlite URL works for local
runs of the operator script and for tests.

Sessions use expire_on_commit=False, so an object loaded before a commit
keeps its old attribute values afterwards. Code that must decide on the
current row state (campaign advancement, closing) re-reads with
populate_existing.
"""
import logging
from typing import AsyncGenerator
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine = None
_async_session_factory = None


class Base(DeclarativeBase):
    pass


def engine_options(database_url: str, pool_size: int, max_overflow: int, echo: bool = False) -> dict:
    """Keyword arguments for create_async_engine for the given backend."""
    options = {"echo": echo}
    if make_url(database_url).get_backend_name() == "sqlite":
        # aiosqlite has no connection pool to size
        return options
    options.update(
        pool_size=pool_size,
        max_overflow=max_overflow,
        # The daily loops hold idle connections for hours between passes
        pool_pre_ping=True,
    )
    return options


def _get_engine():
    global _engine
    if _engine is None:
        from reengage.config import get_settings
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            **engine_options(
                settings.database_url,
                settings.database_pool_size,
                settings.database_max_overflow,
                echo=settings.app_env == "development",
            ),
        )
    return _engine


def _get_session_factory():
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            _get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _async_session_factory


def async_session_factory() -> AsyncSession:
    """Session for the workers, the job handler and the operator script. The caller commits."""
    return _get_session_factory()()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commits when the endpoint returns, rolls back on error."""
    session_factory = _get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.debug("Request session rolled back: %s", str(e))
            await session.rollback()
            raise


async def ping_database(db: AsyncSession) -> bool:
    """Readiness check. Logs and returns False instead of raising."""
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return False


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _async_session_factory = None
