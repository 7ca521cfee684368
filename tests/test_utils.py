"""
Tests for reengage/utils and reengage/database.py - Redis locks, structured logging, UTC helpers, heartbeats, engine options.
"""
import json
import logging
import pytest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

from reengage.database import engine_options, ping_database
from reengage.utils.locks import (
    SCHEDULER_LOCK_KEY,
    LockTimeoutError,
    campaign_lock,
    redis_lock,
    scheduler_lock,
)
from reengage.utils.logging import (
    StructuredJsonFormatter,
    bind_log_fields,
    generate_correlation_id,
    get_correlation_id,
    get_log_fields,
    log_run,
    set_correlation_id,
)
from reengage.utils.redis_client import HEARTBEAT_KEY_PREFIX, write_heartbeat
from reengage.utils.timeutils import as_utc, day_bounds, seconds_until_hour


# ---------------------------------------------------------------------------
# Locks
# ---------------------------------------------------------------------------


class TestRedisLock:
    @pytest.mark.asyncio
    async def test_acquire_and_release(self, mock_redis):
        async with redis_lock("reengage:lock:test", ttl=10):
            pass

        key, value = mock_redis.set.call_args.args
        assert key == "reengage:lock:test"
        assert mock_redis.set.call_args.kwargs == {"nx": True, "ex": 10}
        # Released with compare-and-delete on our own token
        assert mock_redis.eval.call_args.args[1:] == (1, "reengage:lock:test", value)

    @pytest.mark.asyncio
    async def test_timeout_raises(self, mock_redis):
        mock_redis.set = AsyncMock(return_value=False)

        with pytest.raises(LockTimeoutError):
            async with redis_lock("reengage:lock:test", wait=0.2):
                pass

        mock_redis.eval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_acquired_after_polling(self, mock_redis):
        mock_redis.set = AsyncMock(side_effect=[False, False, True])

        async with redis_lock("reengage:lock:test", wait=1):
            pass

        assert mock_redis.set.await_count == 3

    @pytest.mark.asyncio
    async def test_released_on_error(self, mock_redis):
        with pytest.raises(ValueError):
            async with redis_lock("reengage:lock:test"):
                raise ValueError("boom")

        mock_redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redis_down_proceeds(self, mock_redis):
        mock_redis.set = AsyncMock(side_effect=ConnectionError("redis down"))
        entered = False

        async with redis_lock("reengage:lock:test"):
            entered = True

        assert entered

    @pytest.mark.asyncio
    async def test_scheduler_lock_does_not_wait(self, mock_redis):
        mock_redis.set = AsyncMock(return_value=False)

        with pytest.raises(LockTimeoutError):
            async with scheduler_lock():
                pass

        mock_redis.set.assert_awaited_once()
        assert mock_redis.set.call_args.args[0] == SCHEDULER_LOCK_KEY

    @pytest.mark.asyncio
    async def test_campaign_lock_key(self, mock_redis):
        async with campaign_lock("abc"):
            pass

        assert mock_redis.set.call_args.args[0] == "reengage:lock:campaign:abc"


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


class TestStructuredJsonFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("reengage.test", logging.INFO, __file__, 1, "sent %d", (3,), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_line(self):
        set_correlation_id("cid-123")

        entry = json.loads(StructuredJsonFormatter().format(self._record()))

        assert entry["level"] == "INFO"
        assert entry["module"] == "reengage.test"
        assert entry["message"] == "sent 3"
        assert entry["correlation_id"] == "cid-123"

    def test_extra_fields(self):
        entry = json.loads(StructuredJsonFormatter().format(
            self._record(campaign_id="c1", user_id="u1", campaign_level=2, unrelated="x")
        ))

        assert entry["campaign_id"] == "c1"
        assert entry["user_id"] == "u1"
        assert entry["campaign_level"] == 2
        assert entry["level"] == "INFO"
        assert "unrelated" not in entry

    def test_correlation_id_roundtrip(self):
        cid = generate_correlation_id()
        set_correlation_id(cid)
        assert get_correlation_id() == cid
        assert len(cid) == 32

    def test_log_run_binds_fields_and_restores(self):
        set_correlation_id("request-cid")

        with log_run(campaign_id="c1", campaign_level=3):
            bind_log_fields(user_id="u1")
            entry = json.loads(StructuredJsonFormatter().format(self._record()))
            run_cid = get_correlation_id()

        assert entry["campaign_id"] == "c1"
        assert entry["campaign_level"] == 3
        assert entry["user_id"] == "u1"
        assert entry["correlation_id"] == run_cid != "request-cid"
        assert get_correlation_id() == "request-cid"
        assert get_log_fields() == {}

    def test_call_extra_overrides_bound_field(self):
        with log_run(user_id="u1"):
            entry = json.loads(StructuredJsonFormatter().format(self._record(user_id="u2")))

        assert entry["user_id"] == "u2"


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


class TestTimeUtils:
    def test_as_utc(self):
        assert as_utc(None) is None
        naive = datetime(2026, 10, 18, 9, 0)
        assert as_utc(naive) == datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
        shifted = datetime(2026, 10, 18, 11, 0, tzinfo=timezone(timedelta(hours=2)))
        assert as_utc(shifted).hour == 9

    def test_day_bounds(self):
        start, end = day_bounds(date(2026, 10, 18))
        assert start == datetime(2026, 10, 18, tzinfo=timezone.utc)
        assert end - start == timedelta(days=1)

    def test_seconds_until_hour_later_today(self):
        now = datetime(2026, 10, 18, 6, 30, tzinfo=timezone.utc)
        assert seconds_until_hour(8, now) == 90 * 60

    def test_seconds_until_hour_tomorrow(self):
        now = datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc)
        assert seconds_until_hour(8, now) == 24 * 3600


# ---------------------------------------------------------------------------
# Heartbeats
# ---------------------------------------------------------------------------


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_writes_key_with_ttl(self, mock_redis):
        await write_heartbeat("task_processor", 120)

        key = mock_redis.set.call_args.args[0]
        assert key == f"{HEARTBEAT_KEY_PREFIX}:task_processor"
        assert mock_redis.set.call_args.kwargs == {"ex": 120}

    @pytest.mark.asyncio
    async def test_never_raises(self):
        with patch(
            "reengage.utils.redis_client.get_redis",
            new_callable=AsyncMock, side_effect=ConnectionError("down"),
        ):
            await write_heartbeat("task_processor", 120)


# ---------------------------------------------------------------------------
# Database engine
# ---------------------------------------------------------------------------


class TestEngineOptions:
    def test_postgres_gets_pool_settings(self):
        options = engine_options("postgresql+asyncpg://u:p@db:5432/app", 20, 10)
        assert options == {"echo": False, "pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}

    def test_sqlite_has_no_pool_settings(self):
        assert engine_options("sqlite+aiosqlite:///:memory:", 20, 10, echo=True) == {"echo": True}

    @pytest.mark.asyncio
    async def test_ping_database(self, db):
        assert await ping_database(db) is True

    @pytest.mark.asyncio
    async def test_ping_database_failure(self):
        session = AsyncMock()
        session.execute = AsyncMock(side_effect=ConnectionError("db down"))
        assert await ping_database(session) is False
