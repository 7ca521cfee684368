"""
Tests for reengage/services/scheduler.py and reengage/workers/reengagement_scheduler.py.
"""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

from sqlalchemy import select

from reengage.integrations.push_gateway import LoggingPushTransport
from reengage.models.campaign import ReengagementCampaign
from reengage.models.notification import ReengagementNotification
from reengage.models.task_queue import TaskQueue
from reengage.services.campaign_manager import get_active_campaign
from reengage.services.scheduler import (
    REENGAGEMENT_TASK_TYPE,
    add_notification_job,
    job_dedup_key,
    manual_trigger_scheduler,
    schedule_reengagement_campaigns,
)
from reengage.utils.locks import LockTimeoutError
from reengage.utils.timeutils import as_utc
from reengage.workers.reengagement_scheduler import run_scheduler_once
from reengage.workers.task_processor import process_cycle

NOW = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


async def _tasks(db):
    result = await db.execute(select(TaskQueue))
    return result.scalars().all()


class TestSchedulePass:
    @pytest.mark.asyncio
    async def test_new_inactive_user_gets_campaign_and_job(self, session_factory, mock_redis, training_data):
        db = session_factory
        last = NOW - timedelta(days=6)
        await training_data.add_user("u1")
        await training_data.add_steps("u1", 3, last)
        await db.commit()

        result = await schedule_reengagement_campaigns(now=NOW)

        assert result == {"new_campaigns": 1, "scheduled_notifications": 1, "closed_campaigns": 0}

        campaign = await get_active_campaign(db, "u1")
        assert campaign.current_level == 1
        assert as_utc(campaign.last_activity_date) == last
        assert as_utc(campaign.next_notification_date) == last + timedelta(days=5)

        tasks = await _tasks(db)
        assert len(tasks) == 1
        assert tasks[0].task_type == REENGAGEMENT_TASK_TYPE
        assert tasks[0].payload == {"campaign_id": str(campaign.id), "user_id": "u1", "level": 1}
        assert tasks[0].dedup_key == job_dedup_key(campaign.id)
        assert tasks[0].max_retries == 3

    @pytest.mark.asyncio
    async def test_due_campaign_gets_job_at_current_level(self, session_factory, mock_redis, training_data):
        db = session_factory
        last = NOW - timedelta(days=13)
        await training_data.add_user("u1")
        await training_data.add_steps("u1", 3, last)
        campaign = await training_data.add_campaign(
            "u1", last, level=2,
            next_notification_date=last + timedelta(days=12),
            campaign_start_date=last + timedelta(days=5),
        )
        await db.commit()

        result = await schedule_reengagement_campaigns(now=NOW)

        assert result == {"new_campaigns": 0, "scheduled_notifications": 1, "closed_campaigns": 0}
        tasks = await _tasks(db)
        assert tasks[0].payload["level"] == 2
        assert tasks[0].payload["campaign_id"] == str(campaign.id)

    @pytest.mark.asyncio
    async def test_not_yet_due_campaign_left_alone(self, session_factory, mock_redis, training_data):
        db = session_factory
        last = NOW - timedelta(days=8)
        await training_data.add_user("u1")
        await training_data.add_steps("u1", 3, last)
        await training_data.add_campaign(
            "u1", last, level=2,
            next_notification_date=last + timedelta(days=12),
            campaign_start_date=last + timedelta(days=5),
        )
        await db.commit()

        result = await schedule_reengagement_campaigns(now=NOW)

        assert result["scheduled_notifications"] == 0
        assert await _tasks(db) == []

    @pytest.mark.asyncio
    async def test_returned_user_campaign_closed_not_rescheduled(self, session_factory, mock_redis, training_data):
        """A user who trained since the campaign started is closed and not picked up again in the same pass."""
        db = session_factory
        last = NOW - timedelta(days=13)
        start = last + timedelta(days=5)
        await training_data.add_user("u1")
        await training_data.add_steps("u1", 3, last)
        await training_data.add_steps("u1", 1, NOW - timedelta(days=6))  # came back, then went quiet again
        await training_data.add_campaign(
            "u1", last, level=2, next_notification_date=last + timedelta(days=12), campaign_start_date=start,
        )
        await db.commit()

        result = await schedule_reengagement_campaigns(now=NOW)

        assert result == {"new_campaigns": 0, "scheduled_notifications": 0, "closed_campaigns": 1}
        assert await get_active_campaign(db, "u1") is None
        assert await _tasks(db) == []

    @pytest.mark.asyncio
    async def test_opted_out_user_ignored(self, session_factory, mock_redis, training_data):
        db = session_factory
        await training_data.add_user("u1")
        await training_data.add_steps("u1", 3, NOW - timedelta(days=6))
        await training_data.add_settings("u1", enabled=False)
        await db.commit()

        result = await schedule_reengagement_campaigns(now=NOW)

        assert result == {"new_campaigns": 0, "scheduled_notifications": 0, "closed_campaigns": 0}

    @pytest.mark.asyncio
    async def test_rerun_does_not_duplicate(self, session_factory, mock_redis, training_data):
        """A second pass the same day finds the active campaign and the live job."""
        db = session_factory
        await training_data.add_user("u1")
        await training_data.add_steps("u1", 3, NOW - timedelta(days=6))
        await db.commit()

        await schedule_reengagement_campaigns(now=NOW)
        second = await schedule_reengagement_campaigns(now=NOW)

        assert second["new_campaigns"] == 0
        result = await db.execute(select(ReengagementCampaign))
        assert len(result.scalars().all()) == 1
        assert len(await _tasks(db)) == 1

    @pytest.mark.asyncio
    async def test_per_user_failure_does_not_stop_pass(self, session_factory, mock_redis, training_data):
        db = session_factory
        await training_data.add_user("u1")
        await training_data.add_user("u2")
        await training_data.add_steps("u1", 3, NOW - timedelta(days=6))
        await training_data.add_steps("u2", 3, NOW - timedelta(days=7))
        await db.commit()

        real_add = add_notification_job
        calls = []

        async def flaky_add(campaign_id, user_id, level):
            calls.append(user_id)
            if len(calls) == 1:
                raise RuntimeError("queue unavailable")
            return await real_add(campaign_id, user_id, level)

        with patch("reengage.services.scheduler.add_notification_job", side_effect=flaky_add):
            result = await schedule_reengagement_campaigns(now=NOW)

        assert len(calls) == 2
        assert result["new_campaigns"] == 2
        assert result["scheduled_notifications"] == 1

    @pytest.mark.asyncio
    async def test_exhausted_campaign_restarts_at_level_one(self, session_factory, mock_redis, training_data):
        """A user still inactive after all four levels gets a new campaign, already due."""
        db = session_factory
        last = NOW - timedelta(days=40)
        await training_data.add_user("u1")
        await training_data.add_steps("u1", 3, last)
        await training_data.add_campaign("u1", last, level=4, is_active=False)
        await db.commit()

        result = await schedule_reengagement_campaigns(now=NOW)

        assert result == {"new_campaigns": 1, "scheduled_notifications": 1, "closed_campaigns": 0}
        campaign = await get_active_campaign(db, "u1")
        assert campaign.current_level == 1
        assert as_utc(campaign.next_notification_date) == last + timedelta(days=5)
        assert as_utc(campaign.next_notification_date) < NOW

    @pytest.mark.asyncio
    async def test_lock_held_raises(self, session_factory, mock_redis):
        mock_redis.set = AsyncMock(return_value=False)

        with pytest.raises(LockTimeoutError):
            await schedule_reengagement_campaigns(now=NOW)


class TestManualTrigger:
    @pytest.mark.asyncio
    async def test_success(self):
        summary = {"new_campaigns": 2, "scheduled_notifications": 3, "closed_campaigns": 1}
        with patch(
            "reengage.services.scheduler.schedule_reengagement_campaigns",
            new_callable=AsyncMock, return_value=summary,
        ):
            assert await manual_trigger_scheduler() == {"success": True, "result": summary}

    @pytest.mark.asyncio
    async def test_failure_reported(self):
        with patch(
            "reengage.services.scheduler.schedule_reengagement_campaigns",
            new_callable=AsyncMock, side_effect=RuntimeError("db down"),
        ):
            result = await manual_trigger_scheduler()

        assert result == {"success": False, "error": "db down"}


class TestAddNotificationJob:
    @pytest.mark.asyncio
    async def test_propagates_enqueue_failure(self):
        with patch(
            "reengage.services.scheduler.enqueue_task",
            new_callable=AsyncMock, side_effect=RuntimeError("db down"),
        ):
            with pytest.raises(RuntimeError):
                await add_notification_job("c1", "u1", 1)


class TestSchedulerWorker:
    @pytest.mark.asyncio
    async def test_lock_contention_skips_pass(self):
        with patch(
            "reengage.workers.reengagement_scheduler.schedule_reengagement_campaigns",
            new_callable=AsyncMock, side_effect=LockTimeoutError("busy"),
        ):
            assert await run_scheduler_once() is None

    @pytest.mark.asyncio
    async def test_error_is_contained(self):
        with patch(
            "reengage.workers.reengagement_scheduler.schedule_reengagement_campaigns",
            new_callable=AsyncMock, side_effect=RuntimeError("db down"),
        ):
            assert await run_scheduler_once() is None


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_scheduled_job_is_delivered(self, session_factory, mock_redis, training_data):
        db = session_factory
        last = NOW - timedelta(days=6)
        await training_data.add_user("u1", dog_name="Rex")
        await training_data.add_steps("u1", 3, last)
        await training_data.add_subscription("u1", "https://push.example.com/u1")
        await db.commit()

        await schedule_reengagement_campaigns(now=NOW)
        with patch(
            "reengage.workers.reengagement_dispatch.get_push_transport",
            return_value=LoggingPushTransport(),
        ):
            assert await process_cycle(concurrency=1) == 1

        campaign = await get_active_campaign(db, "u1")
        assert campaign.current_level == 2
        assert campaign.total_notifications_sent == 1

        result = await db.execute(select(ReengagementNotification))
        notification = result.scalars().one()
        assert notification.sent is True
        assert notification.level == 1
        assert notification.failed_count == 1
        assert await _tasks(db) == []
