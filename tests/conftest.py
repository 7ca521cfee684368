"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks all external services.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import uuid
from contextlib import asynccontextmanager, ExitStack
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

from reengage.database import Base
from reengage.models import (  # noqa: F401 - registers every table on Base.metadata
    Course,
    CourseReview,
    Pet,
    PushSubscription,
    ReengagementCampaign,
    ReengagementNotification,
    ReengagementSettings,
    User,
    UserCourse,
    UserStep,
    UserTraining,
)
from reengage.models.training import STATUS_COMPLETED, STATUS_IN_PROGRESS

# Fixed clock for deterministic scheduling tests
NOW = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)

# Modules that open their own sessions via async_session_factory()
SESSION_FACTORY_TARGETS = (
    "reengage.services.scheduler.async_session_factory",
    "reengage.services.task_dispatch.async_session_factory",
    "reengage.workers.task_processor.async_session_factory",
    "reengage.workers.reengagement_dispatch.async_session_factory",
    "reengage.workers.metrics_worker.async_session_factory",
)


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
async def file_sessions(tmp_path):
    """
    Independent sessions over one SQLite file, so a commit in one is visible
    to the others. Job handler sessions come from the same factory.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reengage.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    with patch("reengage.workers.reengagement_dispatch.async_session_factory", factory):
        yield factory
    await engine.dispose()


@asynccontextmanager
async def _shared_session(session):
    yield session


@pytest.fixture
def session_factory(db):
    """Route every worker/service session to the test session."""
    with ExitStack() as stack:
        for target in SESSION_FACTORY_TARGETS:
            stack.enter_context(patch(target, side_effect=lambda: _shared_session(db)))
        yield db


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("reengage.utils.redis_client.get_redis", new_callable=AsyncMock) as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.eval = AsyncMock(return_value=1)
        redis_mock.lpush = AsyncMock(return_value=1)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


class TrainingData:
    """Seeds the platform tables the engine reads."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_user(self, user_id: str, username: str = "alex", dog_name: str | None = None) -> str:
        self.db.add(User(id=user_id, username=username))
        if dog_name:
            self.db.add(Pet(
                id=f"pet-{user_id}", owner_id=user_id, name=dog_name,
                created_at=NOW - timedelta(days=365),
            ))
        self.db.add(UserTraining(id=f"ut-{user_id}", user_id=user_id))
        await self.db.flush()
        return user_id

    async def add_steps(self, user_id: str, count: int, at: datetime, status: str = STATUS_COMPLETED) -> None:
        for _ in range(count):
            self.db.add(UserStep(
                id=uuid.uuid4().hex,
                user_training_id=f"ut-{user_id}",
                status=status,
                updated_at=at,
            ))
        await self.db.flush()

    async def add_completed_course(
        self,
        user_id: str,
        course_id: str,
        name: str,
        completed_at: datetime,
        rating: int | None = None,
    ) -> None:
        if await self.db.get(Course, course_id) is None:
            self.db.add(Course(id=course_id, name=name))
        self.db.add(UserCourse(
            id=uuid.uuid4().hex, user_id=user_id, course_id=course_id,
            status=STATUS_COMPLETED, completed_at=completed_at, updated_at=completed_at,
        ))
        if rating is not None:
            self.db.add(CourseReview(
                id=uuid.uuid4().hex, user_id=user_id, course_id=course_id, rating=rating,
            ))
        await self.db.flush()

    async def add_course_in_progress(self, user_id: str, course_id: str, name: str, updated_at: datetime) -> None:
        if await self.db.get(Course, course_id) is None:
            self.db.add(Course(id=course_id, name=name))
        self.db.add(UserCourse(
            id=uuid.uuid4().hex, user_id=user_id, course_id=course_id,
            status=STATUS_IN_PROGRESS, updated_at=updated_at,
        ))
        await self.db.flush()

    async def add_subscription(self, user_id: str, endpoint: str, keys: dict | None = None) -> None:
        self.db.add(PushSubscription(
            user_id=user_id,
            endpoint=endpoint,
            keys=keys if keys is not None else {"p256dh": "p256dh-key", "auth": "auth-secret"},
        ))
        await self.db.flush()

    async def add_settings(self, user_id: str, enabled: bool = True, unsubscribed_at: datetime | None = None) -> None:
        self.db.add(ReengagementSettings(user_id=user_id, enabled=enabled, unsubscribed_at=unsubscribed_at))
        await self.db.flush()

    async def add_campaign(
        self,
        user_id: str,
        last_activity_date: datetime,
        level: int = 1,
        next_notification_date: datetime | None = None,
        campaign_start_date: datetime | None = None,
        is_active: bool = True,
        returned: bool = False,
        unsubscribed: bool = False,
    ) -> ReengagementCampaign:
        campaign = ReengagementCampaign(
            user_id=user_id,
            last_activity_date=last_activity_date,
            campaign_start_date=campaign_start_date or NOW - timedelta(days=1),
            current_level=level,
            next_notification_date=next_notification_date,
            is_active=is_active,
            returned=returned,
            unsubscribed=unsubscribed,
        )
        self.db.add(campaign)
        await self.db.flush()
        return campaign

    async def add_notification(
        self,
        campaign_id: uuid.UUID,
        level: int,
        variant_id: str,
        message_type: str = "emotional",
        sent: bool = True,
        sent_at: datetime | None = None,
        clicked: bool = False,
    ) -> ReengagementNotification:
        notification = ReengagementNotification(
            campaign_id=campaign_id,
            level=level,
            message_type=message_type,
            variant_id=variant_id,
            title="Title",
            body="Body",
            url="/trainings/group",
            sent=sent,
            sent_at=sent_at if sent_at is not None else (NOW if sent else None),
            clicked=clicked,
        )
        self.db.add(notification)
        await self.db.flush()
        return notification


@pytest.fixture
def training_data(db):
    return TrainingData(db)
