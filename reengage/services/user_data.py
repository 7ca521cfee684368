"""
User data collector - facts used for variant eligibility and personalization.

Gathers username, first pet name, completed courses with the user's own
ratings, completed step count, the course in progress, and platform-wide
social-proof stats (cached for an hour, shared across jobs).
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.models.training import (
    Course,
    CourseReview,
    Pet,
    User,
    UserCourse,
    UserStep,
    UserTraining,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
)
from reengage.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

PLATFORM_STATS_TTL_SECONDS = 60 * 60
BEST_COURSE_MIN_RATING = 4


@dataclass(frozen=True)
class CompletedCourse:
    id: str
    name: str
    rating: int = 0  # 0 = not rated


@dataclass(frozen=True)
class PlatformStats:
    weekly_completions: int
    active_today_users: int


@dataclass
class UserData:
    user_id: str
    username: Optional[str] = None
    dog_name: Optional[str] = None
    completed_courses: list[CompletedCourse] = field(default_factory=list)  # newest first
    total_steps: int = 0
    last_course: Optional[str] = None
    platform_stats: Optional[PlatformStats] = None


class PlatformStatsCache:
    """
    Process-local cache of platform stats.

    Populated on miss and reused until `ttl` seconds have passed on `clock`.
    A failed load returns None and leaves the cache untouched so the next
    caller retries.
    """

    def __init__(
        self,
        ttl: float = PLATFORM_STATS_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._lock = asyncio.Lock()
        self._value: Optional[PlatformStats] = None
        self._loaded_at: Optional[float] = None

    def _fresh(self) -> bool:
        return (
            self._value is not None
            and self._loaded_at is not None
            and self._clock() - self._loaded_at < self.ttl
        )

    async def get(self, db: AsyncSession) -> Optional[PlatformStats]:
        if self._fresh():
            return self._value

        async with self._lock:
            # Another waiter may have refreshed while we queued
            if self._fresh():
                return self._value

            try:
                stats = await load_platform_stats(db)
            except Exception as e:
                logger.error("Failed to load platform stats: %s", str(e))
                return None

            self._value = stats
            self._loaded_at = self._clock()
            return stats

    def invalidate(self) -> None:
        self._value = None
        self._loaded_at = None


async def load_platform_stats(db: AsyncSession) -> PlatformStats:
    """Completed steps in the last 7 days, and distinct trainings with a completed step today (UTC)."""
    now = utcnow()
    week_start = now - timedelta(days=7)
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

    weekly = await db.execute(
        select(func.count(UserStep.id)).where(
            and_(
                UserStep.status == STATUS_COMPLETED,
                UserStep.updated_at >= week_start,
            )
        )
    )
    active_today = await db.execute(
        select(func.count(func.distinct(UserStep.user_training_id))).where(
            and_(
                UserStep.status == STATUS_COMPLETED,
                UserStep.updated_at >= today_start,
            )
        )
    )

    return PlatformStats(
        weekly_completions=weekly.scalar() or 0,
        active_today_users=active_today.scalar() or 0,
    )


async def collect_user_data(
    db: AsyncSession,
    user_id: str,
    stats_cache: Optional[PlatformStatsCache] = None,
) -> Optional[UserData]:
    """
    Collect everything personalization needs for one user.
    Returns None when the user does not exist.
    """
    try:
        user = await db.get(User, user_id)
        if not user:
            logger.warning("User %s not found for re-engagement", str(user_id)[:8])
            return None

        pet_result = await db.execute(
            select(Pet.name)
            .where(Pet.owner_id == user_id)
            .order_by(Pet.created_at)
            .limit(1)
        )
        dog_name = pet_result.scalar_one_or_none()

        ratings_result = await db.execute(
            select(CourseReview.course_id, CourseReview.rating).where(
                and_(
                    CourseReview.user_id == user_id,
                    CourseReview.rating.is_not(None),
                )
            )
        )
        ratings = {course_id: rating for course_id, rating in ratings_result.all() if rating}

        courses_result = await db.execute(
            select(Course.id, Course.name)
            .join(UserCourse, UserCourse.course_id == Course.id)
            .where(
                and_(
                    UserCourse.user_id == user_id,
                    UserCourse.status == STATUS_COMPLETED,
                    UserCourse.completed_at.is_not(None),
                )
            )
            .order_by(UserCourse.completed_at.desc())
        )
        completed_courses = [
            CompletedCourse(id=course_id, name=name, rating=ratings.get(course_id, 0))
            for course_id, name in courses_result.all()
        ]

        steps_result = await db.execute(
            select(func.count(UserStep.id))
            .join(UserTraining, UserTraining.id == UserStep.user_training_id)
            .where(
                and_(
                    UserTraining.user_id == user_id,
                    UserStep.status == STATUS_COMPLETED,
                )
            )
        )
        total_steps = steps_result.scalar() or 0

        last_course_result = await db.execute(
            select(Course.name)
            .join(UserCourse, UserCourse.course_id == Course.id)
            .where(
                and_(
                    UserCourse.user_id == user_id,
                    UserCourse.status == STATUS_IN_PROGRESS,
                )
            )
            .order_by(UserCourse.updated_at.desc())
            .limit(1)
        )
        last_course = last_course_result.scalar_one_or_none()
    except Exception as e:
        logger.error("Failed to collect data for user %s: %s", str(user_id)[:8], str(e))
        raise

    platform_stats = await stats_cache.get(db) if stats_cache is not None else None

    return UserData(
        user_id=user.id,
        username=user.username,
        dog_name=dog_name,
        completed_courses=completed_courses,
        total_steps=total_steps,
        last_course=last_course,
        platform_stats=platform_stats,
    )


async def get_best_rated_course(db: AsyncSession, user_id: str) -> Optional[dict]:
    """The user's highest-rated course review (4 stars or more), or None."""
    result = await db.execute(
        select(Course.id, Course.name, CourseReview.rating)
        .join(Course, Course.id == CourseReview.course_id)
        .where(
            and_(
                CourseReview.user_id == user_id,
                CourseReview.rating >= BEST_COURSE_MIN_RATING,
            )
        )
        .order_by(CourseReview.rating.desc())
        .limit(1)
    )
    row = result.first()
    if not row:
        return None

    return {"id": row.id, "name": row.name, "rating": row.rating}
