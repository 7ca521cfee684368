"""
Database models - import all models here so Alembic can discover them.
"""
from reengage.models.campaign import ReengagementCampaign
from reengage.models.notification import ReengagementNotification
from reengage.models.settings import ReengagementSettings
from reengage.models.daily_metrics import ReengagementDailyMetrics
from reengage.models.task_queue import TaskQueue
from reengage.models.push_subscription import PushSubscription
from reengage.models.training import (
    User,
    Pet,
    Course,
    UserCourse,
    CourseReview,
    UserTraining,
    UserStep,
)

__all__ = [
    "ReengagementCampaign",
    "ReengagementNotification",
    "ReengagementSettings",
    "ReengagementDailyMetrics",
    "TaskQueue",
    "PushSubscription",
    "User",
    "Pet",
    "Course",
    "UserCourse",
    "CourseReview",
    "UserTraining",
    "UserStep",
]
