"""
Personalizer - renders a message variant for one user.

Placeholder substitution is a whitelist: only the tokens in PLACEHOLDERS are
replaced, anything else in braces is left as-is (and flagged by the
validator). Personalization is best-effort; errors fall back to the raw
variant text and the generic training URL.
"""
import logging
import re
from typing import Optional, TypedDict

from reengage.services.message_library import DEFAULT_URL, MessageVariant
from reengage.services.user_data import BEST_COURSE_MIN_RATING, CompletedCourse, UserData

logger = logging.getLogger(__name__)

DEFAULT_USERNAME = "friend"
DEFAULT_DOG_NAME = "your dog"
DEFAULT_COURSE_NAME = "your completed course"

PLACEHOLDERS = (
    "username",
    "dogName",
    "completedCourses",
    "totalSteps",
    "bestCourseName",
    "weeklyStats",
    "activeTodayUsers",
)

_TOKEN_RE = re.compile(r"\{(\w+)\}")


class PersonalizedMessage(TypedDict):
    title: str
    body: str
    url: str
    data: dict


def get_best_course(user_data: UserData) -> Optional[CompletedCourse]:
    """
    Highest-rated completed course when rated 4 or more, otherwise the most
    recently completed one. None without completed courses.
    """
    if not user_data.completed_courses:
        return None

    best = max(user_data.completed_courses, key=lambda c: c.rating)
    if best.rating >= BEST_COURSE_MIN_RATING:
        return best

    # completed_courses is ordered newest first
    return user_data.completed_courses[0]


def _placeholder_values(user_data: UserData) -> dict[str, str]:
    best_course = get_best_course(user_data)
    values = {
        "username": user_data.username or DEFAULT_USERNAME,
        "dogName": user_data.dog_name or DEFAULT_DOG_NAME,
        "completedCourses": str(len(user_data.completed_courses)),
        "totalSteps": str(user_data.total_steps),
        "bestCourseName": best_course.name if best_course else DEFAULT_COURSE_NAME,
    }

    # Without platform stats these tokens stay in place and the validator flags them
    if user_data.platform_stats is not None:
        values["weeklyStats"] = str(user_data.platform_stats.weekly_completions)
        values["activeTodayUsers"] = str(user_data.platform_stats.active_today_users)

    return values


def replace_placeholders(text: str, user_data: UserData) -> str:
    values = _placeholder_values(user_data)

    def _sub(match: re.Match) -> str:
        token = match.group(1)
        if token in PLACEHOLDERS and token in values:
            return values[token]
        return match.group(0)

    return _TOKEN_RE.sub(_sub, text)


def generate_url(url_template: str, user_data: UserData) -> str:
    """Resolve {bestCourseId}; without a best course, fall back to the training landing page."""
    if "{bestCourseId}" not in url_template:
        return url_template

    best_course = get_best_course(user_data)
    if not best_course:
        return DEFAULT_URL

    return url_template.replace("{bestCourseId}", str(best_course.id))


def _message_data(variant: MessageVariant) -> dict:
    return {
        "reengagement": True,
        "variant_id": variant.id,
        "message_type": variant.type,
        "level": variant.level,
    }


def personalize_message(variant: MessageVariant, user_data: UserData) -> PersonalizedMessage:
    try:
        title = replace_placeholders(variant.title, user_data)
        body = replace_placeholders(variant.body, user_data)
        url = generate_url(variant.url_template, user_data)

        data = _message_data(variant)
        data["user_id"] = user_data.user_id

        return {"title": title, "body": body, "url": url, "data": data}

    except Exception as e:
        logger.error(
            "Personalization failed for variant %s user %s: %s",
            variant.id, str(user_data.user_id)[:8], str(e),
        )
        return {
            "title": variant.title,
            "body": variant.body,
            "url": DEFAULT_URL,
            "data": _message_data(variant),
        }


def validate_personalized_message(message: PersonalizedMessage) -> bool:
    """False (with a warning) when a brace survived substitution. Never blocks the send."""
    if "{" in message["title"] or "{" in message["body"]:
        logger.warning(
            "Unreplaced placeholders in personalized message: title=%r body=%r",
            message["title"], message["body"],
        )
        return False
    return True
