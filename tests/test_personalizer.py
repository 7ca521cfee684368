"""
Tests for reengage/services/personalizer.py - placeholder substitution, URLs, validation.
"""
from unittest.mock import patch

from reengage.services.message_library import DEFAULT_URL, get_variant
from reengage.services.personalizer import (
    generate_url,
    get_best_course,
    personalize_message,
    replace_placeholders,
    validate_personalized_message,
)
from reengage.services.user_data import CompletedCourse, PlatformStats, UserData


def _user(**overrides) -> UserData:
    defaults = {"user_id": "user-1234-5678", "username": "alex", "total_steps": 12}
    defaults.update(overrides)
    return UserData(**defaults)


COURSES = [
    CompletedCourse(id="c-new", name="Leash Walking", rating=3),  # newest first
    CompletedCourse(id="c-mid", name="Recall", rating=5),
    CompletedCourse(id="c-old", name="Basics", rating=0),
]


class TestGetBestCourse:
    def test_highest_rated_when_four_or_more(self):
        assert get_best_course(_user(completed_courses=COURSES)).id == "c-mid"

    def test_most_recent_when_nothing_rated_high(self):
        courses = [
            CompletedCourse(id="c-new", name="Leash Walking", rating=3),
            CompletedCourse(id="c-old", name="Basics", rating=0),
        ]
        assert get_best_course(_user(completed_courses=courses)).id == "c-new"

    def test_none_without_courses(self):
        assert get_best_course(_user()) is None


class TestReplacePlaceholders:
    def test_all_known_tokens(self):
        user = _user(
            dog_name="Rex",
            completed_courses=COURSES,
            platform_stats=PlatformStats(weekly_completions=128, active_today_users=17),
        )
        text = "{username} {dogName} {completedCourses} {totalSteps} {bestCourseName} {weeklyStats} {activeTodayUsers}"
        assert replace_placeholders(text, user) == "alex Rex 3 12 Recall 128 17"

    def test_defaults(self):
        user = _user(username=None)
        assert replace_placeholders("{username} and {dogName}", user) == "friend and your dog"
        assert replace_placeholders("{bestCourseName}", user) == "your completed course"

    def test_unknown_token_left_in_place(self):
        assert replace_placeholders("Hello {nickname}", _user()) == "Hello {nickname}"

    def test_stats_tokens_stay_without_platform_stats(self):
        assert replace_placeholders("{weeklyStats} dogs", _user()) == "{weeklyStats} dogs"

    def test_repeated_token(self):
        assert replace_placeholders("{dogName}! {dogName}!", _user(dog_name="Rex")) == "Rex! Rex!"

    def test_substituted_values_are_not_rescanned(self):
        """A username that looks like a token is inserted literally."""
        user = _user(username="{dogName}", dog_name="Rex")
        assert replace_placeholders("Hi {username}", user) == "Hi {dogName}"


class TestGenerateUrl:
    def test_static_template_untouched(self):
        assert generate_url("/profile", _user()) == "/profile"

    def test_best_course_id_substituted(self):
        url = generate_url("/trainings/group/{bestCourseId}", _user(completed_courses=COURSES))
        assert url == "/trainings/group/c-mid"

    def test_falls_back_without_courses(self):
        assert generate_url("/trainings/group/{bestCourseId}", _user()) == DEFAULT_URL


class TestPersonalizeMessage:
    def test_renders_variant(self):
        user = _user(completed_courses=COURSES)
        message = personalize_message(get_variant("edu_repeat_1"), user)

        assert message["title"] == "🔄 Skills fade without practice"
        assert '"Recall"' in message["body"]
        assert message["url"] == "/trainings/group/c-mid"
        assert message["data"] == {
            "reengagement": True,
            "variant_id": "edu_repeat_1",
            "message_type": "educational",
            "level": 2,
            "user_id": "user-1234-5678",
        }

    def test_failure_falls_back_to_raw_text(self):
        variant = get_variant("emo_miss_1")
        with patch(
            "reengage.services.personalizer.replace_placeholders",
            side_effect=RuntimeError("boom"),
        ):
            message = personalize_message(variant, _user(dog_name="Rex"))

        assert message["title"] == variant.title
        assert message["body"] == variant.body
        assert message["url"] == DEFAULT_URL
        assert "user_id" not in message["data"]


class TestValidatePersonalizedMessage:
    def test_clean_message(self):
        message = personalize_message(get_variant("emo_miss_1"), _user(dog_name="Rex"))
        assert validate_personalized_message(message) is True

    def test_leftover_brace_flagged(self):
        message = personalize_message(get_variant("mot_social_1"), _user())
        assert "{weeklyStats}" in message["body"]
        assert validate_personalized_message(message) is False
