"""
Message library - static catalog of re-engagement notification variants.

Each variant belongs to one campaign level (1-4) and one message type:
  Level 1 (day 5):  emotional    - "we miss you"
  Level 2 (day 12): educational  - skills fade without practice
  Level 3 (day 20): motivational - social proof, achievements
  Level 4 (day 30): mixed        - final reminder

Selection never repeats a variant to the same campaign while an unseen
eligible variant remains; once all are used it falls back to repetition.
"""
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional

if TYPE_CHECKING:
    from reengage.services.user_data import UserData

logger = logging.getLogger(__name__)

MESSAGE_TYPES = ("emotional", "educational", "motivational", "mixed")
DEFAULT_URL = "/trainings/group"


@dataclass(frozen=True)
class VariantConditions:
    requires_dog_name: bool = False
    requires_completed_courses: bool = False
    min_steps: Optional[int] = None
    max_steps: Optional[int] = None


@dataclass(frozen=True)
class MessageVariant:
    id: str
    type: str
    level: int
    title: str
    body: str
    url_template: str = DEFAULT_URL
    conditions: Optional[VariantConditions] = None
    emoji: Optional[str] = None


MESSAGE_LIBRARY: tuple[MessageVariant, ...] = (
    # === Level 1: emotional ===
    MessageVariant(
        id="emo_miss_1",
        type="emotional",
        level=1,
        title="🐕 We miss you!",
        body="How are you and {dogName} doing? Come back to training!",
        conditions=VariantConditions(requires_dog_name=True),
        emoji="🐕",
    ),
    MessageVariant(
        id="emo_miss_2",
        type="emotional",
        level=1,
        title="Long time no see!",
        body="Your dog is ready for new lessons. Shall we keep learning?",
        emoji="👋",
    ),
    MessageVariant(
        id="emo_miss_3",
        type="emotional",
        level=1,
        title="Hi there!",
        body="Come back, your training plan is waiting for you!",
    ),
    MessageVariant(
        id="emo_welcome_back",
        type="emotional",
        level=1,
        title="🏠 Welcome back!",
        body="We'd love to see you again. Ready to pick up where you left off?",
        emoji="🏠",
    ),

    # === Level 2: educational ===
    # With completed courses
    MessageVariant(
        id="edu_repeat_1",
        type="educational",
        level=2,
        title="🔄 Skills fade without practice",
        body='Dogs forget commands in 2-3 weeks. Refresh what you learned in "{bestCourseName}"?',
        url_template="/trainings/group/{bestCourseId}",
        conditions=VariantConditions(requires_completed_courses=True),
        emoji="🔄",
    ),
    MessageVariant(
        id="edu_repeat_2",
        type="educational",
        level=2,
        title="Consistency is the key to success",
        body="Repeat exercises from your finished courses so your dog keeps the commands",
        conditions=VariantConditions(requires_completed_courses=True),
        emoji="💪",
    ),
    MessageVariant(
        id="edu_repeat_3",
        type="educational",
        level=2,
        title="📚 Time for a refresher",
        body="Regular sessions keep skills sharp. Revisit your favourite course?",
        conditions=VariantConditions(requires_completed_courses=True),
        emoji="📚",
    ),
    # Beginners
    MessageVariant(
        id="edu_regular_1",
        type="educational",
        level=2,
        title="⏰ 5 minutes a day",
        body="Short 5-minute sessions work wonders! Give it a try today",
        emoji="⏰",
    ),
    MessageVariant(
        id="edu_regular_2",
        type="educational",
        level=2,
        title="Regular training matters",
        body="Dogs learn best with regular practice. Shall we continue?",
    ),
    MessageVariant(
        id="edu_benefit_1",
        type="educational",
        level=2,
        title="🎓 Why training pays off",
        body="Regular sessions improve your dog's behaviour and strengthen your bond",
        emoji="🎓",
    ),

    # === Level 3: motivational ===
    MessageVariant(
        id="mot_social_1",
        type="motivational",
        level=3,
        title="🏆 Join the active ones!",
        body="This week {weeklyStats} dogs learned new commands. Yours is next!",
        emoji="🏆",
    ),
    MessageVariant(
        id="mot_social_2",
        type="motivational",
        level=3,
        title="📈 85% of owners",
        body="who train regularly see results faster. Join them!",
        emoji="📈",
    ),
    MessageVariant(
        id="mot_community",
        type="motivational",
        level=3,
        title="👥 The community is growing",
        body="{activeTodayUsers} dog trainers are already active today!",
        emoji="👥",
    ),
    # With achievements
    MessageVariant(
        id="mot_achievement_1",
        type="motivational",
        level=3,
        title="🌟 Your achievements",
        body="You've completed {completedCourses} courses! That's more than 70% of users",
        url_template="/profile",
        conditions=VariantConditions(requires_completed_courses=True, min_steps=5),
        emoji="🌟",
    ),
    MessageVariant(
        id="mot_achievement_2",
        type="motivational",
        level=3,
        title="💎 Great progress!",
        body="{totalSteps} completed steps is an impressive result! Keep going",
        url_template="/profile",
        conditions=VariantConditions(min_steps=10),
        emoji="💎",
    ),
    MessageVariant(
        id="mot_new_content",
        type="motivational",
        level=3,
        title="✨ New courses",
        body="New courses just landed! See which one fits you",
    ),

    # === Level 4: mixed ===
    MessageVariant(
        id="mix_final_1",
        type="mixed",
        level=4,
        title="💪 Time to come back!",
        body="You've done {totalSteps} steps, a great result! Regular training = a happy dog 🐕",
        url_template="/profile",
        conditions=VariantConditions(min_steps=3),
        emoji="💪",
    ),
    MessageVariant(
        id="mix_final_2",
        type="mixed",
        level=4,
        title="🎯 Your progress is saved",
        body='Remember your success in "{bestCourseName}"? Practice strengthens your bond. Come back!',
        url_template="/trainings/group/{bestCourseId}",
        conditions=VariantConditions(requires_completed_courses=True),
        emoji="🎯",
    ),
    MessageVariant(
        id="mix_final_3",
        type="mixed",
        level=4,
        title="🌈 New week, new opportunities!",
        body="Training keeps your dog obedient and happy. Start today?",
        emoji="🌈",
    ),
    MessageVariant(
        id="mix_benefit_progress",
        type="mixed",
        level=4,
        title="❤️ Your dog is waiting",
        body="Regular practice matters for your dog's growth and happiness. Your progress is saved, carry on!",
        emoji="❤️",
    ),
    MessageVariant(
        id="mix_all_complete",
        type="mixed",
        level=4,
        title="🏅 You finished every course!",
        body="Repetition locks skills in for good. Or stay tuned, new content is coming soon!",
        url_template="/profile",
        conditions=VariantConditions(requires_completed_courses=True, min_steps=30),
        emoji="🏅",
    ),
    MessageVariant(
        id="mix_community_benefit",
        type="mixed",
        level=4,
        title="🎊 Last reminder",
        body="A month without training, time to come back! {activeTodayUsers} users are active today",
        emoji="🎊",
    ),
)

# Module-level RNG, replaceable per call for deterministic selection
_rng = random.SystemRandom()


def get_variants_by_level(level: int) -> list[MessageVariant]:
    return [v for v in MESSAGE_LIBRARY if v.level == level]


def get_variants_by_type(message_type: str) -> list[MessageVariant]:
    return [v for v in MESSAGE_LIBRARY if v.type == message_type]


def get_variant(variant_id: str) -> Optional[MessageVariant]:
    for variant in MESSAGE_LIBRARY:
        if variant.id == variant_id:
            return variant
    return None


def check_conditions(variant: MessageVariant, user_data: "UserData") -> bool:
    """
    True when the user satisfies every condition the variant declares.
    A variant without conditions is eligible for everyone.
    """
    conditions = variant.conditions
    if conditions is None:
        return True

    if conditions.requires_dog_name and not user_data.dog_name:
        return False

    if conditions.requires_completed_courses and not user_data.completed_courses:
        return False

    if conditions.min_steps is not None and user_data.total_steps < conditions.min_steps:
        return False

    if conditions.max_steps is not None and user_data.total_steps > conditions.max_steps:
        return False

    return True


def get_available_variants(
    level: int,
    user_data: "UserData",
    exclude_ids: Optional[Iterable[str]] = None,
) -> list[MessageVariant]:
    """Variants at this level the user is eligible for, minus already-sent ids."""
    excluded = set(exclude_ids or ())
    return [
        v for v in get_variants_by_level(level)
        if v.id not in excluded and check_conditions(v, user_data)
    ]


def select_random_variant(
    variants: list[MessageVariant],
    rng: Optional[random.Random] = None,
) -> Optional[MessageVariant]:
    if not variants:
        return None
    return (rng or _rng).choice(variants)


def select_message_variant(
    level: int,
    user_data: "UserData",
    sent_variant_ids: Optional[Iterable[str]] = None,
    rng: Optional[random.Random] = None,
) -> Optional[MessageVariant]:
    """
    Pick a variant uniformly at random among unseen eligible variants.

    When every eligible variant has already been sent, picks again without
    exclusion (repeating beats silence). Returns None only when nothing at
    this level is eligible for the user.
    """
    sent = list(sent_variant_ids or ())
    available = get_available_variants(level, user_data, sent)

    if not available:
        available = get_available_variants(level, user_data)
        if available:
            logger.info(
                "All level %d variants already sent to user %s, repeating",
                level, str(user_data.user_id)[:8],
            )

    return select_random_variant(available, rng)
