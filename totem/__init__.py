# Digital Totem
# Habit tracking for a small tribe, mirrored to a shared spreadsheet

from .config import (
    HABIT_COUNT,
    MAX_DAY_END_OFFSET,
    PENALTY_PER_HABIT,
    MOOD_LABELS
)

from .helpers import (
    get_today_key,
    member_today_key,
    calculate_penalty,
    calculate_streak,
    get_mood,
    get_habit_texts,
    validate_date_key
)

from .store import (
    TribeStore,
    NoLocalMember,
    UnknownMember
)

from .stats import (
    member_summary,
    tribe_mood,
    fund_goal,
    monthly_stats
)
