# Digital Totem Helpers
# Pure functions for day keys, penalties, streaks, moods and habit text

import logging
import random
import re
import string
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import (
    HABIT_COUNT,
    MAX_DAY_END_OFFSET,
    DEFAULT_TIMEZONE,
    STREAK_LOOKBACK_DAYS,
    PENALTY_PER_HABIT,
    MOOD_LABELS
)

logger = logging.getLogger(__name__)

ID_ALPHABET = string.digits + string.ascii_lowercase


def utc_now():
    return datetime.now(timezone.utc)


def get_today_key(now=None, offset=0, tz=None):
    """Resolve the effective day as 'YYYY-MM-DD'.

    Args:
        now: The current instant (naive values are read as UTC)
        offset: Hours after midnight at which the day rolls over (0-8)
        tz: Optional IANA timezone name

    Returns:
        The calendar date of (now - offset hours) in tz, or in UTC when tz
        is missing or cannot be resolved.
    """
    if now is None:
        now = utc_now()
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    shifted = now - timedelta(hours=offset or 0)

    if tz:
        try:
            return shifted.astimezone(ZoneInfo(tz)).date().isoformat()
        except (ZoneInfoNotFoundError, ValueError, OSError):
            logger.warning(f"Invalid timezone '{tz}', falling back to UTC")

    return shifted.astimezone(timezone.utc).date().isoformat()


def member_today_key(member, now=None):
    """Effective today for a member, using their day-end offset and timezone"""
    settings = member.get('settings') or {}
    return get_today_key(now, settings.get('dayEndOffset', 0), settings.get('timezone'))


def is_valid_timezone(name):
    if not name or not isinstance(name, str):
        return False
    try:
        ZoneInfo(name)
        return True
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False


def detect_host_timezone():
    """Best guess at the host's IANA timezone.

    Uses TOTEM_DEFAULT_TIMEZONE when set, otherwise the local zone name if
    zoneinfo knows it. Returns None when nothing resolvable is found.
    """
    if is_valid_timezone(DEFAULT_TIMEZONE):
        return DEFAULT_TIMEZONE

    local_tz = datetime.now().astimezone().tzinfo
    name = getattr(local_tz, 'key', None) or (local_tz.tzname(None) if local_tz else None)
    if is_valid_timezone(name):
        return name
    return None


def validate_day_end_offset(offset):
    if isinstance(offset, bool) or not isinstance(offset, int):
        raise ValueError(f"Day end offset must be an integer, got {offset!r}")
    if not 0 <= offset <= MAX_DAY_END_OFFSET:
        raise ValueError(f"Day end offset must be between 0 and {MAX_DAY_END_OFFSET}, got {offset}")
    return offset


def validate_habit_index(index):
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < HABIT_COUNT:
        raise ValueError(f"Habit index must be between 0 and {HABIT_COUNT - 1}, got {index!r}")
    return index


def validate_date_key(date_key):
    """Accept only canonical 'YYYY-MM-DD' day keys"""
    try:
        parsed = date.fromisoformat(date_key)
    except (TypeError, ValueError):
        parsed = None
    if parsed is None or parsed.isoformat() != date_key:
        raise ValueError(f"Date must be YYYY-MM-DD, got {date_key!r}")
    return date_key


# ===================
# DAY LOGS
# ===================

def empty_day_log():
    return [False] * HABIT_COUNT


def normalize_day_log(log):
    """Coerce a stored log into exactly HABIT_COUNT booleans"""
    values = [bool(done) for done in (log or [])][:HABIT_COUNT]
    return values + [False] * (HABIT_COUNT - len(values))


def count_done(log):
    return sum(1 for done in normalize_day_log(log) if done)


def day_penalty(log):
    """Penalty for one day: PENALTY_PER_HABIT for every habit left undone"""
    return (HABIT_COUNT - count_done(log)) * PENALTY_PER_HABIT


def calculate_penalty(history, today_key):
    """Total visit fund owed for every day strictly before today_key.

    The current day is still in progress and never counts.
    """
    total = 0
    for day in sorted(history or {}):
        if day < today_key:
            total += day_penalty(history[day])
    return total


def calculate_streak(history, today_key):
    """Count consecutive fully complete days ending at today_key.

    An empty or unfinished today does not break the streak; any earlier
    missing or unfinished day does.
    """
    history = history or {}
    today = date.fromisoformat(today_key)
    streak = 0

    for i in range(STREAK_LOOKBACK_DAYS):
        key = (today - timedelta(days=i)).isoformat()
        log = history.get(key)

        if log is None:
            if i == 0:
                continue
            break

        if count_done(log) == HABIT_COUNT:
            streak += 1
        elif i == 0:
            continue
        else:
            break

    return streak


# ===================
# MOOD
# ===================

def get_level(done_count):
    return max(0, min(int(done_count), len(MOOD_LABELS) - 1))


def get_mood(done_count):
    """Mood label for the number of habits completed today"""
    return MOOD_LABELS[get_level(done_count)]


def member_status(done_count, is_morning):
    """Coarse status used for the member picker and the tribe totem.

    'happy' once everything is done, 'hungry' from noon on with fewer than
    two habits done, otherwise 'neutral'.
    """
    if done_count >= HABIT_COUNT:
        return 'happy'
    if not is_morning and done_count < 2:
        return 'hungry'
    return 'neutral'


def tribe_status(statuses):
    statuses = list(statuses)
    if statuses and all(status == 'happy' for status in statuses):
        return 'happy'
    if any(status == 'hungry' for status in statuses):
        return 'hungry'
    return 'neutral'


# ===================
# HABIT TEXT
# ===================

def get_habit_texts(member, date_key):
    """Habit names as they read on date_key, overrides applied"""
    overrides = (member.get('overrides') or {}).get(date_key) or {}
    texts = []
    for i, habit in enumerate(member.get('habits', [])):
        override = overrides.get(str(i))
        texts.append(override if override else habit.get('text', ''))
    return texts


def make_member_id(name, rng=None):
    """Slug of the name plus a random base-36 suffix (e.g. 'jane-doe-k3x9a0q1z')"""
    rng = rng or random
    slug = re.sub(r'\s+', '-', name.strip().lower())
    suffix = ''.join(rng.choice(ID_ALPHABET) for _ in range(9))
    return f"{slug}-{suffix}"
