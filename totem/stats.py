# Digital Totem Stats
# Read-only views over the tribe document for the dashboard and fund pages

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import HABIT_COUNT, FUND_GOAL_AMOUNT, FUND_GOAL_NAME
from .helpers import (
    member_today_key,
    normalize_day_log,
    count_done,
    day_penalty,
    calculate_streak,
    get_level,
    get_mood,
    get_habit_texts,
    member_status,
    tribe_status
)


def _local_time(member, now):
    timezone = (member.get('settings') or {}).get('timezone')
    if timezone:
        try:
            return now.astimezone(ZoneInfo(timezone))
        except (ZoneInfoNotFoundError, ValueError, OSError):
            pass
    return now


def member_summary(member, now):
    """Everything the dashboard shows for one member today"""
    today = member_today_key(member, now)
    log = normalize_day_log(member.get('history', {}).get(today))
    done = count_done(log)

    return {
        'id': member['id'],
        'name': member['name'],
        'today': today,
        'habits': [
            {'index': i, 'text': text, 'done': log[i]}
            for i, text in enumerate(get_habit_texts(member, today))
        ],
        'doneCount': done,
        'level': get_level(done),
        'mood': get_mood(done),
        'streak': calculate_streak(member.get('history'), today),
        'visitFund': member.get('visitFund', 0)
    }


def tribe_mood(members, now):
    """Tribe totem status: happy if everyone is done, hungry if anyone lags"""
    statuses = []
    for member in members.values():
        log = member.get('history', {}).get(member_today_key(member, now))
        is_morning = _local_time(member, now).hour < 12
        statuses.append(member_status(count_done(log), is_morning))
    return tribe_status(statuses)


def fund_goal(members):
    total = sum(member.get('visitFund', 0) for member in members.values())
    return {
        'name': FUND_GOAL_NAME,
        'goal': FUND_GOAL_AMOUNT,
        'total': total,
        'progress': min(100.0, total / FUND_GOAL_AMOUNT * 100),
        'message': 'The Totem is happy. The fund is empty.' if total == 0 else 'The Totem suffers so you can fly.'
    }


def monthly_stats(members, month_key):
    """Per-member fund stats for one month ('YYYY-MM'), biggest payer first.

    Per-day penalties recorded by the sheet (historyFunds) win over the
    locally computed ones.
    """
    rows = []
    for member in members.values():
        history = member.get('history', {})
        history_funds = member.get('historyFunds') or {}
        dates = sorted(day for day in history if day.startswith(month_key))

        completed = 0
        penalty = 0
        for day in dates:
            completed += count_done(history[day])
            if history_funds.get(day) is not None:
                penalty += history_funds[day]
            else:
                penalty += day_penalty(history[day])

        days_tracked = len(dates)
        avg_daily = completed / days_tracked if days_tracked else 0

        rows.append({
            'id': member['id'],
            'name': member['name'],
            'daysTracked': days_tracked,
            'completedHabits': completed,
            'completionRate': completed / (days_tracked * HABIT_COUNT) * 100 if days_tracked else 0,
            'avgDaily': avg_daily,
            'level': get_level(int(avg_daily + 0.5)),
            'totalPenalty': penalty
        })

    rows.sort(key=lambda row: row['totalPenalty'], reverse=True)
    return {
        'month': month_key,
        'members': rows,
        'grandTotal': sum(row['totalPenalty'] for row in rows)
    }
