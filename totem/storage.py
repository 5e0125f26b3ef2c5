# Digital Totem Storage
# Local JSON copy of the tribe document: load on init, save on mutation

import json
import logging
import os
from datetime import datetime
from pathlib import Path

from .config import SCHEMA_VERSION, HABIT_COUNT, MAX_DAY_END_OFFSET
from .helpers import normalize_day_log, detect_host_timezone
from .sheet import decode_habits

logger = logging.getLogger(__name__)

PERSISTED_KEYS = ('tribeUrl', 'members', 'localUserId', 'lastSynced')


def _migrate_v0(data):
    """v0 is the browser's persisted wrapper: {'state': {...}, 'version': 0}"""
    state = data.get('state', data)
    return {key: state.get(key) for key in PERSISTED_KEYS}


MIGRATIONS = {
    0: _migrate_v0,
}


def migrate(data):
    """Bring a stored document up to SCHEMA_VERSION, one step at a time"""
    version = data.get('schemaVersion', 0)

    if version > SCHEMA_VERSION:
        raise ValueError(f"Stored schema version {version} is newer than supported {SCHEMA_VERSION}")

    while version < SCHEMA_VERSION:
        data = MIGRATIONS[version](data)
        version += 1
        logger.info(f"Migrated tribe document to schema v{version}")

    data['schemaVersion'] = SCHEMA_VERSION
    return data


def _normalize_log(log):
    # Logs straight from the sheet arrive in its integer encoding
    if log and all(isinstance(value, int) and not isinstance(value, bool) for value in log):
        return normalize_day_log(decode_habits(log))
    return normalize_day_log(log)


def normalize_member(member, default_timezone=None):
    """Fill defaults on a member from storage or from the sheet.

    Missing settings fall back to offset 0 and the host timezone; habits are
    padded or cut to HABIT_COUNT; every day log becomes HABIT_COUNT bools.
    """
    habits = [
        {'id': str(habit.get('id', i)), 'text': habit.get('text', '')}
        for i, habit in enumerate((member.get('habits') or [])[:HABIT_COUNT])
    ]
    for i in range(len(habits), HABIT_COUNT):
        habits.append({'id': str(i), 'text': ''})

    settings = dict(member.get('settings') or {})
    offset = settings.get('dayEndOffset', 0)
    if not isinstance(offset, int) or isinstance(offset, bool) or not 0 <= offset <= MAX_DAY_END_OFFSET:
        offset = 0
    settings['dayEndOffset'] = offset
    if not settings.get('timezone'):
        timezone = default_timezone or detect_host_timezone()
        if timezone:
            settings['timezone'] = timezone
        else:
            settings.pop('timezone', None)

    normalized = {
        'id': member['id'],
        'name': member.get('name', ''),
        'habits': habits,
        'history': {day: _normalize_log(log) for day, log in (member.get('history') or {}).items()},
        'visitFund': int(member.get('visitFund') or 0),
        'settings': settings,
        'overrides': {
            day: {str(index): text for index, text in texts.items() if text}
            for day, texts in (member.get('overrides') or {}).items()
            if texts
        }
    }

    if member.get('historyFunds'):
        normalized['historyFunds'] = dict(member['historyFunds'])

    return normalized


def normalize_members(members, default_timezone=None):
    normalized = {}
    for member_id, member in (members or {}).items():
        try:
            member = dict(member, id=member.get('id', member_id))
            normalized[member['id']] = normalize_member(member, default_timezone)
        except (AttributeError, TypeError, ValueError) as e:
            logger.error(f"Skipping malformed member {member_id}: {e}")
    return normalized


def _move_aside(path):
    stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    backup = path.with_name(f"{path.stem}.corrupt-{stamp}{path.suffix}")
    path.replace(backup)
    logger.warning(f"Corrupt tribe document moved to {backup}")


def load_document(path):
    """Read and migrate the stored document.

    Returns None when nothing is stored yet. A file that cannot be parsed
    is moved aside and treated as missing.
    """
    path = Path(path)
    if not path.exists():
        logger.info(f"No tribe document at {path}, starting fresh")
        return None

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError('top level is not an object')
        data = migrate(data)
    except (json.JSONDecodeError, ValueError, KeyError) as e:
        logger.error(f"Error reading tribe document {path}: {e}")
        _move_aside(path)
        return None

    data['members'] = normalize_members(data.get('members'))
    data['lastSynced'] = data.get('lastSynced') or 0
    return data


def save_document(path, document):
    """Write the persisted part of the document, replacing the file atomically"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {key: document.get(key) for key in PERSISTED_KEYS}
    data['schemaVersion'] = SCHEMA_VERSION

    tmp_path = path.with_name(path.name + '.tmp')
    with open(tmp_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    os.replace(tmp_path, path)
