# Digital Totem Sheet Functions
# All reads and writes against the tribe's spreadsheet endpoint

import json
import logging

import httpx

from .config import HTTP_TIMEOUT, MOCK_MARKER, HABIT_COUNT
from .helpers import normalize_day_log, get_habit_texts

logger = logging.getLogger(__name__)

# The sheet counts misses: a done habit is written as 0, a missed one as 1
DONE_VALUE = 0
MISSED_VALUE = 1


def _get_headers():
    """The sheet script only reads plain-text bodies"""
    return {
        'Content-Type': 'text/plain;charset=utf-8'
    }


def is_mock_url(url):
    return bool(url) and MOCK_MARKER in url


def encode_habits(log):
    """Day log booleans to the sheet's integer encoding"""
    return [DONE_VALUE if done else MISSED_VALUE for done in normalize_day_log(log)]


def decode_habits(values):
    return [value == DONE_VALUE for value in list(values)[:HABIT_COUNT]]


def mock_members(today_key):
    """Two demo members for offline mode"""
    def demo_habits():
        return [{'id': str(i), 'text': f"Habit {i + 1}"} for i in range(HABIT_COUNT)]

    return {
        'member-1': {
            'id': 'member-1',
            'name': 'Alice',
            'habits': demo_habits(),
            'history': {today_key: [True, True, False, False, False]},
            'visitFund': 150
        },
        'member-2': {
            'id': 'member-2',
            'name': 'Bob',
            'habits': demo_habits(),
            'history': {today_key: [False] * HABIT_COUNT},
            'visitFund': 300
        }
    }


# ===================
# READ OPERATIONS
# ===================

def fetch_tribe(url, client=None):
    """Fetch the tribe envelope and return its members map.

    Returns the members dict, or None when the request fails, the body is
    not JSON, or the envelope status is not 'success'.
    Used only by connect; nothing else reads from the sheet.
    """
    http = client or httpx

    try:
        response = http.get(url, timeout=HTTP_TIMEOUT, follow_redirects=True)
        envelope = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Error fetching tribe from sheet: {e}")
        return None

    if not isinstance(envelope, dict) or envelope.get('status') != 'success':
        logger.error(f"Invalid response from tribe sheet: {str(envelope)[:200]}")
        return None

    members = envelope.get('data') or {}
    if not isinstance(members, dict):
        logger.error("Tribe sheet returned a non-object members map")
        return None

    return members


# ===================
# WRITE OPERATIONS
# ===================

def build_day_payload(member, date_key):
    """Row payload for one member's day.

    habitNames carries the names as they read on that day, so per-day
    overrides land in the sheet too.
    """
    payload = {
        'userName': member['name'],
        'userId': member['id'],
        'date': date_key,
        'habits': encode_habits(member.get('history', {}).get(date_key)),
        'habitNames': get_habit_texts(member, date_key),
        'visitFund': member.get('visitFund', 0)
    }

    if member.get('settings'):
        payload['settings'] = dict(member['settings'])

    return payload


def build_delete_payload(member):
    return {
        'action': 'DELETE',
        'userId': member['id'],
        'userName': member['name']
    }


def post_payload(url, payload, client=None):
    """Send a payload to the sheet without reading the response.

    The sheet never confirms writes, so True only means the request left
    without a transport error.
    """
    http = client or httpx

    try:
        http.post(url, headers=_get_headers(), content=json.dumps(payload), timeout=HTTP_TIMEOUT)
        return True
    except httpx.HTTPError as e:
        logger.error(f"Error posting to tribe sheet: {e}")
        return False
