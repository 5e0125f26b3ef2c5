# Digital Totem Store
# The tribe document: members, the local member and sync status

import logging
import random
import threading
from datetime import timedelta

from .config import STORAGE_PATH, HABIT_COUNT, CONNECT_ERROR
from .helpers import (
    utc_now,
    member_today_key,
    calculate_penalty,
    empty_day_log,
    normalize_day_log,
    make_member_id,
    detect_host_timezone,
    is_valid_timezone,
    validate_day_end_offset,
    validate_habit_index,
    validate_date_key
)
from .outbox import Outbox, SENT
from .sheet import (
    is_mock_url,
    mock_members,
    fetch_tribe,
    build_day_payload,
    build_delete_payload
)
from .storage import load_document, save_document, normalize_members, PERSISTED_KEYS

logger = logging.getLogger(__name__)


class NoLocalMember(LookupError):
    """Raised when a member-scoped action runs with nobody logged in"""


class UnknownMember(KeyError):
    """Raised when a member id is not in the tribe document"""


def _empty_document():
    return {
        'tribeUrl': None,
        'members': {},
        'localUserId': None,
        'lastSynced': 0,
        'isLoading': False,
        'error': None
    }


class TribeStore:
    """Observable, persisted tribe document.

    Every mutation swaps in a new document under a lock, saves the persisted
    part to disk and notifies subscribers. Member changes are then pushed to
    the sheet through the outbox; the local document never waits on, or
    rolls back for, the sheet.
    """

    def __init__(self, storage_path=STORAGE_PATH, client=None, now=None, rng=None, outbox=None):
        self.storage_path = storage_path
        self.client = client
        self._now = now or utc_now
        self._rng = rng or random.Random()
        self._lock = threading.RLock()
        self._listeners = []

        if outbox is None:
            outbox = Outbox(client=client)
        outbox.on_change = self._on_outbox_change
        self.outbox = outbox

        self._state = _empty_document()
        if storage_path:
            stored = load_document(storage_path)
            if stored:
                self._state.update({key: stored.get(key) for key in PERSISTED_KEYS})
                logger.info(f"Loaded tribe document with {len(self._state['members'])} members")

    # ===================
    # DOCUMENT
    # ===================

    @property
    def state(self):
        return self._state

    @property
    def is_connected(self):
        return bool(self._state['tribeUrl'])

    @property
    def is_offline(self):
        return is_mock_url(self._state['tribeUrl'])

    def subscribe(self, listener):
        """Call listener(state) after every change. Returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _set(self, **changes):
        with self._lock:
            state = dict(self._state, **changes)
            self._state = state
            if self.storage_path and any(key in changes for key in PERSISTED_KEYS):
                save_document(self.storage_path, state)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Tribe store listener failed")
        return state

    def now(self):
        return self._now()

    def _now_ms(self):
        return int(self._now().timestamp() * 1000)

    def _replace_member(self, member):
        members = dict(self._state['members'])
        members[member['id']] = member
        self._set(members=members)
        return member

    def get_local_member(self):
        local_id = self._state['localUserId']
        if not local_id:
            return None
        return self._state['members'].get(local_id)

    def _require_local_member(self):
        member = self.get_local_member()
        if member is None:
            raise NoLocalMember('No local member selected')
        return member

    def today_key(self, member=None):
        member = member or self._require_local_member()
        return member_today_key(member, self._now())

    # ===================
    # CONNECTION
    # ===================

    def connect_tribe(self, url):
        """Fetch the tribe document from the sheet and adopt it.

        The only action that reports failure: on a bad URL, a network error
        or a malformed envelope it sets the error message, leaves the
        document disconnected and returns False.
        """
        url = (url or '').strip()
        self._set(isLoading=True, error=None)
        logger.info(f"Connecting to tribe: {url}")

        if is_mock_url(url):
            members = normalize_members(mock_members(member_today_key({}, self._now())))
        else:
            members = fetch_tribe(url, client=self.client) if url else None
            if members is None:
                self._set(isLoading=self.outbox.pending > 0, error=CONNECT_ERROR)
                return False
            members = normalize_members(members)

        with self._lock:
            # The local member is ours; the sheet only adds what it alone records
            local = self.get_local_member()
            if local:
                members[local['id']] = dict(members.get(local['id'], {}), **local)

            self._set(
                tribeUrl=url,
                members=members,
                lastSynced=self._now_ms(),
                isLoading=self.outbox.pending > 0,
                error=None
            )

        logger.info(f"Tribe connected: {len(members)} members")
        return True

    def disconnect(self):
        self._set(tribeUrl=None)

    def select_member(self, member_id):
        if member_id not in self._state['members']:
            raise UnknownMember(member_id)
        self._set(localUserId=member_id)
        return self._state['members'][member_id]

    def logout(self):
        self._set(localUserId=None)

    # ===================
    # SYNC
    # ===================

    def _can_push(self):
        return self.is_connected and not self.is_offline

    def sync_tribe(self, date_key=None):
        """Push the local member's log for date_key (default: their today).

        Returns the outbox future, or None when there is nothing to push to.
        """
        member = self.get_local_member()
        if member is None or not self._can_push():
            return None

        date_key = validate_date_key(date_key or self.today_key(member))
        payload = build_day_payload(member, date_key)
        return self.outbox.send('day', self._state['tribeUrl'], payload)

    def _on_outbox_change(self, update):
        with self._lock:
            changes = {'isLoading': self.outbox.pending > 0}
            if update.state == SENT:
                changes['lastSynced'] = self._now_ms()
            self._set(**changes)

    # ===================
    # MEMBERS
    # ===================

    def create_member(self, name, habits):
        """Create the local member from onboarding and push it.

        habits is a list of exactly HABIT_COUNT habit texts.
        """
        name = (name or '').strip()
        if not name:
            raise ValueError('Member name is required')
        if len(habits) != HABIT_COUNT:
            raise ValueError(f"Exactly {HABIT_COUNT} habits are required, got {len(habits)}")

        member = {
            'id': make_member_id(name, self._rng),
            'name': name,
            'habits': [{'id': str(i), 'text': text} for i, text in enumerate(habits)],
            'history': {},
            'visitFund': 0,
            'settings': {'dayEndOffset': 0},
            'overrides': {}
        }
        timezone = detect_host_timezone()
        if timezone:
            member['settings']['timezone'] = timezone

        with self._lock:
            members = dict(self._state['members'])
            members[member['id']] = member
            self._set(members=members, localUserId=member['id'])

        logger.info(f"Created member {member['id']}")
        self.sync_tribe()
        return member

    def delete_member(self, member_id=None):
        """Remove a member locally, asking the sheet to delete it too.

        The local copy goes regardless of what happens to the remote delete.
        """
        with self._lock:
            member_id = member_id or self._state['localUserId']
            member = self._state['members'].get(member_id)
            if member is None:
                raise UnknownMember(member_id)

            members = dict(self._state['members'])
            del members[member_id]
            changes = {'members': members}
            if self._state['localUserId'] == member_id:
                changes['localUserId'] = None
            url = self._state['tribeUrl']
            self._set(**changes)

        logger.info(f"Deleted member {member_id}")
        if self._can_push():
            return self.outbox.send('delete', url, build_delete_payload(member))
        return None

    # ===================
    # HABITS
    # ===================

    def toggle_habit(self, date_key, index):
        """Flip one habit on one day and push that day"""
        validate_habit_index(index)
        validate_date_key(date_key)

        with self._lock:
            member = self._require_local_member()
            log = list(member['history'].get(date_key) or empty_day_log())
            log[index] = not log[index]

            history = dict(member['history'])
            history[date_key] = normalize_day_log(log)
            member = self._replace_member(dict(member, history=history))

        self.sync_tribe(date_key)
        return member['history'][date_key]

    def edit_habit(self, index, text):
        """Change a habit's canonical text from now on"""
        validate_habit_index(index)
        text = (text or '').strip()
        if not text:
            raise ValueError('Habit text is required')

        with self._lock:
            member = self._require_local_member()
            habits = [dict(habit) for habit in member['habits']]
            habits[index]['text'] = text
            member = self._replace_member(dict(member, habits=habits))

        self.sync_tribe()
        return member

    def set_override(self, date_key, index, text):
        """Rename a habit for one day only. Empty text clears the override."""
        validate_habit_index(index)
        validate_date_key(date_key)
        text = (text or '').strip()

        with self._lock:
            member = self._require_local_member()
            overrides = {day: dict(texts) for day, texts in (member.get('overrides') or {}).items()}
            day_overrides = overrides.setdefault(date_key, {})

            if text:
                day_overrides[str(index)] = text
            else:
                day_overrides.pop(str(index), None)
                if not day_overrides:
                    del overrides[date_key]

            member = self._replace_member(dict(member, overrides=overrides))

        self.sync_tribe(date_key)
        return member

    def update_settings(self, day_end_offset=None, timezone=None):
        with self._lock:
            member = self._require_local_member()
            settings = dict(member.get('settings') or {})

            if day_end_offset is not None:
                settings['dayEndOffset'] = validate_day_end_offset(day_end_offset)
            if timezone is not None:
                if not is_valid_timezone(timezone):
                    raise ValueError(f"Unknown timezone: {timezone!r}")
                settings['timezone'] = timezone

            member = self._replace_member(dict(member, settings=settings))

        self.sync_tribe()
        return member

    # ===================
    # VISIT FUND
    # ===================

    def calculate_penalties(self):
        """Recompute the local member's visit fund from history.

        Pushes only when the total actually changed.
        """
        with self._lock:
            member = self._require_local_member()
            penalty = calculate_penalty(member['history'], self.today_key(member))
            if penalty == member.get('visitFund'):
                return penalty
            self._replace_member(dict(member, visitFund=penalty))

        logger.info(f"Visit fund for {member['id']} is now {penalty}")
        self.sync_tribe()
        return penalty

    def simulate_history(self, days=5, rng=None):
        """Fill the last `days` days with random logs and push each one"""
        rng = rng or self._rng
        member = self.get_local_member()
        if member is None or not self.is_connected:
            return []

        today = self._now()
        keys = []

        with self._lock:
            history = dict(member['history'])
            for i in range(1, days + 1):
                date_key = member_today_key(member, today - timedelta(days=i))
                history[date_key] = [rng.random() > 0.2 for _ in range(HABIT_COUNT)]
                keys.append(date_key)
            self._replace_member(dict(member, history=history))

        for date_key in keys:
            self.sync_tribe(date_key)

        self.calculate_penalties()
        return keys

    def close(self):
        self.outbox.shutdown()
