# Totem Tracker
# JSON service over the tribe store: connect, log habits, see the fund

import os

from flask import Flask, request, jsonify, current_app
from werkzeug.exceptions import HTTPException

from totem import TribeStore, NoLocalMember, UnknownMember, member_summary, tribe_mood, fund_goal, monthly_stats
from totem.config import STORAGE_PATH, TRIBE_URL
from totem.logger import setup_logging


def _store():
    return current_app.extensions['tribe_store']


def _json_body():
    return request.get_json(silent=True) or {}


def _int_field(data, key):
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' must be an integer")
    return value


def _now():
    return _store().now()


def create_app(store=None):
    """Build the tracker app around a store (a file-backed one by default)"""
    app = Flask(__name__)

    if store is None:
        store = TribeStore(storage_path=STORAGE_PATH)
        if TRIBE_URL and not store.is_connected:
            store.connect_tribe(TRIBE_URL)
    app.extensions['tribe_store'] = store

    @app.errorhandler(ValueError)
    def bad_request(e):
        return jsonify({'error': str(e)}), 400

    @app.errorhandler(NoLocalMember)
    def no_member(e):
        return jsonify({'error': 'no_local_member', 'message': str(e)}), 404

    @app.errorhandler(UnknownMember)
    def unknown_member(e):
        return jsonify({'error': 'member_not_found', 'memberId': e.args[0] if e.args else None}), 404

    @app.errorhandler(Exception)
    def internal_error(e):
        if isinstance(e, HTTPException):
            return e
        current_app.logger.exception('Unhandled tracker error')
        return jsonify({'error': 'Internal server error', 'details': str(e)}), 500

    @app.route('/health', methods=['GET'])
    def health():
        """Health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'service': 'Totem Tracker',
            'version': '1.0'
        })

    # ===================
    # TRIBE
    # ===================

    @app.route('/connect', methods=['POST'])
    def connect():
        """Connect to a tribe sheet.

        Accepts:
            - tribeUrl: The sheet endpoint (anything containing 'mock' runs offline)

        Returns:
            - connected: Boolean
            - error: Message when the connection failed
            - members: Member ids now known
        """
        url = _json_body().get('tribeUrl', '')
        if not url:
            return jsonify({'error': 'No tribe URL provided'}), 400

        store = _store()
        connected = store.connect_tribe(url)
        status = 200 if connected else 502
        return jsonify({
            'connected': connected,
            'error': store.state['error'],
            'members': sorted(store.state['members'])
        }), status

    @app.route('/tribe', methods=['GET'])
    def tribe():
        return jsonify(_store().state)

    @app.route('/disconnect', methods=['POST'])
    def disconnect():
        _store().disconnect()
        return jsonify({'connected': False})

    @app.route('/logout', methods=['POST'])
    def logout():
        _store().logout()
        return jsonify({'localUserId': None})

    @app.route('/sync', methods=['POST'])
    def sync():
        """Push the local member's day to the sheet.

        Accepts:
            - date: Day key (defaults to the member's today)

        Returns:
            - queued: False when disconnected or in mock mode
            - pending: Updates still in flight
        """
        store = _store()
        if store.get_local_member() is None:
            raise NoLocalMember('No local member selected')
        future = store.sync_tribe(_json_body().get('date'))
        return jsonify({
            'queued': future is not None,
            'pending': store.outbox.pending
        }), 202

    @app.route('/simulate', methods=['POST'])
    def simulate():
        """Fill the last few days with random logs (?days=N, default 5)"""
        days = request.args.get('days', 5, type=int)
        if not 1 <= days <= 31:
            raise ValueError('days must be between 1 and 31')
        return jsonify({'dates': _store().simulate_history(days=days)})

    # ===================
    # MEMBERS
    # ===================

    @app.route('/members', methods=['POST'])
    def create_member():
        """Onboard the local member.

        Accepts:
            - name: Display name
            - habits: List of exactly five habit texts
        """
        data = _json_body()
        habits = data.get('habits')
        if not isinstance(habits, list):
            return jsonify({'error': 'habits must be a list'}), 400

        member = _store().create_member(data.get('name', ''), habits)
        return jsonify(member), 201

    @app.route('/members/<member_id>/select', methods=['POST'])
    def select_member(member_id):
        member = _store().select_member(member_id)
        return jsonify(member)

    @app.route('/members/<member_id>', methods=['DELETE'])
    def delete_member(member_id):
        _store().delete_member(member_id)
        return jsonify({'deleted': member_id})

    # ===================
    # HABITS
    # ===================

    @app.route('/habits/toggle', methods=['POST'])
    def toggle_habit():
        """Flip one habit.

        Accepts:
            - index: Habit index 0-4
            - date: Day key (defaults to the member's today)
        """
        data = _json_body()
        store = _store()
        index = _int_field(data, 'index')
        date_key = data.get('date') or store.today_key()

        log = store.toggle_habit(date_key, index)
        return jsonify({'date': date_key, 'log': log})

    @app.route('/habits/<int:index>', methods=['PUT'])
    def edit_habit(index):
        member = _store().edit_habit(index, _json_body().get('text', ''))
        return jsonify(member)

    @app.route('/overrides', methods=['POST'])
    def set_override():
        data = _json_body()
        store = _store()
        date_key = data.get('date') or store.today_key()
        member = store.set_override(date_key, _int_field(data, 'index'), data.get('text', ''))
        return jsonify(member)

    @app.route('/settings', methods=['PUT'])
    def update_settings():
        """Change day end offset and/or timezone"""
        data = _json_body()
        offset = _int_field(data, 'dayEndOffset') if 'dayEndOffset' in data else None
        member = _store().update_settings(day_end_offset=offset, timezone=data.get('timezone'))
        return jsonify(member)

    # ===================
    # VISIT FUND
    # ===================

    @app.route('/penalties', methods=['POST'])
    def penalties():
        return jsonify({'visitFund': _store().calculate_penalties()})

    @app.route('/dashboard', methods=['GET'])
    def dashboard():
        """Local member's day, mood and streak plus the shared fund goal"""
        store = _store()
        store.calculate_penalties()
        members = store.state['members']
        now = _now()

        return jsonify({
            'member': member_summary(store.get_local_member(), now),
            'tribeMood': tribe_mood(members, now),
            'goal': fund_goal(members),
            'isLoading': store.state['isLoading'],
            'lastSynced': store.state['lastSynced']
        })

    @app.route('/fund', methods=['GET'])
    def fund():
        """Monthly fund stats (?month=YYYY-MM, defaults to this month)"""
        month = request.args.get('month') or _now().strftime('%Y-%m')
        return jsonify(monthly_stats(_store().state['members'], month))

    return app


if __name__ == '__main__':
    setup_logging()
    port = int(os.environ.get('PORT', 8080))
    create_app().run(host='0.0.0.0', port=port)
