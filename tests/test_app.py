import pytest

from tracker.app import create_app

from conftest import SHEET_URL, HABITS

TODAY = '2025-06-15'


@pytest.fixture
def app(store):
    app = create_app(store)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def http(app):
    return app.test_client()


@pytest.fixture
def onboarded(http, store):
    assert http.post('/connect', json={'tribeUrl': SHEET_URL}).status_code == 200
    response = http.post('/members', json={'name': 'Jane', 'habits': HABITS})
    assert response.status_code == 201
    store.outbox.wait(5)
    return response.get_json()


def test_health(http):
    response = http.get('/health')
    assert response.status_code == 200
    assert response.get_json()['service'] == 'Totem Tracker'


def test_connect_requires_url(http):
    assert http.post('/connect', json={}).status_code == 400


def test_connect_failure_reports_error(http, sheet):
    sheet.status = 'error'
    response = http.post('/connect', json={'tribeUrl': SHEET_URL})
    assert response.status_code == 502
    assert response.get_json()['error'] == 'Could not connect to Tribe. Check URL.'


def test_toggle_defaults_to_today(http, onboarded):
    response = http.post('/habits/toggle', json={'index': 1})
    assert response.status_code == 200
    assert response.get_json() == {'date': TODAY, 'log': [False, True, False, False, False]}


def test_toggle_rejects_bad_index(http, onboarded):
    assert http.post('/habits/toggle', json={'index': 7}).status_code == 400
    assert http.post('/habits/toggle', json={'index': 'one'}).status_code == 400


def test_toggle_without_member_is_404(http):
    response = http.post('/habits/toggle', json={'index': 0, 'date': TODAY})
    assert response.status_code == 404
    assert response.get_json()['error'] == 'no_local_member'


def test_settings_and_override(http, onboarded):
    response = http.put('/settings', json={'dayEndOffset': 4, 'timezone': 'Europe/Berlin'})
    assert response.get_json()['settings'] == {'dayEndOffset': 4, 'timezone': 'Europe/Berlin'}
    assert http.put('/settings', json={'dayEndOffset': 20}).status_code == 400

    response = http.post('/overrides', json={'date': TODAY, 'index': 0, 'text': 'Swim'})
    assert response.get_json()['overrides'] == {TODAY: {'0': 'Swim'}}


def test_dashboard(http, onboarded):
    http.post('/habits/toggle', json={'index': 0, 'date': '2025-06-14'})
    for index in range(5):
        http.post('/habits/toggle', json={'index': index})

    body = http.get('/dashboard').get_json()
    assert body['member']['today'] == TODAY
    assert body['member']['mood'] == 'Radiant'
    assert body['member']['doneCount'] == 5
    assert body['member']['streak'] == 1
    assert body['member']['visitFund'] == 40
    assert body['goal']['total'] == 40
    assert body['tribeMood'] == 'happy'


def test_fund_for_month(http, onboarded):
    http.post('/habits/toggle', json={'index': 0, 'date': '2025-06-01'})
    body = http.get('/fund?month=2025-06').get_json()

    assert body['month'] == '2025-06'
    assert body['grandTotal'] == 40
    assert body['members'][0]['daysTracked'] == 1


def test_delete_member(http, onboarded):
    response = http.delete(f"/members/{onboarded['id']}")
    assert response.status_code == 200
    assert http.get('/tribe').get_json()['localUserId'] is None
    assert http.delete(f"/members/{onboarded['id']}").status_code == 404


def test_unknown_route_stays_404(http):
    assert http.get('/nowhere').status_code == 404


def test_malformed_date_is_400(http, onboarded):
    response = http.post('/habits/toggle', json={'index': 0, 'date': '2025-6-1'})
    assert response.status_code == 400
    assert http.post('/overrides', json={'date': 'banana', 'index': 0, 'text': 'Swim'}).status_code == 400
    assert http.post('/sync', json={'date': 'banana'}).status_code == 400

    member = http.get('/tribe').get_json()['members'][onboarded['id']]
    assert member['history'] == {}
    assert member['overrides'] == {}


def test_select_unknown_member_is_404(http, onboarded):
    response = http.post('/members/nobody/select')
    assert response.status_code == 404
    assert response.get_json() == {'error': 'member_not_found', 'memberId': 'nobody'}


def test_stray_key_error_is_a_server_error(http, onboarded, store, monkeypatch):
    def broken():
        raise KeyError('visitFund')

    monkeypatch.setattr(store, 'calculate_penalties', broken)
    response = http.post('/penalties')
    assert response.status_code == 500
    assert response.get_json()['error'] == 'Internal server error'


def test_manual_sync(http, onboarded, store, sheet):
    sheet.posts.clear()
    response = http.post('/sync', json={})
    assert response.status_code == 202
    assert response.get_json()['queued'] is True

    store.outbox.wait(5)
    assert sheet.posts[-1]['date'] == TODAY


def test_sync_without_member_is_404(http):
    assert http.post('/sync', json={}).status_code == 404


def test_simulate_fills_past_days(http, onboarded, store):
    response = http.post('/simulate?days=3')
    assert response.get_json()['dates'] == ['2025-06-14', '2025-06-13', '2025-06-12']
    store.outbox.wait(5)

    assert http.post('/simulate?days=0').status_code == 400
