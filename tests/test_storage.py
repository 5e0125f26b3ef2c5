import json

import pytest

from totem.config import SCHEMA_VERSION
from totem.storage import load_document, save_document, migrate, normalize_member


def _doc():
    return {
        'tribeUrl': 'https://sheet.example.com/exec',
        'members': {
            'jane-abc': {
                'id': 'jane-abc',
                'name': 'Jane',
                'habits': [{'id': str(i), 'text': f"Habit {i}"} for i in range(5)],
                'history': {'2025-06-14': [True, True, True, True, True]},
                'visitFund': 0,
                'settings': {'dayEndOffset': 3, 'timezone': 'Europe/Paris'},
                'overrides': {},
            }
        },
        'localUserId': 'jane-abc',
        'lastSynced': 1700000000000,
        'isLoading': True,
        'error': 'stale',
    }


def test_save_then_load_keeps_persisted_fields(storage_path):
    save_document(storage_path, _doc())
    loaded = load_document(storage_path)

    assert loaded['schemaVersion'] == SCHEMA_VERSION
    assert loaded['tribeUrl'] == _doc()['tribeUrl']
    assert loaded['members'] == _doc()['members']
    assert loaded['localUserId'] == 'jane-abc'
    assert 'isLoading' not in loaded
    assert 'error' not in loaded


def test_missing_file_loads_as_none(storage_path):
    assert load_document(storage_path) is None


def test_corrupt_file_is_moved_aside(storage_path):
    storage_path.write_text('{not json', encoding='utf-8')

    assert load_document(storage_path) is None
    assert not storage_path.exists()
    assert len(list(storage_path.parent.glob('tribe.corrupt-*.json'))) == 1


def test_browser_wrapper_is_migrated(storage_path):
    wrapped = {'state': dict(_doc(), isLoading=False), 'version': 0}
    storage_path.write_text(json.dumps(wrapped), encoding='utf-8')

    loaded = load_document(storage_path)
    assert loaded['localUserId'] == 'jane-abc'
    assert loaded['members']['jane-abc']['settings']['dayEndOffset'] == 3


def test_newer_schema_is_refused():
    with pytest.raises(ValueError):
        migrate({'schemaVersion': SCHEMA_VERSION + 1})


def test_normalize_member_fills_defaults():
    member = normalize_member({
        'id': 'bob-1',
        'name': 'Bob',
        'habits': [{'id': '0', 'text': 'Run'}],
        'history': {'2025-06-14': [0, 1, 1, 1, 1], '2025-06-13': [True]},
        'visitFund': None,
    }, default_timezone='Asia/Kolkata')

    assert len(member['habits']) == 5
    assert member['settings'] == {'dayEndOffset': 0, 'timezone': 'Asia/Kolkata'}
    # Integer logs come from the sheet, where 0 means done
    assert member['history']['2025-06-14'] == [True, False, False, False, False]
    assert member['history']['2025-06-13'] == [True, False, False, False, False]
    assert member['visitFund'] == 0
    assert member['overrides'] == {}


def test_normalize_member_resets_bad_offset():
    member = normalize_member({'id': 'x', 'settings': {'dayEndOffset': 12}})
    assert member['settings']['dayEndOffset'] == 0
