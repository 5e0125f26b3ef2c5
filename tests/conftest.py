import json
import random
import threading
import time
from datetime import datetime, timedelta, timezone

import httpx
import pytest

import totem.storage
import totem.store
from totem import TribeStore

SHEET_URL = 'https://sheet.example.com/exec'
NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)
HABITS = ['Run', 'Read', 'Meditate', 'Stretch', 'Journal']


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeSheet:
    """Stands in for the spreadsheet script behind httpx.MockTransport"""

    def __init__(self):
        self.members = {}
        self.status = 'success'
        self.body = None
        self.fail_get = False
        self.fail_posts = False
        self.gate = None
        self.gets = 0
        self.posts = []

    def handler(self, request):
        if request.method == 'GET':
            self.gets += 1
            if self.fail_get:
                raise httpx.ConnectError('sheet unreachable', request=request)
            if self.body is not None:
                return httpx.Response(200, text=self.body)
            return httpx.Response(200, json={'status': self.status, 'data': self.members})

        if self.gate is not None:
            self.gate.acquire(timeout=5)
        if self.fail_posts:
            raise httpx.ConnectError('sheet unreachable', request=request)
        self.posts.append(json.loads(request.content))
        return httpx.Response(302)

    def day_posts(self):
        return [post for post in self.posts if post.get('action') != 'DELETE']


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture(autouse=True)
def no_host_timezone(monkeypatch):
    # Keep day keys in UTC regardless of the machine running the tests
    monkeypatch.setattr(totem.store, 'detect_host_timezone', lambda: None)
    monkeypatch.setattr(totem.storage, 'detect_host_timezone', lambda: None)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def sheet():
    return FakeSheet()


@pytest.fixture
def client(sheet):
    with httpx.Client(transport=httpx.MockTransport(sheet.handler)) as http:
        yield http


@pytest.fixture
def storage_path(tmp_path):
    return tmp_path / 'tribe.json'


@pytest.fixture
def make_store(storage_path, client, clock):
    stores = []

    def factory(path=storage_path):
        store = TribeStore(storage_path=path, client=client, now=clock, rng=random.Random(7))
        stores.append(store)
        return store

    yield factory

    for store in stores:
        store.close()


@pytest.fixture
def store(make_store):
    return make_store()


@pytest.fixture
def member_store(store, sheet):
    """Connected store with an onboarded local member and the create push settled"""
    assert store.connect_tribe(SHEET_URL)
    store.create_member('Jane Doe', HABITS)
    store.outbox.wait(5)
    sheet.posts.clear()
    return store
