"""Shared fixtures: an in-memory SQLite store driven by a deterministic clock."""

from datetime import datetime, timedelta, timezone

import pytest

from taskflow.config import Settings
from taskflow.crud import RecordStore
from taskflow.services import TaskService

UTC = timezone.utc


class TickingClock:
    """Returns a strictly increasing UTC time on every call."""

    def __init__(
        self, start=datetime(2025, 1, 1, 9, 0, tzinfo=UTC), step=timedelta(seconds=1)
    ):
        self.now = start
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", database_name="taskflow_test", request_timeout=None)


@pytest.fixture
def store(settings, clock):
    """Create a fresh in-memory store with tables and indexes."""
    store = RecordStore.from_settings(settings, clock=clock, sleep=lambda _delay: None)
    store.create_schema()
    yield store
    store.engine.dispose()


@pytest.fixture
def service(store):
    return TaskService(store)


@pytest.fixture
def user_id(store):
    return store.insert_user({"email": "alice@example.com", "credential_hash": "hash-a"})


@pytest.fixture
def other_user_id(store):
    return store.insert_user({"email": "bob@example.com", "credential_hash": "hash-b"})
