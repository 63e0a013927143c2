"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from contact_store import InMemoryContactStore, SqliteContactStore
from identity_resolver import IdentityResolver
from main import create_app


class TickingClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start=datetime(2024, 1, 1, 12, 0, 0), step=timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now += self.step
        return current


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def memory_store(clock):
    return InMemoryContactStore(clock=clock)


@pytest.fixture
def sqlite_store(tmp_path):
    return SqliteContactStore(str(tmp_path / "contacts.db"), timeout=10.0)


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    """Each test using this runs once per backend."""
    if request.param == "memory":
        return InMemoryContactStore(clock=TickingClock())
    tmp_path = request.getfixturevalue("tmp_path")
    return SqliteContactStore(str(tmp_path / "contacts.db"), timeout=10.0)


@pytest.fixture
def resolver(store):
    return IdentityResolver(store)


@pytest.fixture
def client(memory_store):
    """Create a test FastAPI client around an in-memory store."""
    app = create_app(memory_store)
    with TestClient(app) as test_client:
        yield test_client
