"""Shared fixtures for offline sync engine tests."""

from __future__ import annotations

import pytest
from sync_fakes import FakeClock, FakeRemote

from offline_sync.db.session import StoreSessionManager
from offline_sync.db.store import PersistentStore


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "offline.db")


@pytest.fixture
def store(db_path: str) -> PersistentStore:
    return PersistentStore(StoreSessionManager(path=db_path, operation_timeout=5.0))


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()
