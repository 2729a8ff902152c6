from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fakes import SERVER_URL, TOKEN, DummySession

from kat_mobile.storage import LocalStore


@pytest.fixture
def store(tmp_path: Path) -> Iterator[LocalStore]:
    local = LocalStore(tmp_path / "kat.db")
    yield local
    local.close()


@pytest.fixture
def memory_store() -> Iterator[LocalStore]:
    local = LocalStore(":memory:")
    yield local
    local.close()


@pytest.fixture
def configured_store(store: LocalStore) -> LocalStore:
    store.update_settings({"sync_server_url": SERVER_URL, "sync_token": TOKEN, "auto_sync": True})
    return store


@pytest.fixture
def dummy_session() -> DummySession:
    return DummySession()
