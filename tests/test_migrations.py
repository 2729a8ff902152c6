from __future__ import annotations

import sqlite3
from pathlib import Path

from kat_mobile.const import STORE_SCHEMA_VERSION
from kat_mobile.storage import LocalStore, apply_migrations, current_version


def _tables(path: Path) -> set[str]:
    with sqlite3.connect(path) as conn:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


def _columns(path: Path, table: str) -> set[str]:
    with sqlite3.connect(path) as conn:
        return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def test_fresh_store_has_latest_schema(tmp_path: Path) -> None:
    path = tmp_path / "fresh.db"
    store = LocalStore(path)

    assert store.schema_version == STORE_SCHEMA_VERSION
    assert {"sessions", "acquisitions", "files", "settings", "sync_queue", "library"} <= _tables(path)
    assert "session_id" in _columns(path, "files")


def test_open_is_idempotent(tmp_path: Path) -> None:
    path = tmp_path / "kat.db"
    store = LocalStore(path)
    session = store.create_session({"event": "keep me"})

    assert store.open() is store
    reopened = LocalStore(path)

    assert reopened.schema_version == STORE_SCHEMA_VERSION
    assert reopened.get_session(session.id).event == "keep me"


def test_upgrade_from_first_version_keeps_data(tmp_path: Path) -> None:
    path = tmp_path / "legacy.db"
    conn = sqlite3.connect(path, isolation_level=None)
    assert apply_migrations(conn, target=1) == 1
    conn.execute(
        "INSERT INTO files(id, acquisition_id, role, mime_type, data, size) VALUES(?, ?, ?, ?, ?, ?)",
        ("file-1", "acq-1", "photo", "image/jpeg", b"jpeg", 4),
    )
    conn.close()
    assert "library" not in _tables(path)

    store = LocalStore(path)

    assert store.schema_version == 2
    assert "library" in _tables(path)
    legacy = store.get_file("file-1")
    assert legacy.data == b"jpeg"
    assert legacy.acquisition_id == "acq-1"
    assert legacy.session_id is None


def test_rerunning_migrations_is_harmless(tmp_path: Path) -> None:
    path = tmp_path / "kat.db"
    LocalStore(path).create_session({"event": "x"})
    conn = sqlite3.connect(path, isolation_level=None)
    conn.execute("PRAGMA user_version = 0")

    assert apply_migrations(conn) == STORE_SCHEMA_VERSION
    assert current_version(conn) == STORE_SCHEMA_VERSION
    assert conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0] == 1
    conn.close()
