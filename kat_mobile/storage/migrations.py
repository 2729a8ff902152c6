"""Ordered, idempotent schema migrations for the local store.

Each step is keyed by the schema version it produces. Steps only create
missing tables and indexes, so re-running one against an existing database
never destroys data. The applied version is tracked with ``PRAGMA user_version``.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass

from ..const import STORE_SCHEMA_VERSION

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Migration:
    version: int
    description: str
    script: str
    post: Callable[[sqlite3.Connection], None] | None = None


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _ensure_file_owner_columns(conn: sqlite3.Connection) -> None:
    if "session_id" not in _columns(conn, "files"):
        conn.execute("ALTER TABLE files ADD COLUMN session_id TEXT")
    conn.execute("CREATE INDEX IF NOT EXISTS files_session_id ON files(session_id)")


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        description="sessions, acquisitions, files, settings and sync queue",
        script="""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                event TEXT NOT NULL DEFAULT '',
                substance TEXT NOT NULL DEFAULT '',
                appearance TEXT NOT NULL DEFAULT '',
                custom_appearance TEXT NOT NULL DEFAULT '',
                substance_description TEXT NOT NULL DEFAULT '',
                notes TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                synced_at TEXT,
                is_current INTEGER,
                acquisition_ids TEXT NOT NULL DEFAULT '[]',
                substance_photo_id TEXT
            );
            CREATE INDEX IF NOT EXISTS sessions_created_at ON sessions(created_at);
            CREATE INDEX IF NOT EXISTS sessions_synced_at ON sessions(synced_at);
            CREATE UNIQUE INDEX IF NOT EXISTS sessions_is_current
                ON sessions(is_current) WHERE is_current IS NOT NULL;

            CREATE TABLE IF NOT EXISTS acquisitions (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                spectrum TEXT,
                identification TEXT NOT NULL DEFAULT '[]',
                laser_wavelength REAL,
                detection_mode TEXT,
                csv TEXT,
                file_ids TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS acquisitions_session_id ON acquisitions(session_id);
            CREATE INDEX IF NOT EXISTS acquisitions_timestamp ON acquisitions(timestamp);

            CREATE TABLE IF NOT EXISTS files (
                id TEXT PRIMARY KEY,
                acquisition_id TEXT,
                role TEXT NOT NULL,
                mime_type TEXT NOT NULL,
                data BLOB NOT NULL,
                size INTEGER NOT NULL
            );
            CREATE INDEX IF NOT EXISTS files_acquisition_id ON files(acquisition_id);

            CREATE TABLE IF NOT EXISTS settings (
                id TEXT PRIMARY KEY,
                payload TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sync_queue (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                status TEXT NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                queued_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS sync_queue_status ON sync_queue(status);
            CREATE UNIQUE INDEX IF NOT EXISTS sync_queue_session_id ON sync_queue(session_id);
        """,
    ),
    Migration(
        version=2,
        description="reference library cache and session-owned files",
        script="""
            CREATE TABLE IF NOT EXISTS library (
                id TEXT PRIMARY KEY,
                version TEXT,
                payload TEXT NOT NULL,
                saved_at TEXT NOT NULL
            );
        """,
        post=_ensure_file_owner_columns,
    ),
)


def current_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def apply_migrations(conn: sqlite3.Connection, *, target: int = STORE_SCHEMA_VERSION) -> int:
    """Apply every step newer than the stored version, up to ``target``.

    Returns the resulting schema version.
    """

    version = current_version(conn)
    for migration in MIGRATIONS:
        if migration.version <= version or migration.version > target:
            continue
        _LOGGER.info("Migrating local store to v%s: %s", migration.version, migration.description)
        conn.executescript(migration.script)
        if migration.post is not None:
            migration.post(conn)
        conn.execute(f"PRAGMA user_version = {int(migration.version)}")
        conn.commit()
        version = migration.version
    return version


__all__ = ["MIGRATIONS", "Migration", "apply_migrations", "current_version"]
