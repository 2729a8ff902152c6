"""SQLite-backed local store for sessions, acquisitions and sync state."""

from __future__ import annotations

import io
import json
import logging
import sqlite3
import threading
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from ..const import CURRENT_MARKER, DEFAULT_MIME_TYPE, DEFAULT_PHOTO_MIME_TYPE, FILE_ROLE_SUBSTANCE_PHOTO, LIBRARY_KEY, SETTINGS_KEY
from ..exceptions import NotFoundError, StorageError, ValidationError
from ..models import (
    SESSION_TEXT_FIELDS,
    Acquisition,
    BinaryObject,
    RankedIdentification,
    ReferenceLibrary,
    Session,
    SyncQueueItem,
    SyncStatus,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from ..settings import Settings, merge_settings, validate_settings_update
from .migrations import apply_migrations

_LOGGER = logging.getLogger(__name__)

FilePayload = bytes | tuple[bytes, str]

# the substance photo changes only through save_session_photo/delete_session_photo
_SESSION_UPDATABLE = frozenset((*SESSION_TEXT_FIELDS, "synced_at"))
_TABLES: tuple[str, ...] = ("files", "acquisitions", "sync_queue", "sessions", "settings", "library")


def generate_id() -> str:
    return str(uuid.uuid4())


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


class LocalStore:
    """Durable store for the six entity collections.

    Every public method runs in its own transaction. A caller that reads a
    record, mutates it and writes it back through two calls gets no isolation
    against another writer interleaving between those calls.
    """

    def __init__(self, path: str | Path) -> None:
        self._is_memory = str(path) == ":memory:"
        self.path = Path(path)
        if not self._is_memory:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._shared_conn: sqlite3.Connection | None = None
        self._shared_lock = threading.RLock()
        self._opened = False
        self.schema_version = 0
        self.open()

    # ------------------------------------------------------------------
    def open(self) -> LocalStore:
        """Create or upgrade the schema. Safe to call repeatedly."""

        if self._opened:
            return self
        with self._connection() as conn:
            self.schema_version = apply_migrations(conn)
        self._opened = True
        _LOGGER.debug("Opened local store %s (schema v%s)", self.path, self.schema_version)
        return self

    def close(self) -> None:
        with self._shared_lock:
            if self._shared_conn is not None:
                self._shared_conn.close()
                self._shared_conn = None
        self._opened = False

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            if self._is_memory:
                # one connection shared across threads, serialised by the lock
                with self._shared_lock:
                    if self._shared_conn is None:
                        self._shared_conn = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
                        self._shared_conn.row_factory = sqlite3.Row
                    yield self._shared_conn
            else:
                conn = sqlite3.connect(self.path, isolation_level=None)
                conn.row_factory = sqlite3.Row
                try:
                    yield conn
                finally:
                    conn.close()
        except sqlite3.Error as err:
            raise StorageError(f"local store failure: {err}", reason="sqlite") from err

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def clear_all_data(self) -> None:
        with self._transaction() as conn:
            for table in _TABLES:
                conn.execute(f"DELETE FROM {table}")
        _LOGGER.info("Cleared all local data")

    # ------------------------------------------------------------------
    # Sessions
    def create_session(self, metadata: Mapping[str, Any] | None = None) -> Session:
        """Create a new current session, clearing the marker on the previous one."""

        metadata = metadata or {}
        now = utcnow()
        session = Session(
            id=generate_id(),
            created_at=now,
            updated_at=now,
            is_current=True,
            **{key: str(metadata.get(key) or "") for key in SESSION_TEXT_FIELDS},
        )
        with self._transaction() as conn:
            conn.execute(
                "UPDATE sessions SET is_current = NULL, updated_at = ? WHERE is_current = ?",
                (format_timestamp(now), CURRENT_MARKER),
            )
            self._write_session(conn, session, insert=True)
        _LOGGER.info("Created session %s", session.id)
        return session

    def get_session(self, session_id: str) -> Session:
        with self._connection() as conn:
            return self._require_session(conn, session_id)

    def get_current_session(self) -> Session | None:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE is_current = ?", (CURRENT_MARKER,)).fetchone()
        return self._session_from_row(row) if row else None

    def load_or_create_current_session(self) -> Session:
        return self.get_current_session() or self.create_session()

    def update_session(self, session_id: str, updates: Mapping[str, Any]) -> Session:
        unknown = set(updates) - _SESSION_UPDATABLE
        if unknown:
            raise ValidationError(
                f"cannot update session fields: {', '.join(sorted(unknown))}",
                reason="invalid_field",
            )
        with self._transaction() as conn:
            session = self._require_session(conn, session_id)
            for key, value in updates.items():
                if key == "synced_at":
                    session.synced_at = parse_timestamp(value)
                else:
                    setattr(session, key, str(value or ""))
            session.updated_at = utcnow()
            self._write_session(conn, session)
        return session

    def delete_session(self, session_id: str) -> bool:
        """Delete a session with its acquisitions, files and queue entry."""

        with self._transaction() as conn:
            row = conn.execute("SELECT id FROM sessions WHERE id = ?", (session_id,)).fetchone()
            if row is None:
                return False
            acquisition_ids = [
                r["id"]
                for r in conn.execute("SELECT id FROM acquisitions WHERE session_id = ?", (session_id,)).fetchall()
            ]
            conn.executemany("DELETE FROM files WHERE acquisition_id = ?", ((acq_id,) for acq_id in acquisition_ids))
            conn.execute("DELETE FROM acquisitions WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM files WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM sync_queue WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        _LOGGER.info("Deleted session %s with %d acquisitions", session_id, len(acquisition_ids))
        return True

    def list_sessions(self) -> list[Session]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM sessions ORDER BY created_at DESC").fetchall()
        return [self._session_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Acquisitions
    def add_acquisition(
        self,
        session_id: str,
        data: Mapping[str, Any],
        files: Mapping[str, FilePayload | None] | None = None,
    ) -> Acquisition:
        """Store an acquisition with its binaries and append it to the session."""

        acquisition = Acquisition(
            id=generate_id(),
            session_id=session_id,
            timestamp=str(data.get("timestamp") or format_timestamp(utcnow())),
            spectrum=data.get("spectrum"),
            identification=[
                item if isinstance(item, RankedIdentification) else RankedIdentification.from_payload(item)
                for item in data.get("identification") or []
            ],
            laser_wavelength=_optional_float(data.get("laser_wavelength")),
            detection_mode=data.get("detection_mode"),
            csv=data.get("csv"),
        )
        with self._transaction() as conn:
            session = self._require_session(conn, session_id)
            for role, payload in (files or {}).items():
                if not payload:
                    continue
                blob, mime_type = _split_payload(payload, DEFAULT_MIME_TYPE)
                binary = BinaryObject(
                    id=generate_id(),
                    role=role,
                    mime_type=mime_type,
                    data=blob,
                    acquisition_id=acquisition.id,
                )
                self._insert_file(conn, binary)
                acquisition.file_ids[role] = binary.id
            conn.execute(
                """
                INSERT INTO acquisitions(id, session_id, timestamp, spectrum, identification,
                                         laser_wavelength, detection_mode, csv, file_ids, created_at)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    acquisition.id,
                    acquisition.session_id,
                    acquisition.timestamp,
                    _dumps(acquisition.spectrum),
                    _dumps([item.to_dict() for item in acquisition.identification]),
                    acquisition.laser_wavelength,
                    acquisition.detection_mode,
                    acquisition.csv,
                    _dumps(acquisition.file_ids),
                    format_timestamp(acquisition.created_at),
                ),
            )
            session.acquisition_ids.append(acquisition.id)
            session.updated_at = utcnow()
            self._write_session(conn, session)
        _LOGGER.debug("Stored acquisition %s in session %s", acquisition.id, session_id)
        return acquisition

    def get_acquisition(self, acquisition_id: str) -> Acquisition:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM acquisitions WHERE id = ?", (acquisition_id,)).fetchone()
        if row is None:
            raise NotFoundError("acquisition", acquisition_id)
        return self._acquisition_from_row(row)

    def list_acquisitions(self, session_id: str) -> list[Acquisition]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM acquisitions WHERE session_id = ? ORDER BY timestamp ASC",
                (session_id,),
            ).fetchall()
        return [self._acquisition_from_row(row) for row in rows]

    def delete_acquisition(self, acquisition_id: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute("SELECT session_id FROM acquisitions WHERE id = ?", (acquisition_id,)).fetchone()
            if row is None:
                return False
            conn.execute("DELETE FROM files WHERE acquisition_id = ?", (acquisition_id,))
            conn.execute("DELETE FROM acquisitions WHERE id = ?", (acquisition_id,))
            session_row = conn.execute("SELECT * FROM sessions WHERE id = ?", (row["session_id"],)).fetchone()
            if session_row is not None:
                session = self._session_from_row(session_row)
                session.acquisition_ids = [item for item in session.acquisition_ids if item != acquisition_id]
                session.updated_at = utcnow()
                self._write_session(conn, session)
        return True

    # ------------------------------------------------------------------
    # Files
    def get_file(self, file_id: str) -> BinaryObject:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM files WHERE id = ?", (file_id,)).fetchone()
        if row is None:
            raise NotFoundError("file", file_id)
        return self._file_from_row(row)

    def open_file(self, file_id: str) -> io.BytesIO:
        """Return a transient view of a file's bytes. The caller must close it."""

        return io.BytesIO(self.get_file(file_id).data)

    def delete_file(self, file_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM files WHERE id = ?", (file_id,))

    def list_files(self, *, acquisition_id: str | None = None, session_id: str | None = None) -> list[BinaryObject]:
        if acquisition_id is not None:
            query, params = "SELECT * FROM files WHERE acquisition_id = ?", (acquisition_id,)
        elif session_id is not None:
            query, params = "SELECT * FROM files WHERE session_id = ?", (session_id,)
        else:
            query, params = "SELECT * FROM files", ()
        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._file_from_row(row) for row in rows]

    def count_files(self) -> int:
        with self._connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM files").fetchone()
        return int(row["total"]) if row and row["total"] is not None else 0

    def save_session_photo(self, session_id: str, data: bytes, mime_type: str | None = None) -> str:
        """Store the substance photo for a session, replacing any previous one."""

        binary = BinaryObject(
            id=generate_id(),
            role=FILE_ROLE_SUBSTANCE_PHOTO,
            mime_type=mime_type or DEFAULT_PHOTO_MIME_TYPE,
            data=data,
            session_id=session_id,
        )
        with self._transaction() as conn:
            session = self._require_session(conn, session_id)
            if session.substance_photo_id:
                conn.execute("DELETE FROM files WHERE id = ?", (session.substance_photo_id,))
            self._insert_file(conn, binary)
            session.substance_photo_id = binary.id
            session.updated_at = utcnow()
            self._write_session(conn, session)
        return binary.id

    def get_session_photo(self, session_id: str) -> BinaryObject | None:
        session = self.get_session(session_id)
        if not session.substance_photo_id:
            return None
        try:
            return self.get_file(session.substance_photo_id)
        except NotFoundError:
            return None

    def delete_session_photo(self, session_id: str) -> None:
        with self._transaction() as conn:
            session = self._require_session(conn, session_id)
            if not session.substance_photo_id:
                return
            conn.execute("DELETE FROM files WHERE id = ?", (session.substance_photo_id,))
            session.substance_photo_id = None
            session.updated_at = utcnow()
            self._write_session(conn, session)

    # ------------------------------------------------------------------
    # Settings
    def get_settings(self) -> Settings:
        return Settings.from_mapping(self._stored_settings())

    def update_settings(self, updates: Mapping[str, Any]) -> Settings:
        validated = validate_settings_update(updates)
        with self._transaction() as conn:
            row = conn.execute("SELECT payload FROM settings WHERE id = ?", (SETTINGS_KEY,)).fetchone()
            stored = json.loads(row["payload"]) if row else {}
            merged = merge_settings(stored, validated)
            conn.execute(
                "INSERT OR REPLACE INTO settings(id, payload) VALUES(?, ?)",
                (SETTINGS_KEY, _dumps(merged)),
            )
        return Settings.from_mapping(merged)

    def _stored_settings(self) -> dict[str, Any]:
        with self._connection() as conn:
            row = conn.execute("SELECT payload FROM settings WHERE id = ?", (SETTINGS_KEY,)).fetchone()
        if not row:
            return {}
        payload = json.loads(row["payload"])
        return payload if isinstance(payload, dict) else {}

    # ------------------------------------------------------------------
    # Sync queue
    def enqueue(self, session_id: str) -> SyncQueueItem:
        """Queue a session for sync. Returns the existing item if already queued."""

        with self._transaction() as conn:
            self._require_session(conn, session_id)
            row = conn.execute("SELECT * FROM sync_queue WHERE session_id = ?", (session_id,)).fetchone()
            if row is not None:
                return self._queue_item_from_row(row)
            item = SyncQueueItem(id=generate_id(), session_id=session_id)
            conn.execute(
                """
                INSERT INTO sync_queue(id, session_id, status, retry_count, last_error, queued_at)
                VALUES(?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.session_id,
                    str(item.status),
                    item.retry_count,
                    item.last_error,
                    format_timestamp(item.queued_at),
                ),
            )
        _LOGGER.debug("Queued session %s for sync", session_id)
        return item

    def get_queue_item(self, session_id: str) -> SyncQueueItem | None:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM sync_queue WHERE session_id = ?", (session_id,)).fetchone()
        return self._queue_item_from_row(row) if row else None

    def list_queue(self, status: SyncStatus | None = None) -> list[SyncQueueItem]:
        query = "SELECT * FROM sync_queue"
        params: tuple[Any, ...] = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (str(status),)
        query += " ORDER BY queued_at ASC"
        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._queue_item_from_row(row) for row in rows]

    def list_pending(self) -> list[SyncQueueItem]:
        return self.list_queue(SyncStatus.PENDING)

    def count_pending(self) -> int:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM sync_queue WHERE status = ?",
                (str(SyncStatus.PENDING),),
            ).fetchone()
        return int(row["total"]) if row and row["total"] is not None else 0

    def mark_synced(self, session_id: str, synced_at: datetime | None = None) -> Session:
        """Record a successful delivery: set ``synced_at`` and drop the queue item."""

        with self._transaction() as conn:
            session = self._require_session(conn, session_id)
            session.synced_at = synced_at or utcnow()
            session.updated_at = utcnow()
            self._write_session(conn, session)
            conn.execute("DELETE FROM sync_queue WHERE session_id = ?", (session_id,))
        return session

    def mark_sync_failed(self, session_id: str, error: str) -> SyncQueueItem | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM sync_queue WHERE session_id = ?", (session_id,)).fetchone()
            if row is None:
                return None
            item = self._queue_item_from_row(row)
            item.status = SyncStatus.FAILED
            item.retry_count += 1
            item.last_error = error
            conn.execute(
                "UPDATE sync_queue SET status = ?, retry_count = ?, last_error = ? WHERE id = ?",
                (str(item.status), item.retry_count, item.last_error, item.id),
            )
        return item

    def reset_failed(self) -> int:
        """Move every failed queue item back to pending. Returns the count."""

        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE sync_queue SET status = ? WHERE status = ?",
                (str(SyncStatus.PENDING), str(SyncStatus.FAILED)),
            )
            count = cursor.rowcount
        if count:
            _LOGGER.info("Reset %d failed sync items to pending", count)
        return count

    # ------------------------------------------------------------------
    # Reference library
    def save_library(self, library: ReferenceLibrary | Mapping[str, Any]) -> ReferenceLibrary:
        if not isinstance(library, ReferenceLibrary):
            library = ReferenceLibrary.from_payload(library)
        library.saved_at = utcnow()
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO library(id, version, payload, saved_at) VALUES(?, ?, ?, ?)",
                (LIBRARY_KEY, library.version, _dumps(library.to_payload()), format_timestamp(library.saved_at)),
            )
        return library

    def get_library(self) -> ReferenceLibrary | None:
        with self._connection() as conn:
            row = conn.execute("SELECT payload FROM library WHERE id = ?", (LIBRARY_KEY,)).fetchone()
        if row is None:
            return None
        return ReferenceLibrary.from_payload(json.loads(row["payload"]))

    def get_library_version(self) -> str | None:
        with self._connection() as conn:
            row = conn.execute("SELECT version FROM library WHERE id = ?", (LIBRARY_KEY,)).fetchone()
        return row["version"] if row else None

    def clear_library(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM library WHERE id = ?", (LIBRARY_KEY,))

    # ------------------------------------------------------------------
    def _require_session(self, conn: sqlite3.Connection, session_id: str) -> Session:
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            raise NotFoundError("session", session_id)
        return self._session_from_row(row)

    def _write_session(self, conn: sqlite3.Connection, session: Session, *, insert: bool = False) -> None:
        verb = "INSERT" if insert else "REPLACE"
        conn.execute(
            f"""
            {verb} INTO sessions(id, event, substance, appearance, custom_appearance, substance_description,
                                 notes, created_at, updated_at, synced_at, is_current, acquisition_ids,
                                 substance_photo_id)
            VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session.id,
                session.event,
                session.substance,
                session.appearance,
                session.custom_appearance,
                session.substance_description,
                session.notes,
                format_timestamp(session.created_at),
                format_timestamp(session.updated_at),
                format_timestamp(session.synced_at),
                CURRENT_MARKER if session.is_current else None,
                _dumps(session.acquisition_ids),
                session.substance_photo_id,
            ),
        )

    def _insert_file(self, conn: sqlite3.Connection, binary: BinaryObject) -> None:
        conn.execute(
            """
            INSERT INTO files(id, acquisition_id, session_id, role, mime_type, data, size)
            VALUES(?, ?, ?, ?, ?, ?, ?)
            """,
            (
                binary.id,
                binary.acquisition_id,
                binary.session_id,
                binary.role,
                binary.mime_type,
                sqlite3.Binary(binary.data),
                binary.size,
            ),
        )

    @staticmethod
    def _session_from_row(row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            event=row["event"],
            substance=row["substance"],
            appearance=row["appearance"],
            custom_appearance=row["custom_appearance"],
            substance_description=row["substance_description"],
            notes=row["notes"],
            created_at=parse_timestamp(row["created_at"]) or utcnow(),
            updated_at=parse_timestamp(row["updated_at"]) or utcnow(),
            synced_at=parse_timestamp(row["synced_at"]),
            is_current=row["is_current"] == CURRENT_MARKER,
            acquisition_ids=list(json.loads(row["acquisition_ids"] or "[]")),
            substance_photo_id=row["substance_photo_id"],
        )

    @staticmethod
    def _acquisition_from_row(row: sqlite3.Row) -> Acquisition:
        return Acquisition(
            id=row["id"],
            session_id=row["session_id"],
            timestamp=row["timestamp"],
            spectrum=json.loads(row["spectrum"]) if row["spectrum"] is not None else None,
            identification=[
                RankedIdentification.from_payload(item) for item in json.loads(row["identification"] or "[]")
            ],
            laser_wavelength=row["laser_wavelength"],
            detection_mode=row["detection_mode"],
            csv=row["csv"],
            file_ids=dict(json.loads(row["file_ids"] or "{}")),
            created_at=parse_timestamp(row["created_at"]) or utcnow(),
        )

    @staticmethod
    def _file_from_row(row: sqlite3.Row) -> BinaryObject:
        return BinaryObject(
            id=row["id"],
            role=row["role"],
            mime_type=row["mime_type"],
            data=bytes(row["data"]),
            size=int(row["size"]),
            acquisition_id=row["acquisition_id"],
            session_id=row["session_id"],
        )

    @staticmethod
    def _queue_item_from_row(row: sqlite3.Row) -> SyncQueueItem:
        return SyncQueueItem(
            id=row["id"],
            session_id=row["session_id"],
            status=SyncStatus(row["status"]),
            retry_count=int(row["retry_count"] or 0),
            last_error=row["last_error"],
            queued_at=parse_timestamp(row["queued_at"]) or utcnow(),
        )


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _split_payload(payload: FilePayload, default_mime: str) -> tuple[bytes, str]:
    if isinstance(payload, tuple):
        blob, mime_type = payload
        return bytes(blob), mime_type or default_mime
    return bytes(payload), default_mime


__all__ = ["FilePayload", "LocalStore", "generate_id"]
