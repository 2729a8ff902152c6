"""Sync queue processing: deliver queued sessions to the remote store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from aiohttp import ClientSession

from ..const import DEFAULT_HTTP_TIMEOUT, DEFAULT_SYNC_INTERVAL, SYNC_COLLECTION, SYNC_IN_PROGRESS_MESSAGE
from ..exceptions import ConfigurationError, NetworkError, NotFoundError, RemoteRejection, ValidationError
from ..models import SyncQueueItem, SyncStatus, utcnow
from ..storage import LocalStore
from .connectivity import ConnectivityMonitor
from .document import build_document
from .options import SyncConfig
from .replicator import RemoteReceipt, SessionReplicator

_LOGGER = logging.getLogger(__name__)

# Failures recorded on the queue item; anything else propagates out of a batch.
ITEM_ERRORS = (ConfigurationError, NetworkError, NotFoundError, RemoteRejection)


@dataclass(slots=True)
class SyncBatchResult:
    synced: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"synced": self.synced, "failed": self.failed, "errors": list(self.errors)}


@dataclass(slots=True)
class SessionSyncResult:
    session_id: str
    receipt: RemoteReceipt

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "session_id": self.session_id, **self.receipt.to_dict()}


@dataclass(slots=True)
class ConnectionTestResult:
    success: bool
    message: str | None = None
    error: str | None = None
    doc_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.success:
            data["message"] = self.message
            data["doc_count"] = self.doc_count
        else:
            data["error"] = self.error
        return data


class SyncEngine:
    """Owns the in-flight flag and drives the per-session state machine.

    ``pending`` items become removed (with ``Session.synced_at`` set) on success
    or ``failed`` (``retry_count`` incremented) on failure. Failed items are
    skipped by later batches until :meth:`reset_failed` is called.
    """

    def __init__(
        self,
        store: LocalStore,
        *,
        session: ClientSession | None = None,
        connectivity: ConnectivityMonitor | None = None,
        collection: str = SYNC_COLLECTION,
        interval: int = DEFAULT_SYNC_INTERVAL,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self.store = store
        self.connectivity = connectivity or ConnectivityMonitor()
        self.collection = collection
        self.interval = interval
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self.syncing = False
        self.background_running = False
        self.last_result: SyncBatchResult | None = None
        self.last_success_at: datetime | None = None
        self.last_error: str | None = None

    def config(self) -> SyncConfig:
        return SyncConfig.from_settings(
            self.store.get_settings(),
            collection=self.collection,
            interval=self.interval,
            timeout=self.timeout,
        )

    def _client(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession()
            self._owns_session = True
        return self._session

    async def async_close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    # ------------------------------------------------------------------
    def enqueue(self, session_id: str) -> SyncQueueItem:
        return self.store.enqueue(session_id)

    async def async_queue_current_session(self, *, sync_now: bool = False) -> dict[str, Any]:
        """Queue the current session, optionally running a batch right away."""

        session = self.store.get_current_session()
        if session is None:
            raise NotFoundError("session", "current")
        if not self.store.list_acquisitions(session.id):
            raise ValidationError("No acquisitions to sync", reason="empty_session")
        self.store.enqueue(session.id)
        if sync_now:
            return (await self.async_sync_all()).to_dict()
        return {"queued": True, "session_id": session.id}

    async def async_sync_session(self, session_id: str) -> SessionSyncResult:
        """Build and transmit one session, then mark it synced.

        Raises on configuration, lookup, transport or remote failures.
        """

        config = self.config()
        config.require_configured()
        document = build_document(self.store, session_id)
        replicator = SessionReplicator(self._client(), config)
        receipt = await replicator.transmit(document)
        self.store.mark_synced(session_id)
        _LOGGER.debug(
            "Synced session %s as %s (%d attachments)",
            session_id,
            receipt.doc_id,
            len(document["_attachments"]),
        )
        return SessionSyncResult(session_id=session_id, receipt=receipt)

    async def async_sync_all(self) -> SyncBatchResult:
        """Deliver every pending item. A concurrent call returns immediately."""

        if self.syncing:
            _LOGGER.debug("Sync requested while a batch is running")
            return SyncBatchResult(errors=[SYNC_IN_PROGRESS_MESSAGE])

        self.syncing = True
        result = SyncBatchResult()
        try:
            pending = self.store.list_pending()
            for item in pending:
                try:
                    await self.async_sync_session(item.session_id)
                except ITEM_ERRORS as err:
                    self.store.mark_sync_failed(item.session_id, str(err))
                    result.failed += 1
                    result.errors.append(f"{item.session_id}: {err}")
                    _LOGGER.warning("Sync failed for session %s: %s", item.session_id, err)
                else:
                    result.synced += 1
        finally:
            self.syncing = False

        self.last_result = result
        if result.synced:
            self.last_success_at = utcnow()
        self.last_error = result.errors[-1] if result.errors else None
        if pending:
            _LOGGER.info("Sync batch finished: %d synced, %d failed", result.synced, result.failed)
        return result

    async def async_test_connection(self) -> ConnectionTestResult:
        """Read the remote collection to validate URL and token. Never enqueues."""

        config = self.config()
        if not config.server_url:
            return ConnectionTestResult(False, error="Server URL not configured")
        if not config.token:
            return ConnectionTestResult(False, error="Token not configured")
        replicator = SessionReplicator(self._client(), config)
        try:
            status, body = await replicator.fetch_collection()
        except NetworkError as err:
            return ConnectionTestResult(False, error=str(err))
        if status < 200 or status >= 300:
            return ConnectionTestResult(False, error=f"Server returned {status}: {body}")
        doc_count = body.get("total_rows") if isinstance(body, dict) else None
        try:
            count = int(doc_count or 0)
        except (TypeError, ValueError):
            count = 0
        return ConnectionTestResult(True, message="Connection successful", doc_count=count)

    def reset_failed(self) -> int:
        return self.store.reset_failed()

    # ------------------------------------------------------------------
    def status(self) -> dict[str, Any]:
        settings = self.store.get_settings()
        return {
            "configured": settings.sync_configured,
            "auto_sync": settings.auto_sync,
            "pending": self.store.count_pending(),
            "failed": len(self.store.list_queue(SyncStatus.FAILED)),
            "syncing": self.syncing,
            "background_running": self.background_running,
            "online": self.connectivity.online,
            "token": settings.token_preview(),
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_error": self.last_error,
        }


__all__ = [
    "ConnectionTestResult",
    "ITEM_ERRORS",
    "SessionSyncResult",
    "SyncBatchResult",
    "SyncEngine",
]
