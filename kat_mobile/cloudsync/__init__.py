"""Offline-first delivery of sessions to a remote document store."""

from .connectivity import ConnectivityMonitor
from .document import build_document, extension_for
from .engine import ConnectionTestResult, SessionSyncResult, SyncBatchResult, SyncEngine
from .options import SyncConfig
from .replicator import RemoteReceipt, SessionReplicator
from .scheduler import BackgroundSyncScheduler

__all__ = [
    "BackgroundSyncScheduler",
    "ConnectionTestResult",
    "ConnectivityMonitor",
    "RemoteReceipt",
    "SessionReplicator",
    "SessionSyncResult",
    "SyncBatchResult",
    "SyncConfig",
    "SyncEngine",
    "build_document",
    "extension_for",
]
