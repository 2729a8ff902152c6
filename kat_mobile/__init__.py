"""Offline-first core for the KAT mobile spectrometer app.

The package stores sessions and captures locally, ranks spectra against a
cached reference library and delivers finished sessions to a remote
document store when connectivity allows.
"""

from .capture import record_capture
from .cloudsync import BackgroundSyncScheduler, ConnectivityMonitor, SyncConfig, SyncEngine
from .exceptions import (
    ConfigurationError,
    KatMobileError,
    NetworkError,
    NotFoundError,
    RemoteRejection,
    StorageError,
    ValidationError,
)
from .export import archive_filename, export_session_archive
from .identification import SpectrumIdentifier, confidence_label
from .settings import Settings
from .storage import LocalStore

__version__ = "0.3.0"

__all__ = [
    "BackgroundSyncScheduler",
    "ConfigurationError",
    "ConnectivityMonitor",
    "KatMobileError",
    "LocalStore",
    "NetworkError",
    "NotFoundError",
    "RemoteRejection",
    "Settings",
    "SpectrumIdentifier",
    "StorageError",
    "SyncConfig",
    "SyncEngine",
    "ValidationError",
    "archive_filename",
    "confidence_label",
    "export_session_archive",
    "record_capture",
]
