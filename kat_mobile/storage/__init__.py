"""Durable local storage for sessions, acquisitions and sync state."""

from .local_store import FilePayload, LocalStore, generate_id
from .migrations import MIGRATIONS, Migration, apply_migrations, current_version

__all__ = [
    "FilePayload",
    "LocalStore",
    "generate_id",
    "MIGRATIONS",
    "Migration",
    "apply_migrations",
    "current_version",
]
