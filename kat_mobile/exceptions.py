"""Error taxonomy for the store, identifier and sync engine."""

from __future__ import annotations

from typing import Any


class KatMobileError(RuntimeError):
    """Base class for all errors raised by :mod:`kat_mobile`."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class StorageError(KatMobileError):
    """Raised when a local store transaction fails."""


class NotFoundError(KatMobileError, LookupError):
    """Raised when an entity cannot be found by id."""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} not found: {entity_id}", reason="not_found")
        self.kind = kind
        self.entity_id = entity_id


class ConfigurationError(KatMobileError):
    """Raised when the sync endpoint URL or token is missing."""


class NetworkError(KatMobileError):
    """Raised on transport failures and timeouts talking to the remote store."""


class RemoteRejection(KatMobileError):
    """Raised when the remote store answers with a non-2xx status."""

    def __init__(self, status: int, detail: Any = None) -> None:
        super().__init__(f"Sync failed ({status}): {detail or ''}".rstrip(), reason="remote_rejection")
        self.status = status
        self.detail = detail


class ValidationError(KatMobileError, ValueError):
    """Raised when input does not match the expected shape."""


__all__ = [
    "ConfigurationError",
    "KatMobileError",
    "NetworkError",
    "NotFoundError",
    "RemoteRejection",
    "StorageError",
    "ValidationError",
]
