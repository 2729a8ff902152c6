"""Runtime sync configuration derived from stored settings."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..const import DEFAULT_HTTP_TIMEOUT, DEFAULT_SYNC_INTERVAL, MIN_SYNC_INTERVAL, SYNC_COLLECTION
from ..exceptions import ConfigurationError
from ..settings import Settings


@dataclass(slots=True)
class SyncConfig:
    """Configuration required to deliver sessions to the remote store."""

    server_url: str = ""
    token: str = field(default="", repr=False)
    auto_sync: bool = False
    collection: str = SYNC_COLLECTION
    interval: int = DEFAULT_SYNC_INTERVAL
    timeout: float = DEFAULT_HTTP_TIMEOUT

    @classmethod
    def from_settings(
        cls,
        settings: Settings | Mapping[str, Any],
        *,
        collection: str = SYNC_COLLECTION,
        interval: Any = DEFAULT_SYNC_INTERVAL,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> SyncConfig:
        if not isinstance(settings, Settings):
            settings = Settings.from_mapping(settings)
        try:
            interval_value = max(MIN_SYNC_INTERVAL, int(interval))
        except (TypeError, ValueError):
            interval_value = DEFAULT_SYNC_INTERVAL
        return cls(
            server_url=settings.sync_server_url.strip().rstrip("/"),
            token=settings.sync_token.strip(),
            auto_sync=settings.auto_sync,
            collection=collection.strip("/") or SYNC_COLLECTION,
            interval=interval_value,
            timeout=timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.server_url and self.token)

    @property
    def ready(self) -> bool:
        return bool(self.auto_sync and self.configured)

    @property
    def collection_url(self) -> str:
        return f"{self.server_url}/{self.collection}"

    def require_configured(self) -> None:
        if not self.server_url:
            raise ConfigurationError("Sync server URL not configured", reason="missing_url")
        if not self.token:
            raise ConfigurationError("Sync token not configured", reason="missing_token")

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


__all__ = ["SyncConfig"]
