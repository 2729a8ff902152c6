"""HTTP transport for session documents."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import aiohttp
from aiohttp import ClientError, ClientSession

from ..exceptions import NetworkError, RemoteRejection
from .options import SyncConfig

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RemoteReceipt:
    """Identifier and revision assigned by the remote store."""

    doc_id: str
    rev: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"doc_id": self.doc_id, "doc_rev": self.rev}


class SessionReplicator:
    """POST whole session documents to the remote collection.

    Each call is a single request bounded by the configured timeout. There is
    no chunking and no resume; a failed call is retried only by sending the
    whole document again.
    """

    def __init__(self, session: ClientSession, config: SyncConfig) -> None:
        self.session = session
        self.config = config

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.config.timeout)

    async def transmit(self, document: Mapping[str, Any]) -> RemoteReceipt:
        self.config.require_configured()
        try:
            async with self.session.post(
                self.config.collection_url,
                data=json.dumps(document, separators=(",", ":")),
                headers={**self.config.auth_headers(), "Content-Type": "application/json"},
                timeout=self._timeout(),
            ) as resp:
                text = await resp.text()
                if resp.status < 200 or resp.status >= 300:
                    raise RemoteRejection(resp.status, text)
        except (ClientError, asyncio.TimeoutError) as err:
            raise NetworkError(f"Sync request failed: {str(err) or type(err).__name__}", reason="network") from err

        try:
            payload = json.loads(text) if text else {}
        except ValueError as err:
            raise RemoteRejection(resp.status, f"invalid response body: {text[:200]}") from err
        doc_id = payload.get("id") if isinstance(payload, Mapping) else None
        if not doc_id:
            raise RemoteRejection(resp.status, "response did not include a document id")
        rev = payload.get("rev")
        return RemoteReceipt(doc_id=str(doc_id), rev=str(rev) if rev else None)

    async def fetch_collection(self) -> tuple[int, Any]:
        """GET the collection. Returns ``(status, body)``; raises :class:`NetworkError`."""

        self.config.require_configured()
        try:
            async with self.session.get(
                self.config.collection_url,
                headers=self.config.auth_headers(),
                timeout=self._timeout(),
            ) as resp:
                status = resp.status
                text = await resp.text()
                reason = getattr(resp, "reason", None) or ""
        except (ClientError, asyncio.TimeoutError) as err:
            raise NetworkError(f"Connection failed: {str(err) or type(err).__name__}", reason="network") from err
        if status < 200 or status >= 300:
            return status, reason or text
        try:
            return status, json.loads(text) if text else {}
        except ValueError:
            _LOGGER.debug("Collection response was not JSON: %s", text[:200])
            return status, {}


__all__ = ["RemoteReceipt", "SessionReplicator"]
