"""Fake aiohttp objects and sample payloads shared by the tests."""

from __future__ import annotations

import asyncio
import base64
import json
from typing import Any

from kat_mobile.storage import LocalStore

SERVER_URL = "https://couch.example"
TOKEN = "secret-token-123"

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"jpeg-body" * 8
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"png-body" * 8


class DummyResponse:
    """Async context manager emulating an aiohttp response."""

    def __init__(
        self,
        status: int = 201,
        payload: Any = None,
        *,
        text: str | None = None,
        reason: str = "OK",
        gate: asyncio.Event | None = None,
    ) -> None:
        self.status = status
        self.reason = reason
        self._text = text if text is not None else json.dumps(payload if payload is not None else {})
        self._gate = gate

    async def text(self) -> str:
        if self._gate is not None:
            await self._gate.wait()
        return self._text

    async def __aenter__(self) -> DummyResponse:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class DummySession:
    """Records requests and replays queued responses or exceptions."""

    def __init__(self, responses: list[Any] | None = None, get_responses: list[Any] | None = None) -> None:
        self.closed = False
        self.responses = list(responses or [])
        self.get_responses = list(get_responses or [])
        self.posts: list[tuple[str, dict[str, Any]]] = []
        self.gets: list[tuple[str, dict[str, Any]]] = []

    def post(self, url: str, **kwargs: Any) -> DummyResponse:
        self.posts.append((url, kwargs))
        resp = self.responses.pop(0) if self.responses else None
        if resp is None:
            resp = DummyResponse(201, {"ok": True, "id": f"doc-{len(self.posts)}", "rev": "1-abc"})
        if isinstance(resp, BaseException):
            raise resp
        return resp

    def get(self, url: str, **kwargs: Any) -> DummyResponse:
        self.gets.append((url, kwargs))
        resp = self.get_responses.pop(0) if self.get_responses else DummyResponse(200, {"total_rows": 0})
        if isinstance(resp, BaseException):
            raise resp
        return resp

    def posted_documents(self) -> list[dict[str, Any]]:
        return [json.loads(kwargs["data"]) for _url, kwargs in self.posts]

    async def close(self) -> None:
        self.closed = True


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def add_capture(store: LocalStore, session_id: str, timestamp: str = "2025-03-01T10:00:00Z", **extra: Any):
    files = extra.pop(
        "files",
        {
            "photo": (JPEG_BYTES, "image/jpeg"),
            "summaryPlot": (PNG_BYTES, "image/png"),
        },
    )
    data = {
        "timestamp": timestamp,
        "spectrum": {"wavelengths": [500, 501, 502], "intensities": [1, 2, 3]},
        "identification": [{"rank": 1, "substance": "Cocaine HCl", "score": 0.954}],
        "laser_wavelength": 785.0,
        "detection_mode": "raman",
        "csv": "wavelength,intensity\n500,1\n501,2\n502,3\n",
        **extra,
    }
    return store.add_acquisition(session_id, data, files)
