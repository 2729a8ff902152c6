from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Path, Request, status

from kat_mobile.const import SYNC_COLLECTION

from .auth import ROLE_READER, ROLE_WRITER, Principal, parse_token_config, principal_dependency

COLLECTION_PATTERN = r"^[a-z][a-z0-9_$()+-]*$"
TOKENS_ENV = "KAT_SYNC_TOKENS"

_LOGGER = logging.getLogger(__name__)


@dataclass
class StoredDocument:
    doc_id: str
    rev: str
    body: dict[str, Any]
    stored_at: datetime

    def to_json(self) -> dict[str, Any]:
        return {**self.body, "_id": self.doc_id, "_rev": self.rev}


def _revision(body: Mapping[str, Any], generation: int = 1) -> str:
    digest = hashlib.md5(json.dumps(body, sort_keys=True).encode(), usedforsecurity=False).hexdigest()
    return f"{generation}-{digest}"


def _check_attachments(body: Mapping[str, Any]) -> None:
    attachments = body.get("_attachments")
    if attachments is None:
        return
    if not isinstance(attachments, Mapping):
        raise ValueError("_attachments must be an object")
    for name, attachment in attachments.items():
        if not isinstance(attachment, Mapping) or not attachment.get("content_type"):
            raise ValueError(f"attachment {name} is missing content_type")
        try:
            base64.b64decode(str(attachment.get("data") or ""), validate=True)
        except (binascii.Error, ValueError) as err:
            raise ValueError(f"attachment {name} is not valid base64") from err


class DocumentState:
    """In-memory reference implementation of the remote document store."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, StoredDocument]] = {}

    # ------------------------------------------------------------------
    def insert(self, collection: str, body: Mapping[str, Any]) -> StoredDocument:
        _check_attachments(body)
        payload = {key: value for key, value in body.items() if key not in {"_id", "_rev"}}
        doc_id = str(body.get("_id") or uuid.uuid4().hex)
        docs = self.collections.setdefault(collection, {})
        if doc_id in docs:
            raise KeyError(doc_id)
        document = StoredDocument(
            doc_id=doc_id,
            rev=_revision(payload),
            body=payload,
            stored_at=datetime.now(tz=UTC),
        )
        docs[doc_id] = document
        return document

    def list_documents(self, collection: str) -> list[StoredDocument]:
        return sorted(self.collections.get(collection, {}).values(), key=lambda doc: doc.doc_id)

    def get(self, collection: str, doc_id: str) -> StoredDocument | None:
        return self.collections.get(collection, {}).get(doc_id)


def create_app(tokens: Mapping[str, Iterable[str]] | None = None) -> FastAPI:
    app = FastAPI()
    state = DocumentState()
    app.state.state = state
    app.state.tokens = {token: set(roles) for token, roles in (tokens or {}).items()}

    @app.post("/{collection}", status_code=status.HTTP_201_CREATED)
    async def handle_insert(
        request: Request,
        collection: str = Path(..., pattern=COLLECTION_PATTERN),
        principal: Principal = Depends(principal_dependency),  # noqa: B008
    ) -> dict[str, Any]:
        principal.require(ROLE_WRITER)
        try:
            body = json.loads(await request.body() or b"null")
        except ValueError as err:
            raise HTTPException(status_code=400, detail={"error": "bad_request", "reason": "invalid_json"}) from err
        if not isinstance(body, dict):
            raise HTTPException(
                status_code=400,
                detail={"error": "bad_request", "reason": "Document must be a JSON object"},
            )
        try:
            document = state.insert(collection, body)
        except KeyError as err:
            raise HTTPException(
                status_code=409,
                detail={"error": "conflict", "reason": "Document update conflict"},
            ) from err
        except ValueError as err:
            raise HTTPException(status_code=400, detail={"error": "bad_request", "reason": str(err)}) from err
        return {"ok": True, "id": document.doc_id, "rev": document.rev}

    @app.get("/{collection}")
    async def handle_info(
        collection: str = Path(..., pattern=COLLECTION_PATTERN),
        principal: Principal = Depends(principal_dependency),  # noqa: B008
    ) -> dict[str, Any]:
        principal.require(ROLE_READER, ROLE_WRITER)
        docs = state.list_documents(collection)
        return {
            "db_name": collection,
            "total_rows": len(docs),
            "offset": 0,
            "rows": [{"id": doc.doc_id, "key": doc.doc_id, "value": {"rev": doc.rev}} for doc in docs],
        }

    @app.get("/{collection}/{doc_id}")
    async def handle_get(
        doc_id: str,
        collection: str = Path(..., pattern=COLLECTION_PATTERN),
        principal: Principal = Depends(principal_dependency),  # noqa: B008
    ) -> dict[str, Any]:
        principal.require(ROLE_READER, ROLE_WRITER)
        document = state.get(collection, doc_id)
        if document is None:
            raise HTTPException(status_code=404, detail={"error": "not_found", "reason": "missing"})
        return document.to_json()

    return app


def main() -> None:
    import uvicorn

    tokens = parse_token_config(os.environ.get(TOKENS_ENV))
    if not tokens:
        raise SystemExit(f"set {TOKENS_ENV} to a comma separated list of bearer tokens")
    app = create_app(tokens)
    logging.basicConfig(level=logging.INFO)
    _LOGGER.info("Serving collection /%s with %d token(s)", SYNC_COLLECTION, len(tokens))
    uvicorn.run(app, host="0.0.0.0", port=8080)


if __name__ == "__main__":
    main()
