from __future__ import annotations

import base64

import pytest
from fastapi.testclient import TestClient

from cloud.api.auth import parse_token_config
from cloud.api.main import create_app

WRITER = {"Authorization": "Bearer tok"}
READER = {"Authorization": "Bearer ro"}


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app({"tok": {"reader", "writer"}, "ro": {"reader"}}))


def _document(**extra):
    return {
        "type": "session",
        "event": "Festival",
        "_attachments": {
            "substance_photo.jpg": {
                "content_type": "image/jpeg",
                "data": base64.b64encode(b"\xff\xd8jpeg").decode("ascii"),
            }
        },
        **extra,
    }


def test_requires_bearer_token(client: TestClient) -> None:
    missing = client.post("/kat_sessions", json=_document())
    assert missing.status_code == 401
    assert missing.json()["detail"]["reason"] == "missing_token"

    wrong = client.get("/kat_sessions", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    assert wrong.json()["detail"]["reason"] == "invalid_token"

    basic = client.get("/kat_sessions", headers={"Authorization": "Basic dG9rOg=="})
    assert basic.json()["detail"]["reason"] == "invalid_scheme"


def test_reader_cannot_insert(client: TestClient) -> None:
    resp = client.post("/kat_sessions", json=_document(), headers=READER)
    assert resp.status_code == 403
    assert resp.json()["detail"]["required"] == ["writer"]


def test_insert_then_read_back(client: TestClient) -> None:
    created = client.post("/kat_sessions", json=_document(), headers=WRITER)
    assert created.status_code == 201
    body = created.json()
    assert body["ok"] is True
    assert body["rev"].startswith("1-")

    info = client.get("/kat_sessions", headers=READER)
    assert info.status_code == 200
    assert info.json()["total_rows"] == 1
    assert info.json()["rows"][0]["id"] == body["id"]

    fetched = client.get(f"/kat_sessions/{body['id']}", headers=READER)
    assert fetched.status_code == 200
    assert fetched.json()["event"] == "Festival"
    assert fetched.json()["_rev"] == body["rev"]

    assert client.get("/kat_sessions/missing", headers=READER).status_code == 404


def test_duplicate_id_conflicts(client: TestClient) -> None:
    assert client.post("/kat_sessions", json=_document(_id="fixed"), headers=WRITER).status_code == 201
    again = client.post("/kat_sessions", json=_document(_id="fixed"), headers=WRITER)
    assert again.status_code == 409


def test_rejects_malformed_documents(client: TestClient) -> None:
    not_object = client.post("/kat_sessions", json=[1, 2], headers=WRITER)
    assert not_object.status_code == 400

    bad_attachment = client.post(
        "/kat_sessions",
        json=_document(_attachments={"plot.png": {"content_type": "image/png", "data": "***"}}),
        headers=WRITER,
    )
    assert bad_attachment.status_code == 400
    assert "plot.png" in bad_attachment.json()["detail"]["reason"]

    assert client.get("/kat_sessions", headers=READER).json()["total_rows"] == 0


def test_empty_collection_info(client: TestClient) -> None:
    resp = client.get("/other_db", headers=READER)
    assert resp.json() == {"db_name": "other_db", "total_rows": 0, "offset": 0, "rows": []}


def test_parse_token_config() -> None:
    assert parse_token_config("alpha, beta:reader") == {"alpha": {"reader", "writer"}, "beta": {"reader"}}
    assert parse_token_config("gamma:reader+writer") == {"gamma": {"reader", "writer"}}
    assert parse_token_config(None) == {}
    with pytest.raises(ValueError):
        parse_token_config("delta:admin")
