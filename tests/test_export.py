from __future__ import annotations

import io
import json
import zipfile
from datetime import UTC, datetime

import pytest
from fakes import JPEG_BYTES, PNG_BYTES, add_capture

from kat_mobile.exceptions import NotFoundError, ValidationError
from kat_mobile.export import archive_filename, export_session_archive
from kat_mobile.storage import LocalStore

NOW = datetime(2025, 3, 2, 8, 30, tzinfo=UTC)


def test_export_archive_layout(store: LocalStore) -> None:
    session = store.create_session({"event": "Festival", "substance": "white powder"})
    store.save_session_photo(session.id, JPEG_BYTES)
    add_capture(store, session.id, spectrum={"wavelengths": [500, 501], "intensities": [1, 2]})
    add_capture(
        store,
        session.id,
        timestamp="2025-03-01T11:00:00Z",
        files={"identificationPlot": (PNG_BYTES, "image/png")},
        spectrum=None,
        csv=None,
    )

    payload = export_session_archive(store, session.id, now=NOW)

    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        names = archive.namelist()
        metadata = json.loads(archive.read("metadata.json"))
        assert archive.read("substance_photo.jpg") == JPEG_BYTES
        assert archive.read("acquisition_001.jpg") == JPEG_BYTES
        assert archive.read("acquisition_002_identification.png") == PNG_BYTES
        assert json.loads(archive.read("acquisition_001_spectrum.json"))["intensities"] == [1, 2]

    assert set(names) == {
        "metadata.json",
        "substance_photo.jpg",
        "acquisition_001.jpg",
        "acquisition_001_summary.png",
        "acquisition_001_spectrum.json",
        "acquisition_001.csv",
        "acquisition_002_identification.png",
    }
    assert metadata["event"] == "Festival"
    assert metadata["acquisitionCount"] == 2
    assert metadata["hasSubstancePhoto"] is True
    assert metadata["exportedAt"].startswith("2025-03-02T08:30:00")


def test_export_empty_session_rejected(store: LocalStore) -> None:
    session = store.create_session()
    with pytest.raises(ValidationError, match="No acquisitions to export"):
        export_session_archive(store, session.id)
    with pytest.raises(NotFoundError):
        export_session_archive(store, "missing")


def test_archive_filename(store: LocalStore) -> None:
    named = store.create_session({"event": "Club"})
    unnamed = store.create_session()

    assert archive_filename(named, now=NOW) == "Club_2025-03-02.zip"
    assert archive_filename(unnamed, now=NOW) == "test_2025-03-02.zip"
