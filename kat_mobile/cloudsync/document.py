"""Build the remote session document with its inline attachments."""

from __future__ import annotations

import base64
import logging
from datetime import datetime
from typing import Any

from ..const import DEFAULT_PHOTO_MIME_TYPE, MIME_EXTENSIONS
from ..exceptions import NotFoundError
from ..models import Acquisition, BinaryObject, format_timestamp, utcnow
from ..storage import LocalStore

_LOGGER = logging.getLogger(__name__)

DOCUMENT_TYPE = "session"
SUBSTANCE_PHOTO_ATTACHMENT = "substance_photo.jpg"
CSV_CONTENT_TYPE = "text/csv"


def extension_for(mime_type: str | None) -> str:
    return MIME_EXTENSIONS.get(mime_type or "", "bin")


def encode_attachment(data: bytes, content_type: str) -> dict[str, str]:
    return {"content_type": content_type, "data": base64.b64encode(data).decode("ascii")}


def acquisition_record(acquisition: Acquisition) -> dict[str, Any]:
    return {
        "timestamp": acquisition.timestamp,
        "spectrum": acquisition.spectrum,
        "identification": [item.to_dict() for item in acquisition.identification],
        "laserWavelength": acquisition.laser_wavelength,
        "detectionMode": acquisition.detection_mode,
    }


def build_document(store: LocalStore, session_id: str, *, now: datetime | None = None) -> dict[str, Any]:
    """Assemble one self-contained document for ``session_id``.

    Every binary object owned by the session or its acquisitions, plus each
    acquisition's exported CSV, becomes a base64 entry in ``_attachments``.
    Missing binaries are skipped.
    """

    session = store.get_session(session_id)
    acquisitions = store.list_acquisitions(session_id)
    doc: dict[str, Any] = {
        "type": DOCUMENT_TYPE,
        "event": session.event,
        "substance": session.substance,
        "appearance": session.appearance,
        "customAppearance": session.custom_appearance,
        "substanceDescription": session.substance_description,
        "notes": session.notes,
        "createdAt": format_timestamp(session.created_at),
        "syncedAt": format_timestamp(now or utcnow()),
        "acquisitions": [],
        "_attachments": {},
    }
    attachments: dict[str, dict[str, str]] = doc["_attachments"]

    photo = _load_file(store, session.substance_photo_id)
    if photo is not None and photo.data:
        attachments[SUBSTANCE_PHOTO_ATTACHMENT] = encode_attachment(
            photo.data, photo.mime_type or DEFAULT_PHOTO_MIME_TYPE
        )

    for acquisition in acquisitions:
        doc["acquisitions"].append(acquisition_record(acquisition))
        for role, file_id in acquisition.file_ids.items():
            binary = _load_file(store, file_id)
            if binary is None or not binary.data:
                continue
            name = f"{acquisition.timestamp}_{role}.{extension_for(binary.mime_type)}"
            attachments[name] = encode_attachment(binary.data, binary.mime_type)
        if acquisition.csv:
            attachments[f"{acquisition.timestamp}_spectrum.csv"] = encode_attachment(
                acquisition.csv.encode("utf-8"), CSV_CONTENT_TYPE
            )
    return doc


def _load_file(store: LocalStore, file_id: str | None) -> BinaryObject | None:
    if not file_id:
        return None
    try:
        return store.get_file(file_id)
    except NotFoundError:
        _LOGGER.debug("Attachment %s missing from local store", file_id)
        return None


__all__ = [
    "DOCUMENT_TYPE",
    "SUBSTANCE_PHOTO_ATTACHMENT",
    "acquisition_record",
    "build_document",
    "encode_attachment",
    "extension_for",
]
