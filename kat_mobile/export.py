"""Export a session and its artifacts as a ZIP archive."""

from __future__ import annotations

import io
import json
import zipfile
from datetime import datetime
from typing import Any

from .const import FILE_ROLE_IDENTIFICATION_PLOT, FILE_ROLE_PHOTO, FILE_ROLE_SUMMARY_PLOT
from .exceptions import NotFoundError, ValidationError
from .models import Session, format_timestamp, utcnow
from .storage import LocalStore

# file role -> archive suffix
ROLE_SUFFIXES: tuple[tuple[str, str], ...] = (
    (FILE_ROLE_PHOTO, ".jpg"),
    (FILE_ROLE_SUMMARY_PLOT, "_summary.png"),
    (FILE_ROLE_IDENTIFICATION_PLOT, "_identification.png"),
)


def archive_filename(session: Session, *, now: datetime | None = None) -> str:
    stamp = (now or utcnow()).date().isoformat()
    return f"{session.event or 'test'}_{stamp}.zip"


def _file_bytes(store: LocalStore, file_id: str | None) -> bytes | None:
    if not file_id:
        return None
    try:
        return store.get_file(file_id).data or None
    except NotFoundError:
        return None


def export_session_archive(store: LocalStore, session_id: str, *, now: datetime | None = None) -> bytes:
    session = store.get_session(session_id)
    acquisitions = store.list_acquisitions(session_id)
    if not acquisitions:
        raise ValidationError("No acquisitions to export", reason="empty_session")

    metadata: dict[str, Any] = {
        "event": session.event,
        "substance": session.substance,
        "appearance": session.appearance,
        "substanceDescription": session.substance_description,
        "notes": session.notes,
        "exportedAt": format_timestamp(now or utcnow()),
        "acquisitionCount": len(acquisitions),
        "hasSubstancePhoto": bool(session.substance_photo_id),
    }

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("metadata.json", json.dumps(metadata, indent=2))
        photo = _file_bytes(store, session.substance_photo_id)
        if photo:
            archive.writestr("substance_photo.jpg", photo)
        for index, acquisition in enumerate(acquisitions, start=1):
            prefix = f"acquisition_{index:03d}"
            for role, suffix in ROLE_SUFFIXES:
                blob = _file_bytes(store, acquisition.file_ids.get(role))
                if blob:
                    archive.writestr(f"{prefix}{suffix}", blob)
            if acquisition.spectrum:
                archive.writestr(f"{prefix}_spectrum.json", json.dumps(acquisition.spectrum, indent=2))
            if acquisition.csv:
                archive.writestr(f"{prefix}.csv", acquisition.csv)
    return buffer.getvalue()


__all__ = ["archive_filename", "export_session_archive"]
