"""Data model for sessions, acquisitions, binary objects and sync state."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from .const import TARGET_WAVELENGTH_LENGTH
from .exceptions import ValidationError

SESSION_TEXT_FIELDS: tuple[str, ...] = (
    "event",
    "substance",
    "appearance",
    "custom_appearance",
    "substance_description",
    "notes",
)


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp, returning ``None`` for empty or invalid input."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        try:
            ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat()


@dataclass(slots=True)
class Session:
    """One test event grouping zero or more acquisitions."""

    id: str
    event: str = ""
    substance: str = ""
    appearance: str = ""
    custom_appearance: str = ""
    substance_description: str = ""
    notes: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    synced_at: datetime | None = None
    is_current: bool = False
    acquisition_ids: list[str] = field(default_factory=list)
    substance_photo_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event": self.event,
            "substance": self.substance,
            "appearance": self.appearance,
            "custom_appearance": self.custom_appearance,
            "substance_description": self.substance_description,
            "notes": self.notes,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "synced_at": format_timestamp(self.synced_at),
            "is_current": self.is_current,
            "acquisition_ids": list(self.acquisition_ids),
            "substance_photo_id": self.substance_photo_id,
        }


@dataclass(slots=True)
class RankedIdentification:
    """Persisted identification entry attached to an acquisition."""

    rank: int
    substance: str
    score: float

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> RankedIdentification:
        return cls(
            rank=int(payload.get("rank") or 0),
            substance=str(payload.get("substance") or ""),
            score=float(payload.get("score") or 0.0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"rank": self.rank, "substance": self.substance, "score": self.score}


@dataclass(slots=True)
class IdentificationMatch:
    """One scored library entry returned by the identifier."""

    substance: str
    score: float
    cosine_score: float
    pearson_score: float


@dataclass(slots=True)
class Acquisition:
    """One captured spectrum with its ranking and binary artifacts.

    Acquisitions are immutable once stored; ``file_ids`` maps a role
    (``photo``, ``summaryPlot``, ``identificationPlot``) to a binary object id.
    """

    id: str
    session_id: str
    timestamp: str
    spectrum: Any = None
    identification: list[RankedIdentification] = field(default_factory=list)
    laser_wavelength: float | None = None
    detection_mode: str | None = None
    csv: str | None = None
    file_ids: dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "spectrum": self.spectrum,
            "identification": [item.to_dict() for item in self.identification],
            "laser_wavelength": self.laser_wavelength,
            "detection_mode": self.detection_mode,
            "csv": self.csv,
            "file_ids": dict(self.file_ids),
            "created_at": format_timestamp(self.created_at),
        }


@dataclass(slots=True)
class BinaryObject:
    """Binary attachment owned by exactly one acquisition or session."""

    id: str
    role: str
    mime_type: str
    data: bytes
    size: int = -1
    acquisition_id: str | None = None
    session_id: str | None = None

    def __post_init__(self) -> None:
        if (self.acquisition_id is None) == (self.session_id is None):
            raise ValidationError(
                f"binary object {self.id} must have exactly one owner",
                reason="invalid_owner",
            )
        if self.size < 0:
            self.size = len(self.data)

    @property
    def owner_id(self) -> str:
        return self.acquisition_id or self.session_id or ""


class SyncStatus(StrEnum):
    """Delivery state of a queued session. Success removes the queue item."""

    PENDING = "pending"
    FAILED = "failed"


@dataclass(slots=True)
class SyncQueueItem:
    id: str
    session_id: str
    status: SyncStatus = SyncStatus.PENDING
    retry_count: int = 0
    last_error: str | None = None
    queued_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "status": str(self.status),
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "queued_at": format_timestamp(self.queued_at),
        }


@dataclass(slots=True)
class ReferenceSpectrum:
    name: str
    data: list[float]


@dataclass(slots=True)
class ReferenceLibrary:
    """Cached reference spectra used for offline matching."""

    version: str | None = None
    wavelength_axis: list[float] = field(default_factory=list)
    substances: list[ReferenceSpectrum] = field(default_factory=list)
    saved_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ReferenceLibrary:
        """Build a library from the bundled dataset shape.

        ``{"version": ..., "wavelengthAxis": [...], "substances": [{"name", "data"}]}``
        """

        version_raw = payload.get("version")
        axis_raw = payload.get("wavelengthAxis") or payload.get("wavelength_axis") or []
        substances: list[ReferenceSpectrum] = []
        for item in payload.get("substances") or []:
            if not isinstance(item, Mapping):
                continue
            name = str(item.get("name") or "").strip()
            data = item.get("data")
            if not name or not isinstance(data, Sequence) or isinstance(data, str | bytes):
                continue
            substances.append(ReferenceSpectrum(name=name, data=[float(value) for value in data]))
        return cls(
            version=str(version_raw) if version_raw is not None else None,
            wavelength_axis=[float(value) for value in axis_raw],
            substances=substances,
            saved_at=parse_timestamp(payload.get("savedAt")),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "wavelengthAxis": list(self.wavelength_axis),
            "substances": [{"name": item.name, "data": list(item.data)} for item in self.substances],
            "savedAt": format_timestamp(self.saved_at),
        }

    @property
    def axis_length(self) -> int:
        return len(self.wavelength_axis) if self.wavelength_axis else TARGET_WAVELENGTH_LENGTH

    @property
    def substance_count(self) -> int:
        return len(self.substances)
