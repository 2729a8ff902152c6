"""Turn a capture pipeline result into a stored, identified acquisition."""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Mapping
from typing import Any

import voluptuous as vol

from .const import (
    DEFAULT_PHOTO_MIME_TYPE,
    DEFAULT_TOP_K,
    FILE_ROLE_IDENTIFICATION_PLOT,
    FILE_ROLE_PHOTO,
    FILE_ROLE_SUMMARY_PLOT,
    SCORE_DECIMALS,
)
from .exceptions import ValidationError
from .identification import SpectrumIdentifier
from .models import Acquisition, IdentificationMatch, RankedIdentification
from .storage import LocalStore

_LOGGER = logging.getLogger(__name__)

PLOT_MIME_TYPE = "image/png"

# result key -> (file role, MIME type)
BINARY_FIELDS: dict[str, tuple[str, str]] = {
    "photo": (FILE_ROLE_PHOTO, DEFAULT_PHOTO_MIME_TYPE),
    "summary_plot": (FILE_ROLE_SUMMARY_PLOT, PLOT_MIME_TYPE),
    "identification_plot": (FILE_ROLE_IDENTIFICATION_PLOT, PLOT_MIME_TYPE),
}

CAPTURE_SCHEMA = vol.Schema(
    {
        vol.Required("timestamp"): vol.All(str, vol.Length(min=1)),
        vol.Optional("spectrum"): vol.Any(None, list, dict),
        vol.Optional("preprocessed_spectrum"): vol.Any(None, [vol.Coerce(float)]),
        vol.Optional("laser_wavelength"): vol.Any(None, vol.Coerce(float)),
        vol.Optional("detection_mode"): vol.Any(None, str),
        vol.Optional("csv"): vol.Any(None, str),
        vol.Optional("photo"): vol.Any(None, str),
        vol.Optional("summary_plot"): vol.Any(None, str),
        vol.Optional("identification_plot"): vol.Any(None, str),
    },
    extra=vol.REMOVE_EXTRA,
)


def rank_matches(matches: list[IdentificationMatch]) -> list[RankedIdentification]:
    return [
        RankedIdentification(rank=index, substance=match.substance, score=round(match.score, SCORE_DECIMALS))
        for index, match in enumerate(matches, start=1)
    ]


def decode_binary(value: str) -> bytes:
    """Decode a base64 payload, accepting an optional ``data:`` URL prefix."""

    if value.startswith("data:") and "," in value:
        value = value.split(",", 1)[1]
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValidationError(f"invalid base64 payload: {err}", reason="invalid_binary") from err


def record_capture(
    store: LocalStore,
    identifier: SpectrumIdentifier | None,
    session_id: str,
    result: Mapping[str, Any],
    *,
    top_k: int = DEFAULT_TOP_K,
) -> Acquisition:
    """Identify and persist one capture result in ``session_id``."""

    try:
        data = CAPTURE_SCHEMA(dict(result))
    except vol.Invalid as err:
        raise ValidationError(f"invalid capture result: {err}", reason="invalid_capture") from err

    identification: list[RankedIdentification] = []
    query = data.get("preprocessed_spectrum")
    if identifier is None or not identifier.ready:
        _LOGGER.warning("Identification library not ready; storing capture without ranking")
    elif not query:
        _LOGGER.warning("No preprocessed spectrum in capture result")
    else:
        identification = rank_matches(identifier.identify(query, top_k))

    files = {
        role: (decode_binary(data[key]), mime_type)
        for key, (role, mime_type) in BINARY_FIELDS.items()
        if data.get(key)
    }
    return store.add_acquisition(
        session_id,
        {
            "timestamp": data["timestamp"],
            "spectrum": data.get("spectrum"),
            "identification": identification,
            "laser_wavelength": data.get("laser_wavelength"),
            "detection_mode": data.get("detection_mode"),
            "csv": data.get("csv"),
        },
        files,
    )


__all__ = ["BINARY_FIELDS", "CAPTURE_SCHEMA", "decode_binary", "rank_matches", "record_capture"]
