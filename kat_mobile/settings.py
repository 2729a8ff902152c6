"""Application settings: defaults, validation and redaction."""

from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any

import voluptuous as vol

from .const import TOKEN_PREVIEW_LENGTH
from .exceptions import ValidationError

THEMES: tuple[str, ...] = ("dark", "light")
REDACTED = "**REDACTED**"

DEFAULT_CAMERA_SETTINGS: dict[str, Any] = {
    "shutter": 5.0,
    "gain": 100,
    "laser_auto_detect": True,
    "laser_wavelength": 785,
}

DEFAULT_SETTINGS: dict[str, Any] = {
    "theme": "dark",
    "sync_server_url": "",
    "sync_token": "",
    "auto_sync": False,
    "camera_settings": DEFAULT_CAMERA_SETTINGS,
}


def _normalise_url(value: str) -> str:
    text = value.strip().rstrip("/")
    if text and not text.startswith(("http://", "https://")):
        raise vol.Invalid(f"sync server URL must start with http:// or https://: {value}")
    return text


CAMERA_SCHEMA = vol.Schema(
    {
        vol.Optional("shutter"): vol.All(vol.Coerce(float), vol.Range(min=0)),
        vol.Optional("gain"): vol.All(vol.Coerce(float), vol.Range(min=0)),
        vol.Optional("laser_auto_detect"): bool,
        vol.Optional("laser_wavelength"): vol.All(vol.Coerce(float), vol.Range(min=0)),
    }
)

SETTINGS_SCHEMA = vol.Schema(
    {
        vol.Optional("theme"): vol.In(THEMES),
        vol.Optional("sync_server_url"): vol.All(str, _normalise_url),
        vol.Optional("sync_token"): vol.All(str, vol.Strip),
        vol.Optional("auto_sync"): bool,
        vol.Optional("camera_settings"): CAMERA_SCHEMA,
    }
)


def validate_settings_update(updates: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a partial settings update, raising :class:`ValidationError`."""

    try:
        return SETTINGS_SCHEMA(dict(updates))
    except vol.Invalid as err:
        raise ValidationError(f"invalid settings: {err}", reason="invalid_settings") from err


def merge_settings(stored: Mapping[str, Any] | None, updates: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Return defaults overlaid with ``stored`` and then ``updates``.

    Camera settings are merged key by key so a partial nested record never
    hides a default.
    """

    merged = deepcopy(DEFAULT_SETTINGS)
    for layer in (stored or {}, updates or {}):
        for key, value in layer.items():
            if key == "camera_settings" and isinstance(value, Mapping):
                merged["camera_settings"] = {**merged["camera_settings"], **value}
            elif key in merged and value is not None:
                merged[key] = value
    return merged


@dataclass(slots=True)
class CameraSettings:
    shutter: float = DEFAULT_CAMERA_SETTINGS["shutter"]
    gain: float = DEFAULT_CAMERA_SETTINGS["gain"]
    laser_auto_detect: bool = DEFAULT_CAMERA_SETTINGS["laser_auto_detect"]
    laser_wavelength: float = DEFAULT_CAMERA_SETTINGS["laser_wavelength"]


@dataclass(slots=True)
class Settings:
    """Singleton application settings with defaults applied."""

    theme: str = "dark"
    sync_server_url: str = ""
    sync_token: str = field(default="", repr=False)
    auto_sync: bool = False
    camera: CameraSettings = field(default_factory=CameraSettings)

    @classmethod
    def from_mapping(cls, stored: Mapping[str, Any] | None) -> Settings:
        data = merge_settings(stored)
        camera = data["camera_settings"]
        return cls(
            theme=str(data["theme"]),
            sync_server_url=str(data["sync_server_url"] or ""),
            sync_token=str(data["sync_token"] or ""),
            auto_sync=bool(data["auto_sync"]),
            camera=CameraSettings(
                shutter=camera["shutter"],
                gain=camera["gain"],
                laser_auto_detect=bool(camera["laser_auto_detect"]),
                laser_wavelength=camera["laser_wavelength"],
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "theme": self.theme,
            "sync_server_url": self.sync_server_url,
            "sync_token": self.sync_token,
            "auto_sync": self.auto_sync,
            "camera_settings": {
                "shutter": self.camera.shutter,
                "gain": self.camera.gain,
                "laser_auto_detect": self.camera.laser_auto_detect,
                "laser_wavelength": self.camera.laser_wavelength,
            },
        }

    def redacted(self) -> dict[str, Any]:
        """Return :meth:`to_dict` with the bearer token hidden."""

        data = self.to_dict()
        if data["sync_token"]:
            data["sync_token"] = REDACTED
        return data

    def token_preview(self) -> str | None:
        if not self.sync_token:
            return None
        return f"{self.sync_token[:TOKEN_PREVIEW_LENGTH]}..."

    @property
    def sync_configured(self) -> bool:
        return bool(self.sync_server_url and self.sync_token)


__all__ = [
    "CAMERA_SCHEMA",
    "DEFAULT_SETTINGS",
    "SETTINGS_SCHEMA",
    "CameraSettings",
    "Settings",
    "merge_settings",
    "validate_settings_update",
]
