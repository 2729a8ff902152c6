from __future__ import annotations

import pytest

from kat_mobile.exceptions import ValidationError
from kat_mobile.settings import REDACTED, Settings, merge_settings, validate_settings_update
from kat_mobile.storage import LocalStore


def test_empty_store_returns_defaults(store: LocalStore) -> None:
    settings = store.get_settings()

    assert settings.theme == "dark"
    assert settings.sync_server_url == ""
    assert settings.sync_token == ""
    assert settings.auto_sync is False
    assert settings.camera.shutter == 5.0
    assert settings.camera.gain == 100
    assert settings.camera.laser_auto_detect is True
    assert settings.camera.laser_wavelength == 785


def test_update_merges_nested_camera_settings(store: LocalStore) -> None:
    store.update_settings({"camera_settings": {"gain": 200}})
    settings = store.update_settings({"theme": "light"})

    assert settings.theme == "light"
    assert settings.camera.gain == 200
    assert settings.camera.shutter == 5.0
    assert store.get_settings().camera.gain == 200


def test_update_normalises_server_url(store: LocalStore) -> None:
    settings = store.update_settings({"sync_server_url": " https://couch.example/ ", "sync_token": " tok "})

    assert settings.sync_server_url == "https://couch.example"
    assert settings.sync_token == "tok"
    assert settings.sync_configured


@pytest.mark.parametrize(
    "updates",
    [
        {"theme": "neon"},
        {"sync_server_url": "ftp://couch.example"},
        {"auto_sync": "yes"},
        {"camera_settings": {"gain": -1}},
        {"unknown": 1},
    ],
)
def test_invalid_updates_rejected(store: LocalStore, updates) -> None:
    with pytest.raises(ValidationError) as err:
        store.update_settings(updates)
    assert err.value.reason == "invalid_settings"
    assert store.get_settings().theme == "dark"


def test_token_is_never_shown_in_full() -> None:
    settings = Settings.from_mapping({"sync_token": "abcdefghijklmnop", "sync_server_url": "https://x.example"})

    assert "abcdefghijklmnop" not in repr(settings)
    assert settings.redacted()["sync_token"] == REDACTED
    assert settings.token_preview() == "abcdefgh..."
    assert Settings().token_preview() is None
    assert Settings().redacted()["sync_token"] == ""


def test_merge_ignores_none_and_unknown_keys() -> None:
    merged = merge_settings({"theme": None, "legacy": True, "camera_settings": {"shutter": 2.5}})

    assert merged["theme"] == "dark"
    assert "legacy" not in merged
    assert merged["camera_settings"]["shutter"] == 2.5
    assert merged["camera_settings"]["gain"] == 100


def test_validate_coerces_numbers() -> None:
    validated = validate_settings_update({"camera_settings": {"shutter": "7.5", "laser_wavelength": 532}})
    assert validated["camera_settings"] == {"shutter": 7.5, "laser_wavelength": 532.0}
