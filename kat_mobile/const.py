"""Constants shared by the store, identifier and sync engine."""

from __future__ import annotations

DOMAIN = "kat_mobile"

# Local store
STORE_SCHEMA_VERSION = 2
DEFAULT_DB_FILENAME = "kat-mobile.db"
SETTINGS_KEY = "app"
LIBRARY_KEY = "reference"

# Session is_current is stored as 1 or NULL so a partial unique index can
# guarantee a single holder.
CURRENT_MARKER = 1

FILE_ROLE_PHOTO = "photo"
FILE_ROLE_SUMMARY_PLOT = "summaryPlot"
FILE_ROLE_IDENTIFICATION_PLOT = "identificationPlot"
FILE_ROLE_SUBSTANCE_PHOTO = "substancePhoto"
ACQUISITION_FILE_ROLES: tuple[str, ...] = (
    FILE_ROLE_PHOTO,
    FILE_ROLE_SUMMARY_PLOT,
    FILE_ROLE_IDENTIFICATION_PLOT,
)

DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_PHOTO_MIME_TYPE = "image/jpeg"

# Remote sync
SYNC_COLLECTION = "kat_sessions"
DEFAULT_SYNC_INTERVAL = 300
MIN_SYNC_INTERVAL = 15
DEFAULT_HTTP_TIMEOUT = 30
SYNC_IN_PROGRESS_MESSAGE = "Sync already in progress"

MIME_EXTENSIONS: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "text/csv": "csv",
    "application/json": "json",
    "application/octet-stream": "bin",
}

# Identification
TARGET_WAVELENGTH_MIN = 500
TARGET_WAVELENGTH_MAX = 1800
TARGET_WAVELENGTH_STEP = 1
TARGET_WAVELENGTH_LENGTH = (TARGET_WAVELENGTH_MAX - TARGET_WAVELENGTH_MIN) // TARGET_WAVELENGTH_STEP + 1
DEFAULT_TOP_K = 5
DEFAULT_COSINE_WEIGHT = 0.5
SCORE_DECIMALS = 3

CONFIDENCE_HIGH = 0.90
CONFIDENCE_MODERATE = 0.70

TOKEN_PREVIEW_LENGTH = 8
