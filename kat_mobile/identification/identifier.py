"""Correlation-based spectrum identification against a cached library."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from ..const import CONFIDENCE_HIGH, CONFIDENCE_MODERATE, DEFAULT_COSINE_WEIGHT, DEFAULT_TOP_K
from ..exceptions import ValidationError
from ..models import IdentificationMatch, ReferenceLibrary
from ..storage import LocalStore
from .scoring import score_matrix

_LOGGER = logging.getLogger(__name__)

DEFAULT_DATASET_PATH = Path(__file__).with_name("data") / "library.json"


@dataclass(slots=True)
class LibrarySyncResult:
    synced: bool
    from_cache: bool
    substance_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "synced": self.synced,
            "from_cache": self.from_cache,
            "substance_count": self.substance_count,
        }


def confidence_label(score: float) -> str:
    if score >= CONFIDENCE_HIGH:
        return "High"
    if score >= CONFIDENCE_MODERATE:
        return "Moderate"
    return "Low"


class SpectrumIdentifier:
    """Rank reference substances against a query spectrum.

    The library is read from the local store when cached, otherwise from the
    bundled dataset, which is then cached even when it holds no substances.
    An empty library leaves the identifier loaded but not ready.
    """

    def __init__(self, store: LocalStore, *, dataset_path: Path | str | None = None) -> None:
        self.store = store
        self.dataset_path = Path(dataset_path) if dataset_path else DEFAULT_DATASET_PATH
        self.library: ReferenceLibrary | None = None
        self._names: list[str] = []
        self._matrix = np.empty((0, 0))

    @property
    def loaded(self) -> bool:
        return self.library is not None

    @property
    def ready(self) -> bool:
        return bool(self._names)

    @property
    def version(self) -> str | None:
        return self.library.version if self.library else None

    @property
    def substance_count(self) -> int:
        return len(self._names)

    @property
    def axis_length(self) -> int | None:
        return self.library.axis_length if self.library else None

    # ------------------------------------------------------------------
    def load_from_cache(self) -> bool:
        library = self.store.get_library()
        if library is None:
            return False
        self._use(library)
        _LOGGER.debug("Loaded %d reference spectra from cache (v%s)", self.substance_count, self.version)
        return True

    def fetch_and_cache(self) -> bool:
        try:
            payload = json.loads(self.dataset_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as err:
            _LOGGER.warning("Unable to read reference dataset %s: %s", self.dataset_path, err)
            return False
        if not isinstance(payload, Mapping):
            _LOGGER.warning("Reference dataset %s is not an object", self.dataset_path)
            return False
        library = self.store.save_library(ReferenceLibrary.from_payload(payload))
        self._use(library)
        if not self.ready:
            _LOGGER.warning("Reference dataset %s has no usable substances", self.dataset_path)
        else:
            _LOGGER.info("Loaded %d reference spectra (v%s)", self.substance_count, self.version)
        return True

    def sync(self) -> LibrarySyncResult:
        if self.load_from_cache():
            return LibrarySyncResult(True, True, self.substance_count)
        fetched = self.fetch_and_cache()
        return LibrarySyncResult(fetched, False, self.substance_count)

    async def async_sync(self) -> LibrarySyncResult:
        return await asyncio.to_thread(self.sync)

    def clear_cache(self) -> None:
        self.store.clear_library()
        self.library = None
        self._names = []
        self._matrix = np.empty((0, 0))
        _LOGGER.info("Reference library cache cleared")

    # ------------------------------------------------------------------
    def check_query(self, query: Any) -> np.ndarray:
        """Return ``query`` as a float vector matching the library axis."""

        if self.library is None:
            raise ValidationError("reference library is not loaded", reason="not_loaded")
        if query is None:
            raise ValidationError("query spectrum is missing", reason="invalid_query")
        try:
            vector = np.asarray(query, dtype=np.float64)
        except (TypeError, ValueError) as err:
            raise ValidationError(f"query spectrum is not numeric: {err}", reason="invalid_query") from err
        if vector.ndim != 1 or vector.size != self.library.axis_length:
            raise ValidationError(
                f"query length {vector.size} does not match library axis length {self.library.axis_length}",
                reason="length_mismatch",
            )
        return vector

    def identify(
        self,
        query: Any,
        top_k: int = DEFAULT_TOP_K,
        cosine_weight: float = DEFAULT_COSINE_WEIGHT,
    ) -> list[IdentificationMatch]:
        """Return up to ``top_k`` matches ordered by combined score.

        Equal scores keep library order. Returns an empty list when the
        library is not ready or the query has the wrong shape.
        """

        if not self.ready:
            _LOGGER.debug("Identification skipped: reference library not ready")
            return []
        try:
            vector = self.check_query(query)
        except ValidationError as err:
            _LOGGER.warning("Identification skipped: %s", err)
            return []
        if top_k <= 0:
            return []

        combined, cosine, pearson = score_matrix(vector, self._matrix, cosine_weight)
        order = np.argsort(-combined, kind="stable")[:top_k]
        return [
            IdentificationMatch(
                substance=self._names[idx],
                score=float(combined[idx]),
                cosine_score=float(cosine[idx]),
                pearson_score=float(pearson[idx]),
            )
            for idx in order
        ]

    def _use(self, library: ReferenceLibrary) -> None:
        length = library.axis_length
        names: list[str] = []
        rows: list[list[float]] = []
        for entry in library.substances:
            if len(entry.data) != length:
                _LOGGER.warning(
                    "Skipping reference %s: %d samples, expected %d", entry.name, len(entry.data), length
                )
                continue
            names.append(entry.name)
            rows.append(entry.data)
        self.library = library
        self._names = names
        self._matrix = np.asarray(rows, dtype=np.float64).reshape(len(rows), length)


__all__ = ["DEFAULT_DATASET_PATH", "LibrarySyncResult", "SpectrumIdentifier", "confidence_label"]
