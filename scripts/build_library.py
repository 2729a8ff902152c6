"""Build the bundled reference library from a directory of CSV spectra.

Each ``<substance>.csv`` holds two columns, wavelength and intensity, with an
optional header row. Spectra are resampled onto the fixed identification axis
with linear interpolation and scaled so the maximum intensity is 1.
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import numpy as np

from kat_mobile.const import TARGET_WAVELENGTH_MAX, TARGET_WAVELENGTH_MIN, TARGET_WAVELENGTH_STEP
from kat_mobile.identification import DEFAULT_DATASET_PATH

_LOGGER = logging.getLogger(__name__)


def target_axis() -> np.ndarray:
    return np.arange(TARGET_WAVELENGTH_MIN, TARGET_WAVELENGTH_MAX + TARGET_WAVELENGTH_STEP, TARGET_WAVELENGTH_STEP, dtype=float)


def read_spectrum(path: Path) -> tuple[np.ndarray, np.ndarray]:
    wavelengths: list[float] = []
    intensities: list[float] = []
    with path.open(newline="", encoding="utf-8") as handle:
        for row in csv.reader(handle):
            if len(row) < 2:
                continue
            try:
                wavelength, intensity = float(row[0]), float(row[1])
            except ValueError:
                continue
            wavelengths.append(wavelength)
            intensities.append(intensity)
    if len(wavelengths) < 2:
        raise ValueError(f"{path.name}: need at least two numeric rows")
    x = np.asarray(wavelengths)
    y = np.asarray(intensities)
    order = np.argsort(x, kind="stable")
    return x[order], y[order]


def resample(wavelengths: np.ndarray, intensities: np.ndarray, axis: np.ndarray) -> np.ndarray:
    values = np.interp(axis, wavelengths, intensities, left=0.0, right=0.0)
    peak = float(np.max(np.abs(values))) if values.size else 0.0
    if peak > 0:
        values = values / peak
    return values


def build_library(source: Path, *, version: str | None = None) -> dict[str, Any]:
    axis = target_axis()
    substances: list[dict[str, Any]] = []
    for path in sorted(source.glob("*.csv")):
        try:
            wavelengths, intensities = read_spectrum(path)
        except ValueError as err:
            _LOGGER.warning("Skipping %s", err)
            continue
        data = resample(wavelengths, intensities, axis)
        substances.append({"name": path.stem, "data": [round(float(v), 6) for v in data]})
    return {
        "version": version or datetime.now(tz=UTC).strftime("%Y.%m.%d"),
        "wavelengthAxis": [int(v) if float(v).is_integer() else float(v) for v in axis],
        "substances": substances,
    }


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build the reference spectrum library")
    parser.add_argument("source", type=Path, help="Directory of <substance>.csv files")
    parser.add_argument("--output", type=Path, default=DEFAULT_DATASET_PATH, help="Output JSON path")
    parser.add_argument("--version", help="Library version tag (defaults to today's date)")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))
    if not args.source.is_dir():
        _LOGGER.error("%s is not a directory", args.source)
        return 1
    library = build_library(args.source, version=args.version)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(json.dumps(library, separators=(",", ":")), encoding="utf-8")
    _LOGGER.info("Wrote %d substances to %s", len(library["substances"]), args.output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
