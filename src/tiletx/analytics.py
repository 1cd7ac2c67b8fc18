#!/usr/bin/env python3
"""analytics.py

Per-tile analytic operations.

Every operation follows the same three-step contract so the worker pool can
drive any of them without knowing which one it has:

    bands = analytic.setup(input_dir, tile)     # load the band files it needs
    values = analytic.transform(bands)          # pure numeric step
    analytic.value_names()                      # output column names

Operations (selected by name with create_analytic()):
- mean_ndvi            mean of max(0, NDVI) over a Sentinel-2 tile (B08/B04)
- mean                 mean of the band named by metadata bands[0].id
- category_counts      pixel count per land-cover class
- category_percentage  pixel share per land-cover class
- category_binary      1.0 if the class is present in the tile, else 0.0

Operations are immutable after construction and shared by all worker threads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from tiletx.catalog import Tile, band_path
from tiletx.config import TileSettings, json_path
from tiletx.raster import RasterBand, load_raster, truncate


OPERATION_MEAN_NDVI = "mean_ndvi"
OPERATION_MEAN = "mean"
OPERATION_CATEGORY_COUNTS = "category_counts"
OPERATION_CATEGORY_PERCENTAGE = "category_percentage"
OPERATION_CATEGORY_BINARY = "category_binary"

OPERATIONS = (
    OPERATION_MEAN_NDVI,
    OPERATION_MEAN,
    OPERATION_CATEGORY_COUNTS,
    OPERATION_CATEGORY_PERCENTAGE,
    OPERATION_CATEGORY_BINARY,
)

UNCLASSIFIED_LABEL = "unclassified"


class TransformError(Exception):
    """The numeric step failed for one tile."""


class AnalyticConfigError(ValueError):
    """An operation could not be built from the dataset metadata."""


# -----------------------------------------------------------------------------
# Contract
# -----------------------------------------------------------------------------

class TileAnalytic(ABC):
    """Base class for per-tile operations."""

    def __init__(self, settings: Optional[TileSettings] = None):
        self.settings = settings or TileSettings()

    @abstractmethod
    def bands(self) -> List[str]:
        """Band names this operation reads, in the order transform() expects."""

    @abstractmethod
    def transform(self, bands: Sequence[RasterBand]) -> List[float]:
        """Compute output values from already-decoded bands."""

    @abstractmethod
    def value_names(self) -> List[str]:
        """Output column names, in the order transform() returns values."""

    def setup(self, input_dir: Path, tile: Tile) -> List[RasterBand]:
        """Load the tile's band files. Raises RasterLoadError on the first failure."""
        return [load_raster(band_path(input_dir, tile, b, self.settings)) for b in self.bands()]

    def _check_bands(self, bands: Sequence[RasterBand]) -> None:
        expected = len(self.bands())
        if len(bands) != expected:
            raise TransformError(f"expected {expected} band(s), got {len(bands)}")
        if bands[0].size == 0:
            raise TransformError(f"empty band {bands[0].path}")
        shape = bands[0].data.shape
        for b in bands[1:]:
            if b.data.shape != shape:
                raise TransformError(f"band shapes differ: {shape} vs {b.data.shape} ({b.path})")


# -----------------------------------------------------------------------------
# NDVI
# -----------------------------------------------------------------------------

def ndvi(nir: np.ndarray, red: np.ndarray) -> np.ndarray:
    """Per-pixel NDVI floored at zero.

    max(0, (nir - red) / (nir + red)); pixels where nir + red == 0 (no signal,
    typically both zero) are 0 instead of NaN/inf.
    """
    nir = np.asarray(nir, dtype=np.float64)
    red = np.asarray(red, dtype=np.float64)
    num = nir - red
    den = nir + red
    ratio = np.zeros_like(den)
    np.divide(num, den, out=ratio, where=den != 0)
    return np.maximum(ratio, 0.0)


class MeanNDVI(TileAnalytic):
    """Mean NDVI for Sentinel-2 tiles (NIR = B08, red = B04 by default)."""

    def bands(self) -> List[str]:
        return [self.settings.nir_band, self.settings.red_band]

    def setup(self, input_dir: Path, tile: Tile) -> List[RasterBand]:
        loaded = super().setup(input_dir, tile)
        ceiling = self.settings.reflectance_max
        if ceiling is None:
            return loaded

        # integer reflectance above the sensor ceiling is saturated/bad data
        out = []
        for band in loaded:
            if band.source_dtype == "uint16":
                band, n = truncate(band, float(ceiling))
                if n:
                    print(f"  - warning: truncated {n} values from {Path(band.path).name}")
            out.append(band)
        return out

    def transform(self, bands: Sequence[RasterBand]) -> List[float]:
        self._check_bands(bands)
        values = ndvi(bands[0].data, bands[1].data)
        return [float(values.mean())]

    def value_names(self) -> List[str]:
        return [OPERATION_MEAN_NDVI]


# -----------------------------------------------------------------------------
# Scalar mean
# -----------------------------------------------------------------------------

class Mean(TileAnalytic):
    """Mean sample value of a single band named in the dataset metadata."""

    def __init__(self, metadata: Dict[str, Any], settings: Optional[TileSettings] = None):
        super().__init__(settings)
        band = json_path(metadata, self.settings.mean_band_path)
        if not isinstance(band, str) or not band:
            raise AnalyticConfigError(
                f"failed to find band id '{self.settings.mean_band_path}' in metadata"
            )
        self.band = band

    def bands(self) -> List[str]:
        return [self.band]

    def transform(self, bands: Sequence[RasterBand]) -> List[float]:
        self._check_bands(bands)
        return [float(bands[0].data.mean())]

    def value_names(self) -> List[str]:
        return [self.band]


# -----------------------------------------------------------------------------
# Category counting
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Category:
    """A land-cover class: its pixel value and label."""

    value: int
    label: str


def _as_int(x: Any) -> Optional[int]:
    # JSON numbers only; bools are ints in Python but not class values
    if isinstance(x, bool):
        return None
    if isinstance(x, int):
        return x
    if isinstance(x, float) and x.is_integer():
        return int(x)
    return None


def load_categories(metadata: Dict[str, Any], settings: TileSettings) -> List[Category]:
    """Read the parallel class value / class name arrays from metadata.

    Raises AnalyticConfigError if either array is missing or malformed, the
    lengths differ, or a value is repeated.
    """
    values = json_path(metadata, settings.category_values_path)
    if not isinstance(values, list):
        raise AnalyticConfigError(f"failed to find array {settings.category_values_path} in metadata")
    labels = json_path(metadata, settings.category_names_path)
    if not isinstance(labels, list):
        raise AnalyticConfigError(f"failed to find array {settings.category_names_path} in metadata")
    if len(values) != len(labels):
        raise AnalyticConfigError(
            f"category values ({len(values)}) and names ({len(labels)}) differ in length"
        )

    categories: List[Category] = []
    seen = set()
    for raw_value, label in zip(values, labels):
        value = _as_int(raw_value)
        if value is None:
            raise AnalyticConfigError(f"category value is not an integer: {raw_value!r}")
        if not isinstance(label, str):
            raise AnalyticConfigError(f"category name is not a string: {label!r}")
        if value in seen:
            raise AnalyticConfigError(f"duplicate category value {value}")
        seen.add(value)
        categories.append(Category(value=value, label=label))
    return categories


def count_categories(data: np.ndarray, categories: Sequence[Category]) -> np.ndarray:
    """Count pixels per category.

    Returns len(categories) + 1 counts: one per category in order, then the
    number of pixels whose value matches no category (unclassified).
    """
    index = {c.value: i for i, c in enumerate(categories)}
    counts = np.zeros(len(categories) + 1, dtype=np.float64)
    pixel_values, pixel_counts = np.unique(data, return_counts=True)
    for value, n in zip(pixel_values, pixel_counts):
        i = index.get(int(value)) if float(value).is_integer() else None
        if i is None:
            counts[-1] += n
        else:
            counts[i] += n
    return counts


def _raw(counts: np.ndarray, n_pixels: int) -> np.ndarray:
    return counts


def _percentage(counts: np.ndarray, n_pixels: int) -> np.ndarray:
    return counts / float(n_pixels)


def _binary(counts: np.ndarray, n_pixels: int) -> np.ndarray:
    return (counts > 0).astype(np.float64)


PRESENTATIONS: Dict[str, Callable[[np.ndarray, int], np.ndarray]] = {
    "raw": _raw,
    "percentage": _percentage,
    "binary": _binary,
}


class CategoryCounts(TileAnalytic):
    """Per-class pixel statistics for the discrete land-cover band.

    `presentation` picks what is reported from the shared counts:
    "raw" (pixel counts), "percentage" (counts / width*height) or
    "binary" (1.0 if present).
    """

    def __init__(
        self,
        metadata: Dict[str, Any],
        settings: Optional[TileSettings] = None,
        presentation: str = "raw",
    ):
        super().__init__(settings)
        if presentation not in PRESENTATIONS:
            raise AnalyticConfigError(f"unknown category presentation: {presentation}")
        self.presentation = presentation
        self.categories = load_categories(metadata, self.settings)
        if not self.categories:
            raise AnalyticConfigError("labels unspecified")

    def bands(self) -> List[str]:
        return [self.settings.category_band]

    def transform(self, bands: Sequence[RasterBand]) -> List[float]:
        self._check_bands(bands)
        band = bands[0]
        counts = count_categories(band.data, self.categories)
        values = PRESENTATIONS[self.presentation](counts, band.size)
        if not self.settings.count_unclassified:
            values = values[:-1]
        return [float(v) for v in values]

    def value_names(self) -> List[str]:
        names = [c.label for c in self.categories]
        if self.settings.count_unclassified:
            names.append(UNCLASSIFIED_LABEL)
        return names


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------

def create_analytic(
    metadata: Dict[str, Any],
    operation: str,
    settings: Optional[TileSettings] = None,
) -> TileAnalytic:
    """Instantiate the analytic for an operation name.

    Unknown names fall back to mean_ndvi with a warning. Raises
    AnalyticConfigError if the metadata lacks what the operation needs.
    """
    settings = settings or TileSettings()
    name = (operation or "").strip().lower()

    if name == OPERATION_MEAN_NDVI:
        return MeanNDVI(settings)
    if name == OPERATION_MEAN:
        return Mean(metadata, settings)
    if name == OPERATION_CATEGORY_COUNTS:
        return CategoryCounts(metadata, settings, presentation="raw")
    if name == OPERATION_CATEGORY_PERCENTAGE:
        return CategoryCounts(metadata, settings, presentation="percentage")
    if name == OPERATION_CATEGORY_BINARY:
        return CategoryCounts(metadata, settings, presentation="binary")

    print(f"  - warning: unrecognized operation '{operation}' - defaulting to {OPERATION_MEAN_NDVI}")
    return MeanNDVI(settings)
