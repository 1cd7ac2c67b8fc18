#!/usr/bin/env python3
"""raster.py

Decode single-band raster tiles into float64 arrays with their geographic bounds.

This is the only place tiletx touches the raster format. Everything downstream
(analytics, row formatting) works on RasterBand objects.

Scope:
- First band only (multi-band files are accepted with a warning)
- Sample types: uint8, uint16, float32, float64 (all widened to float64)
- Bounds derived from the affine geotransform, whatever the sign of its scales

Required deps (typical conda geo stack): rasterio, numpy
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

import numpy as np
import rasterio
from affine import Affine
from rasterio.errors import RasterioError


SUPPORTED_DTYPES = ("uint8", "uint16", "float32", "float64")


class RasterLoadError(Exception):
    """A band file could not be opened or decoded."""


class UnsupportedDtypeError(RasterLoadError):
    """The band uses a sample type tiletx does not decode."""


@dataclass(frozen=True)
class GeoBounds:
    """Rectangular geographic extent (lon/lat)."""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def corners(self) -> Tuple[Tuple[float, float], ...]:
        """Corner pairs, counter-clockwise from (min_lon, min_lat)."""
        return (
            (self.min_lon, self.min_lat),
            (self.max_lon, self.min_lat),
            (self.max_lon, self.max_lat),
            (self.min_lon, self.max_lat),
        )

    def as_bbox(self) -> Tuple[float, float, float, float]:
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    def __str__(self) -> str:
        return ",".join(f"{lon:f},{lat:f}" for lon, lat in self.corners())


@dataclass
class RasterBand:
    """One decoded band: row-major float64 samples plus georeferencing."""

    data: np.ndarray
    bounds: GeoBounds
    path: str = ""
    source_dtype: str = "float64"

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def size(self) -> int:
        return int(self.data.size)


def bounds_from_transform(transform: Affine, width: int, height: int) -> GeoBounds:
    """Derive lon/lat bounds from an affine geotransform.

    All four pixel-grid corners are transformed and min/max taken, so north-up
    rasters (negative row scale), flipped rasters and rotated grids all give
    min <= max.
    """
    xs = []
    ys = []
    for col, row in ((0, 0), (width, 0), (width, height), (0, height)):
        x, y = transform @ (col, row)
        xs.append(x)
        ys.append(y)
    return GeoBounds(min(xs), min(ys), max(xs), max(ys))


def load_raster(path: Path) -> RasterBand:
    """Load the first band of a raster file as float64.

    Raises RasterLoadError if the file cannot be opened or read, has no bands,
    or uses an unsupported sample type.
    """
    try:
        with rasterio.open(path) as src:
            if src.count == 0:
                raise RasterLoadError(f"found 0 bands in {path}")
            if src.count > 1:
                print(f"  - warning: found {src.count} bands in {Path(path).name} - using band 1 only")

            dtype = src.dtypes[0]
            if dtype not in SUPPORTED_DTYPES:
                raise UnsupportedDtypeError(f"unhandled band type {dtype} for {path}")

            data = src.read(1).astype(np.float64, copy=False)
            bounds = bounds_from_transform(src.transform, src.width, src.height)
    except (RasterioError, OSError) as e:
        raise RasterLoadError(f"band file not loaded: {path}: {e}") from e

    return RasterBand(data=data, bounds=bounds, path=str(path), source_dtype=dtype)


def truncate(band: RasterBand, ceiling: float) -> Tuple[RasterBand, int]:
    """Clamp samples above `ceiling`.

    Returns the (possibly new) band and the number of samples that were clamped.
    The input band is left untouched.
    """
    over = band.data > ceiling
    n = int(np.count_nonzero(over))
    if n == 0:
        return band, 0
    data = np.where(over, ceiling, band.data)
    return RasterBand(data=data, bounds=band.bounds, path=band.path, source_dtype=band.source_dtype), n
