#!/usr/bin/env python3

from __future__ import annotations

import json
import sys
from pathlib import Path

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

# Ensure we can import from src without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))


DEFAULT_TRANSFORM = from_origin(10.0, 50.0, 0.01, 0.01)


def write_tif(path: Path, data, dtype: str = "uint16", transform=DEFAULT_TRANSFORM) -> Path:
    """Write a small GeoTIFF. 2D data -> one band, 3D (bands, rows, cols) -> many."""
    arr = np.asarray(data, dtype=dtype)
    if arr.ndim == 2:
        arr = arr[np.newaxis, ...]
    count, height, width = arr.shape
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=count,
        dtype=dtype,
        crs="EPSG:4326",
        transform=transform,
    ) as dst:
        dst.write(arr)
    return path


@pytest.fixture
def tif_writer():
    return write_tif


@pytest.fixture
def tile_dir(tmp_path):
    """Empty tile directory with a metadata.json for land cover and mean."""
    d = tmp_path / "tiles"
    d.mkdir()
    metadata = {
        "bands": [{"id": "elevation"}],
        "properties": {
            "discrete_classification_class_values": [1, 2],
            "discrete_classification_class_names": ["water", "forest"],
        },
    }
    (d / "metadata.json").write_text(json.dumps(metadata))
    return d
