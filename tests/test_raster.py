#!/usr/bin/env python3

from __future__ import annotations

import numpy as np
import pytest
from affine import Affine

from tiletx import raster as rs


def _parse_bounds(s: str):
    vals = [float(x) for x in s.split(",")]
    assert len(vals) == 8
    return [(vals[i], vals[i + 1]) for i in range(0, 8, 2)]


@pytest.mark.parametrize("dtype", ["uint8", "uint16", "float32", "float64"])
def test_load_raster_widens_to_float64(tmp_path, tif_writer, dtype):
    data = [[1, 2, 3], [4, 5, 6]]
    path = tif_writer(tmp_path / f"t_{dtype}.tif", data, dtype=dtype)

    band = rs.load_raster(path)
    assert band.data.dtype == np.float64
    assert band.source_dtype == dtype
    assert (band.width, band.height, band.size) == (3, 2, 6)
    np.testing.assert_array_equal(band.data, np.array(data, dtype=np.float64))


def test_load_raster_unsupported_dtype(tmp_path, tif_writer):
    path = tif_writer(tmp_path / "t.tif", [[1, -2]], dtype="int16")
    with pytest.raises(rs.UnsupportedDtypeError):
        rs.load_raster(path)


def test_load_raster_missing_file(tmp_path):
    with pytest.raises(rs.RasterLoadError):
        rs.load_raster(tmp_path / "missing.tif")


def test_load_raster_multiband_uses_first(tmp_path, tif_writer, capsys):
    data = np.stack([np.full((2, 2), 7), np.full((2, 2), 9)])
    path = tif_writer(tmp_path / "multi.tif", data, dtype="uint8")

    band = rs.load_raster(path)
    assert (band.data == 7).all()
    assert "found 2 bands" in capsys.readouterr().out


def test_load_raster_bounds_north_up(tmp_path, tif_writer):
    path = tif_writer(tmp_path / "t.tif", np.zeros((4, 2)), dtype="uint8")
    b = rs.load_raster(path).bounds
    # DEFAULT_TRANSFORM: origin (10, 50), 0.01 deg pixels, 2 cols x 4 rows
    assert b.min_lon == pytest.approx(10.0)
    assert b.max_lon == pytest.approx(10.02)
    assert b.min_lat == pytest.approx(49.96)
    assert b.max_lat == pytest.approx(50.0)


@pytest.mark.parametrize(
    "transform",
    [
        Affine(0.5, 0.0, 10.0, 0.0, -0.5, 40.0),   # north-up
        Affine(0.5, 0.0, 10.0, 0.0, 0.5, 38.0),    # south-up
        Affine(-0.5, 0.0, 12.0, 0.0, -0.5, 40.0),  # flipped x
        Affine(-0.5, 0.0, 12.0, 0.0, 0.5, 38.0),   # both flipped
    ],
)
def test_bounds_from_transform_any_sign(transform):
    b = rs.bounds_from_transform(transform, width=4, height=4)
    assert b.min_lon <= b.max_lon
    assert b.min_lat <= b.max_lat
    assert (b.min_lon, b.min_lat, b.max_lon, b.max_lat) == pytest.approx((10.0, 38.0, 12.0, 40.0))

    corners = _parse_bounds(str(b))
    assert corners == [
        pytest.approx((10.0, 38.0)),
        pytest.approx((12.0, 38.0)),
        pytest.approx((12.0, 40.0)),
        pytest.approx((10.0, 40.0)),
    ]


@pytest.mark.filterwarnings("error")
def test_bounds_from_transform_emits_no_warnings():
    t = Affine(0.01, 0.0, 10.0, 0.0, -0.01, 50.0)
    b = rs.bounds_from_transform(t, width=2, height=3)
    assert b.as_bbox() == pytest.approx((10.0, 49.97, 10.02, 50.0))


def test_bounds_from_rotated_transform():
    t = Affine.translation(0, 0) @ Affine.rotation(30) @ Affine.scale(1, -1)
    b = rs.bounds_from_transform(t, width=10, height=10)
    assert b.min_lon <= b.max_lon
    assert b.min_lat <= b.max_lat


def test_geobounds_string_format():
    b = rs.GeoBounds(1.0, 2.0, 3.0, 4.0)
    assert str(b) == "1.000000,2.000000,3.000000,2.000000,3.000000,4.000000,1.000000,4.000000"
    assert b.as_bbox() == (1.0, 2.0, 3.0, 4.0)


def test_truncate():
    band = rs.RasterBand(
        data=np.array([[5.0, 10001.0], [12000.0, 10000.0]]),
        bounds=rs.GeoBounds(0, 0, 1, 1),
        source_dtype="uint16",
    )
    out, n = rs.truncate(band, 10000.0)
    assert n == 2
    np.testing.assert_array_equal(out.data, [[5.0, 10000.0], [10000.0, 10000.0]])
    # input untouched
    assert band.data[1, 0] == 12000.0

    same, n = rs.truncate(out, 10000.0)
    assert n == 0
    assert same is out
