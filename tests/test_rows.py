#!/usr/bin/env python3

from __future__ import annotations

import csv

import numpy as np
import pytest

from tiletx import rows
from tiletx.catalog import Tile
from tiletx.raster import GeoBounds, RasterBand


@pytest.mark.parametrize(
    "value, text",
    [
        (0.3, "0.3"),
        (2.0, "2"),
        (0.0, "0"),
        (1e-05, "0.00001"),
        (0.1 + 0.2, "0.30000000000000004"),
        (float("nan"), "NaN"),
        (np.nan, "NaN"),
        (float("inf"), "+Inf"),
        (float("-inf"), "-Inf"),
    ],
)
def test_format_value(value, text):
    assert rows.format_value(value) == text


def test_format_date():
    assert rows.format_date(1577836800) == "2020-01-01"
    assert rows.format_date(1577836800 + 23 * 3600) == "2020-01-01"


def test_build_row():
    tile = Tile("A1", "20200101T000000", 1577836800)
    band = RasterBand(data=np.zeros((1, 1)), bounds=GeoBounds(1.0, 2.0, 3.0, 4.0))
    row = rows.build_row(tile, [band], [0.3, 2.0])
    assert row == [
        "A1",
        "2020-01-01",
        "1.000000,2.000000,3.000000,2.000000,3.000000,4.000000,1.000000,4.000000",
        "0.3",
        "2",
    ]


def test_header_and_sort():
    assert rows.header(["water", "forest"]) == ["tile_id", "date", "bounds", "water", "forest"]
    unsorted = [["B2", "2020-01-01"], ["A1", "2020-02-01"], ["A1", "2020-01-01"]]
    assert rows.sort_rows(unsorted) == [["A1", "2020-01-01"], ["A1", "2020-02-01"], ["B2", "2020-01-01"]]


def test_write_csv(tmp_path):
    out = tmp_path / "nested" / "out.csv"
    data = [["A1", "2020-01-01", "1,2,3,2,3,4,1,4", "0.3"]]
    rows.write_csv(out, ["tile_id", "date", "bounds", "mean_ndvi"], data)

    with out.open(newline="") as f:
        read = list(csv.reader(f))
    assert read[0] == ["tile_id", "date", "bounds", "mean_ndvi"]
    assert read[1] == data[0]


def test_write_csv_header_only(tmp_path):
    out = tmp_path / "empty.csv"
    rows.write_csv(out, ["tile_id", "date", "bounds", "mean_ndvi"], [])
    assert out.read_text().strip() == "tile_id,date,bounds,mean_ndvi"


def test_write_csv_uncreatable_directory_is_fatal(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(SystemExit):
        rows.write_csv(blocker / "out.csv", ["tile_id"], [])
