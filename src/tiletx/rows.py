#!/usr/bin/env python3
"""rows.py

Turn per-tile results into output rows and write them as CSV.

A row is a list of strings:
    tile_id, date (YYYY-MM-DD), bounds (8 corner coordinates), value, value, ...
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Sequence

import numpy as np
import pandas as pd

from tiletx.catalog import Tile
from tiletx.raster import RasterBand


Row = List[str]

BASE_COLUMNS = ["tile_id", "date", "bounds"]


NON_FINITE = {"nan": "NaN", "inf": "+Inf", "-inf": "-Inf"}


def format_value(value: float) -> str:
    """Shortest round-trip decimal, no exponent, no trailing '.0' (0.3, 2).

    Non-finite values are written as NaN, +Inf and -Inf.
    """
    text = np.format_float_positional(float(value), trim="-")
    return NON_FINITE.get(text, text)


def format_date(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")


def build_row(tile: Tile, bands: Sequence[RasterBand], values: Sequence[float]) -> Row:
    """Assemble the output row; bounds come from the first band."""
    row = [tile.tile_id, format_date(tile.timestamp), str(bands[0].bounds)]
    row.extend(format_value(v) for v in values)
    return row


def header(value_names: Sequence[str]) -> List[str]:
    return BASE_COLUMNS + list(value_names)


def sort_rows(rows: Sequence[Row]) -> List[Row]:
    """Order rows by tile id, then date."""
    return sorted(rows, key=lambda r: (r[0], r[1]))


def write_csv(path: Path, columns: Sequence[str], rows: Sequence[Row]) -> None:
    """Write rows under a header row, creating the parent directory if needed.

    Raises SystemExit if the directory or file can't be created.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise SystemExit(f"Failed to create output directory {path.parent}: {e}") from e

    df = pd.DataFrame(list(rows), columns=list(columns), dtype=str)
    try:
        df.to_csv(path, index=False)
    except OSError as e:
        raise SystemExit(f"Failed to write CSV {path}: {e}") from e
