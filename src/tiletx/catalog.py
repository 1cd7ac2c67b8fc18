#!/usr/bin/env python3
"""catalog.py

Scan a flat tile directory and group its files into per-location time series.

Files are expected to be named <tile_id>_<date>_<band>.<ext>, e.g.
    A1_20200101T000000_B08.tif
    A1_20200101T000000_B04.tif
One Tile is created per unique (tile_id, date) pair, whatever the number of
band files that share it.

Notes:
- Bad entries (too few name segments, unparseable dates) are skipped with a
  warning; they never abort the scan.
- Duplicates are dropped silently, first seen wins.
- Each location's tiles are kept sorted by timestamp as they are inserted.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from tiletx.config import TileSettings


@dataclass(frozen=True)
class Tile:
    """One acquisition of one location: the shared key of its band files."""

    tile_id: str
    date: str
    timestamp: int


TileCatalog = Dict[str, List[Tile]]


@dataclass
class CatalogScan:
    """Result of a directory scan: the catalog plus what was skipped."""

    tiles: TileCatalog = field(default_factory=dict)
    entries: int = 0
    malformed: int = 0
    bad_date: int = 0
    duplicates: int = 0

    @property
    def n_tiles(self) -> int:
        return sum(len(v) for v in self.tiles.values())

    def summary(self) -> Dict[str, int]:
        return {
            "entries": self.entries,
            "locations": len(self.tiles),
            "tiles": self.n_tiles,
            "malformed": self.malformed,
            "bad_date": self.bad_date,
            "duplicates": self.duplicates,
        }


def parse_timestamp(date: str, date_format: str) -> int:
    """Parse a file-name date token into seconds since the epoch (UTC).

    Raises ValueError if the token does not match date_format exactly. strptime
    alone accepts unpadded fields (202011T000000 -> 2020-01-01), which would let
    one acquisition show up under several tokens.
    """
    dt = datetime.strptime(date, date_format)
    if dt.strftime(date_format) != date:
        raise ValueError(f"date {date!r} does not match format {date_format!r}")
    return int(dt.replace(tzinfo=timezone.utc).timestamp())


def parse_tile_name(name: str, settings: TileSettings) -> Optional[Tuple[str, str]]:
    """Split a file name into (tile_id, date). Returns None if it has too few parts."""
    parts = name.split(settings.name_delimiter)
    if len(parts) < 2:
        return None
    return parts[0], parts[1]


def insert_sorted(tiles: List[Tile], tile: Tile) -> None:
    """Insert keeping tiles ordered by timestamp (after any equal timestamps)."""
    bisect.insort_right(tiles, tile, key=lambda t: t.timestamp)


def scan_catalog(
    input_dir: Path,
    settings: Optional[TileSettings] = None,
    *,
    verbose: bool = True,
) -> CatalogScan:
    """Build the tile catalog for input_dir.

    Raises OSError (e.g. FileNotFoundError, NotADirectoryError) if the directory
    itself can't be listed. Individual bad entries are skipped and counted.
    With verbose=False nothing is printed, warnings included.
    """
    settings = settings or TileSettings()
    input_dir = Path(input_dir)

    if verbose:
        print(f"[SCAN] {input_dir}")
    entries = sorted(input_dir.iterdir(), key=lambda p: p.name)

    scan = CatalogScan()
    seen: Set[Tuple[str, str]] = set()
    for entry in entries:
        if entry.name == settings.metadata_file or not entry.is_file():
            continue
        scan.entries += 1

        parsed = parse_tile_name(entry.name, settings)
        if parsed is None:
            if verbose:
                print(f"  - warning: improperly formatted file name {entry.name}")
            scan.malformed += 1
            continue
        tile_id, date = parsed

        try:
            timestamp = parse_timestamp(date, settings.date_format)
        except ValueError:
            if verbose:
                print(f"  - warning: cannot parse date {date} ({entry.name})")
            scan.bad_date += 1
            continue

        # one tile per id/date pair, however many band files share it
        key = (tile_id, date)
        if key in seen:
            scan.duplicates += 1
            continue
        seen.add(key)

        insert_sorted(scan.tiles.setdefault(tile_id, []), Tile(tile_id, date, timestamp))

    if verbose:
        print(f"[SCAN] {scan.n_tiles} tiles across {len(scan.tiles)} locations ({scan.entries} files)")
    return scan


def build_catalog(input_dir: Path, settings: Optional[TileSettings] = None) -> TileCatalog:
    """Convenience wrapper around scan_catalog() returning only the mapping."""
    return scan_catalog(input_dir, settings).tiles


def flatten_catalog(catalog: TileCatalog) -> List[Tile]:
    """All tiles, location by location (time order only holds within a location)."""
    return [tile for tiles in catalog.values() for tile in tiles]


def band_path(input_dir: Path, tile: Tile, band: str, settings: TileSettings) -> Path:
    """Path of one band file for a tile, e.g. A1_20200101T000000_B08.tif."""
    d = settings.name_delimiter
    return Path(input_dir) / f"{tile.tile_id}{d}{tile.date}{d}{band}{settings.file_ext}"
