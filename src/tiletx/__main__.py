#!/usr/bin/env python3
"""tiletx

Tile analytics CLI.

Turns a flat directory of raster tiles (<tile_id>_<date>_<band>.tif plus a
metadata.json) into one CSV row per tile and date.

Subcommands:
- run   → apply an analytic operation to every tile and write a CSV
- scan  → report what the tile directory contains (no raster reads)

Design notes:
- Dataset conventions (band names, metadata JSON paths) come from a settings
  YAML (--config, default config/tiles.yaml; built-in defaults if absent)
- Heavy imports (rasterio, pandas) are lazy so `scan` and --help stay fast
- Per-tile failures are reported as warnings; they do not change the exit code

Examples:
  # Mean NDVI over a Sentinel-2 tile directory
  python -m tiletx run --input data/tiles/s2 --output out/ndvi.csv

  # Land cover class shares, 4 workers
  python -m tiletx run --operation category_percentage --input data/tiles/lc \
    --output out/landcover.csv --workers 4

  # What's in the directory?
  python -m tiletx scan --input data/tiles/s2 --json
"""

from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from tiletx.catalog import CatalogScan, flatten_catalog, scan_catalog
from tiletx.config import (
    DEFAULT_SETTINGS_YAML,
    TileSettings,
    format_bbox,
    load_metadata,
    load_settings,
)


DEFAULT_OPERATION = "mean_ndvi"

# Same names and order as tiletx.analytics.OPERATIONS (not imported to keep --help light)
OPERATION_CHOICES = (
    "mean_ndvi",
    "mean",
    "category_counts",
    "category_percentage",
    "category_binary",
)


# -----------------------------
# Helpers
# -----------------------------

def _scan(input_dir: Path, settings: TileSettings, verbose: bool = True) -> CatalogScan:
    """Scan the tile directory; an unreadable directory is fatal."""
    try:
        return scan_catalog(input_dir, settings, verbose=verbose)
    except OSError as e:
        raise SystemExit(f"Failed to read tile directory {input_dir}: {e}") from e


def _scan_report(scan: CatalogScan) -> Dict[str, Any]:
    def _day(ts: int) -> str:
        return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")

    locations = []
    for tile_id in sorted(scan.tiles):
        tiles = scan.tiles[tile_id]
        locations.append({
            "tile_id": tile_id,
            "count": len(tiles),
            "first": _day(tiles[0].timestamp),
            "last": _day(tiles[-1].timestamp),
        })
    return {"summary": scan.summary(), "locations": locations}


# -----------------------------
# CLI
# -----------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="tiletx",
        description="Per-tile analytics over a directory of raster tiles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Global args (available for all subcommands)
    ap.add_argument("--config", type=Path, default=None, help=f"Settings YAML (default: {DEFAULT_SETTINGS_YAML} if present)")
    ap.add_argument("--dry-run", action="store_true", help="Print planned actions without processing/writing")

    sub = ap.add_subparsers(dest="command", required=True)

    # --- run ---
    run = sub.add_parser("run", help="Apply an operation to every tile and write a CSV")
    run.add_argument("--input", type=Path, default=Path("."), help="Input directory containing the tile files")
    run.add_argument("--output", type=Path, required=True, help="Output CSV path")
    run.add_argument(
        "--operation",
        default=DEFAULT_OPERATION,
        help=f"Operation to perform on the tiles: {', '.join(OPERATION_CHOICES)} (default: {DEFAULT_OPERATION})",
    )
    run.add_argument("--workers", type=int, default=None, help="Number of workers (default from settings: 8)")
    run.add_argument("--limit", type=int, default=None, help="Debug: only process the first N tiles")
    run.add_argument("--overwrite", action="store_true", help="Replace an existing output file")
    run.add_argument("--unsorted", action="store_true", help="Keep worker completion order instead of sorting by tile/date")

    # --- scan ---
    scan = sub.add_parser("scan", help="Summarize the tiles found in a directory")
    scan.add_argument("--input", type=Path, default=Path("."), help="Input directory containing the tile files")
    scan.add_argument("--json", action="store_true", help="Emit JSON to stdout")

    return ap


def _handle_run(args: argparse.Namespace, settings: TileSettings) -> int:
    workers = args.workers if args.workers is not None else int(settings.workers)
    if workers < 1:
        raise SystemExit(f"--workers must be >= 1 (got {workers})")

    if args.output.exists() and not args.overwrite and not args.dry_run:
        print(f"[SKIP] {args.output} exists (use --overwrite)")
        return 0

    # Lazy import: keeps `scan` and --help free of rasterio/pandas
    from tiletx.analytics import AnalyticConfigError, create_analytic
    from tiletx.pool import process_tiles
    from tiletx.rows import header, sort_rows, write_csv

    metadata = load_metadata(args.input, settings.metadata_file)
    try:
        analytic = create_analytic(metadata, args.operation, settings)
    except AnalyticConfigError as e:
        raise SystemExit(f"Could not initialize tile analytic '{args.operation}': {e}") from e

    scan = _scan(args.input, settings)
    tiles = flatten_catalog(scan.tiles)
    if args.limit is not None and len(tiles) > args.limit:
        print(f"[RUN] Reached --limit {args.limit}; processing {args.limit} of {len(tiles)} tiles")
        tiles = tiles[: args.limit]

    columns = header(analytic.value_names())
    print(f"[RUN] {type(analytic).__name__}: {len(tiles)} tiles, {workers} workers")
    print(f"  - columns: {', '.join(columns)}")
    print(f"  - out: {args.output}")
    if args.dry_run:
        return 0

    result = process_tiles(tiles, analytic, args.input, workers=workers)
    rows = result.rows if args.unsorted else sort_rows(result.rows)
    write_csv(args.output, columns, rows)

    result.log_summary()
    if result.extent is not None:
        print(f"  - extent: {format_bbox(result.extent)}")
    print(f"[RUN] Wrote {len(rows)} rows -> {args.output}")
    return 0


def _handle_scan(args: argparse.Namespace, settings: TileSettings) -> int:
    scan = _scan(args.input, settings, verbose=not args.json)
    report = _scan_report(scan)

    if args.json:
        print(json.dumps(report, indent=2))
        return 0

    s = report["summary"]
    for loc in report["locations"]:
        print(f"  - {loc['tile_id']}: {loc['count']} tiles ({loc['first']} .. {loc['last']})")
    print(
        f"Overall: {s['tiles']} tiles, {s['locations']} locations "
        f"(skipped: {s['malformed']} malformed, {s['bad_date']} bad dates, {s['duplicates']} duplicates)"
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    # Load settings once, inside main (so import doesn't have side effects)
    try:
        settings = load_settings(args.config)
    except ValueError as e:
        raise SystemExit(f"Invalid settings: {e}") from e

    handlers = {
        "run": _handle_run,
        "scan": _handle_scan,
    }
    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")
    return handler(args, settings)


if __name__ == "__main__":
    raise SystemExit(main())
