#!/usr/bin/env python3
"""pool.py

Run an analytic over many tiles with a fixed pool of worker threads.

How it works:
- All tiles go on a queue up front; nothing is added afterwards.
- W workers each pull from the queue until it is empty, so fast workers pick
  up more tiles (raster I/O time varies a lot between tiles).
- A tile that fails to load or transform is skipped and counted; it never
  stops the other tiles or the run.
- Each worker keeps its own WorkerReport; reports are merged once every
  worker has finished, so no counters are shared between threads.

Threads (not processes) are enough here: rasterio/GDAL reads and numpy math
release the GIL, and the analytic is shared read-only.

Row order across workers is not defined. Sort afterwards if it matters
(see tiletx.rows.sort_rows).
"""

from __future__ import annotations

import queue
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from tiletx.analytics import TileAnalytic, TransformError
from tiletx.catalog import Tile
from tiletx.config import BBox, union_bbox
from tiletx.raster import RasterLoadError
from tiletx.rows import Row, build_row


@dataclass
class WorkerReport:
    """What one worker did."""

    worker: int
    rows: List[Row] = field(default_factory=list)
    processed: int = 0
    setup_errors: int = 0
    last_setup_error: Optional[Exception] = None
    transform_errors: int = 0
    last_transform_error: Optional[Exception] = None
    extent: Optional[BBox] = None


@dataclass
class PoolResult:
    """Merged outcome of all workers."""

    rows: List[Row] = field(default_factory=list)
    processed: int = 0
    setup_errors: int = 0
    last_setup_error: Optional[Exception] = None
    transform_errors: int = 0
    last_transform_error: Optional[Exception] = None
    extent: Optional[BBox] = None

    @classmethod
    def merge(cls, reports: Sequence[WorkerReport]) -> "PoolResult":
        result = cls()
        for r in reports:
            result.rows.extend(r.rows)
            result.processed += r.processed
            result.setup_errors += r.setup_errors
            result.transform_errors += r.transform_errors
            if r.last_setup_error is not None:
                result.last_setup_error = r.last_setup_error
            if r.last_transform_error is not None:
                result.last_transform_error = r.last_transform_error
        result.extent = union_bbox(r.extent for r in reports if r.extent is not None)
        return result

    @property
    def n_failed(self) -> int:
        return self.setup_errors + self.transform_errors

    def log_summary(self) -> None:
        """Print failures as warnings. Failures never change the exit status."""
        if self.setup_errors:
            print(f"  - warning: encountered {self.setup_errors} setup errors")
            print(f"  - warning: last setup error: {self.last_setup_error}")
        if self.transform_errors:
            print(f"  - warning: encountered {self.transform_errors} transform errors")
            print(f"  - warning: last transform error: {self.last_transform_error}")


def _tile_worker(
    worker: int,
    tiles: "queue.Queue[Tile]",
    analytic: TileAnalytic,
    input_dir: Path,
    progress_every: int,
) -> WorkerReport:
    report = WorkerReport(worker=worker)
    while True:
        try:
            tile = tiles.get_nowait()
        except queue.Empty:
            break

        report.processed += 1
        if progress_every and report.processed % progress_every == 0:
            print(f"[POOL] worker {worker}: processed {report.processed}")

        try:
            bands = analytic.setup(input_dir, tile)
        except RasterLoadError as e:
            report.setup_errors += 1
            report.last_setup_error = e
            continue

        try:
            values = analytic.transform(bands)
        except TransformError as e:
            report.transform_errors += 1
            report.last_transform_error = e
            continue

        report.rows.append(build_row(tile, bands, values))
        bbox = bands[0].bounds.as_bbox()
        report.extent = bbox if report.extent is None else union_bbox([report.extent, bbox])

    return report


def process_tiles(
    tiles: Sequence[Tile],
    analytic: TileAnalytic,
    input_dir: Path,
    *,
    workers: int = 8,
    progress_every: int = 100,
) -> PoolResult:
    """Apply `analytic` to every tile using `workers` threads.

    Parameters
    ----------
    tiles : list[Tile]
        Flattened catalog (see tiletx.catalog.flatten_catalog).
    analytic : TileAnalytic
        Shared, read-only operation.
    input_dir : Path
        Directory holding the band files.
    workers : int
        Number of concurrent workers (>= 1).
    progress_every : int
        Per-worker progress message interval (0 disables).
    """
    if workers < 1:
        raise ValueError(f"workers must be >= 1 (got {workers})")

    work: "queue.Queue[Tile]" = queue.Queue()
    for tile in tiles:
        work.put(tile)

    print(f"[POOL] {len(tiles)} tiles, {workers} workers")
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tile-worker") as ex:
        futures = [
            ex.submit(_tile_worker, i, work, analytic, Path(input_dir), progress_every)
            for i in range(workers)
        ]
        # results are gathered only after every worker has drained the queue
        reports = [f.result() for f in futures]

    result = PoolResult.merge(reports)
    print(f"[POOL] done: {len(result.rows)} rows, {result.n_failed} failed")
    return result
