#!/usr/bin/env python3
"""tiletx.config

Shared configuration utilities for the tiletx pipeline.

This module provides the settings and metadata helpers used by tiletx.catalog,
tiletx.analytics and the CLI. Centralizing these avoids duplication and keeps
the band names / JSON paths in one place instead of scattered constants.

Design notes:
- YAML loading is strict: files must exist and be valid mappings.
- Settings are an explicit, frozen object passed to whoever needs them.
- Metadata (metadata.json next to the tiles) is loaded once per run.
- All functions are pure (no side effects on import).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

import yaml


# -----------------------------------------------------------------------------
# Default paths
# -----------------------------------------------------------------------------
# Centralized so the CLI and library use the same defaults.

DEFAULT_SETTINGS_YAML = Path("config/tiles.yaml")
DEFAULT_METADATA_FILE = "metadata.json"


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class TileSettings:
    """Dataset conventions for a tile directory.

    Defaults match Sentinel-2 L2A tiles (B08/B04) and the Copernicus global
    land cover classification layer.
    """

    metadata_file: str = DEFAULT_METADATA_FILE
    file_ext: str = ".tif"
    name_delimiter: str = "_"
    date_format: str = "%Y%m%dT%H%M%S"

    # sentinel-2
    nir_band: str = "B08"
    red_band: str = "B04"
    reflectance_max: Optional[float] = 10000

    # copernicus land cover
    category_band: str = "discrete_classification"
    category_values_path: str = "properties.discrete_classification_class_values"
    category_names_path: str = "properties.discrete_classification_class_names"
    count_unclassified: bool = False

    # band used by the plain mean operation
    mean_band_path: str = "bands.0.id"

    workers: int = 8


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return as dict.

    Raises SystemExit on missing file or invalid format (non-mapping).
    """
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return data


def settings_from_mapping(data: Dict[str, Any]) -> TileSettings:
    """Build TileSettings from a `tiles:` mapping, validating the keys."""
    known = {f.name for f in fields(TileSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown tiles settings: {unknown}")

    settings = replace(TileSettings(), **data)
    if int(settings.workers) < 1:
        raise ValueError(f"workers must be >= 1 (got {settings.workers})")
    if not settings.name_delimiter:
        raise ValueError("name_delimiter must not be empty")
    return settings


def load_settings(path: Optional[Path] = None) -> TileSettings:
    """Load TileSettings from a YAML file.

    Expects structure like:
        tiles:
          nir_band: B08
          red_band: B04
          ...

    With no path (or the default path absent) the built-in defaults are used.
    An explicitly given path must exist.
    """
    if path is None:
        path = DEFAULT_SETTINGS_YAML
        if not path.exists():
            return TileSettings()

    data = load_yaml(path)
    block = data.get("tiles", {})
    if block is None:
        return TileSettings()
    if not isinstance(block, dict):
        raise ValueError(f"{path} must have a top-level 'tiles:' mapping.")
    return settings_from_mapping(block)


# -----------------------------------------------------------------------------
# Dataset metadata
# -----------------------------------------------------------------------------

def load_metadata(input_dir: Path, file_name: str = DEFAULT_METADATA_FILE) -> Dict[str, Any]:
    """Load the metadata JSON document that sits alongside the tiles.

    Raises SystemExit if the document is missing, unreadable or not an object.
    Every operation needs a readable dataset description, so this fails fast.
    """
    path = Path(input_dir) / file_name
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SystemExit(f"Failed to load dataset metadata {path}: {e}") from e
    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as e:
        raise SystemExit(f"Invalid JSON in dataset metadata {path}: {e}") from e
    if not isinstance(doc, dict):
        raise SystemExit(f"Expected JSON object in dataset metadata {path}")
    return doc


def json_path(doc: Any, path: str) -> Any:
    """Resolve a dotted path like "bands.0.id" in a parsed JSON document.

    Numeric segments index into lists. Returns None if any step is missing.
    """
    node = doc
    for key in path.split("."):
        if isinstance(node, dict):
            if key not in node:
                return None
            node = node[key]
        elif isinstance(node, list):
            if not key.isdigit() or int(key) >= len(node):
                return None
            node = node[int(key)]
        else:
            return None
    return node


# -----------------------------------------------------------------------------
# Bounding box utilities
# -----------------------------------------------------------------------------
# Used for the run summary (overall extent of processed tiles).

BBox = Tuple[float, float, float, float]


def union_bbox(bboxes: Iterable[BBox]) -> Optional[BBox]:
    """Compute the bounding box that contains all input bboxes.

    Returns None if input is empty.
    """
    bboxes = list(bboxes)
    if not bboxes:
        return None
    xmin = min(b[0] for b in bboxes)
    ymin = min(b[1] for b in bboxes)
    xmax = max(b[2] for b in bboxes)
    ymax = max(b[3] for b in bboxes)
    return (xmin, ymin, xmax, ymax)


def format_bbox(b: BBox, precision: int = 5) -> str:
    """Format a bbox tuple as a readable string."""
    return f"[{b[0]:.{precision}f}, {b[1]:.{precision}f}, {b[2]:.{precision}f}, {b[3]:.{precision}f}]"
