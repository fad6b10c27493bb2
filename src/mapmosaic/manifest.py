"""Capture manifest construction, persistence, and replay commands."""

from __future__ import annotations

import json
import os
import shlex
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from mapmosaic.capture import CaptureResult
from mapmosaic.contracts import MANIFEST_SCHEMA_VERSION, validate_manifest
from mapmosaic.geometry import GridPlan
from mapmosaic.layout import MANIFEST_NAME


def _utc_now() -> str:
    """Return the current UTC timestamp as ISO8601."""
    return datetime.now(timezone.utc).isoformat()


def build_manifest(
    plan: GridPlan,
    *,
    tiles_dir: Path,
    run_dir: Path,
    tile_width: int,
    tile_height: int,
    map_type: str | None,
    hidpi: bool,
    source: str,
    result: CaptureResult | None = None,
) -> dict[str, Any]:
    """Create the manifest dictionary describing a capture run."""
    lat, lon = plan.center
    span = plan.span
    try:
        tiles_ref = os.path.relpath(tiles_dir, run_dir)
    except ValueError:
        tiles_ref = str(tiles_dir)
    manifest: dict[str, Any] = {
        "schema_version": MANIFEST_SCHEMA_VERSION,
        "created_at": _utc_now(),
        "source": source,
        "center": {"lat": lat, "lon": lon},
        "tile_span": {"lat": span.lat, "lon": span.lon},
        "rows": plan.rows,
        "cols": plan.cols,
        "zoom": plan.zoom,
        "map_type": map_type,
        "hidpi": hidpi,
        "tile_size": {"width": tile_width, "height": tile_height},
        "tiles_dir": Path(tiles_ref).as_posix(),
    }
    if result is not None:
        manifest["capture"] = {
            "captured": len(result.captured),
            "total": result.total,
            "complete": result.complete,
            "elapsed_seconds": round(result.elapsed_seconds, 3),
            "timed_out": [list(cell) for cell in result.timed_out],
            "tile_ms": [round(value, 1) for value in result.tile_ms],
        }
    return manifest


def write_manifest(path: Path, manifest: Mapping[str, Any]) -> Path:
    validate_manifest(manifest)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    return path


def load_manifest(path: Path) -> dict[str, Any]:
    """Load and validate a manifest from disk."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise TypeError("Manifest must be a JSON object.")
    validate_manifest(payload)
    return payload


def find_manifest(tiles_dir: Path) -> Path | None:
    """Locate the manifest for a tiles directory (beside it or inside it)."""
    for candidate in (tiles_dir / MANIFEST_NAME, tiles_dir.parent / MANIFEST_NAME):
        if candidate.exists():
            return candidate
    return None


def capture_command(manifest: Mapping[str, Any]) -> str:
    """Return a ``mapmosaic capture`` invocation that replays the run exactly."""
    center = manifest["center"]
    span = manifest["tile_span"]
    parts = [
        "mapmosaic",
        "capture",
        "--center-lat",
        f"{center['lat']:.7f}",
        "--center-lon",
        f"{center['lon']:.7f}",
        "--tile-span",
        f"{span['lat']:.9g}",
        f"{span['lon']:.9g}",
        "--rows",
        str(manifest["rows"]),
        "--cols",
        str(manifest["cols"]),
    ]
    if manifest.get("zoom") is not None:
        parts += ["--zoom", f"{manifest['zoom']:g}"]
    if manifest.get("map_type"):
        parts += ["--map-type", str(manifest["map_type"])]
    if manifest.get("hidpi") is False:
        parts.append("--no-hidpi")
    return shlex.join(parts)


def stitch_command(tiles_dir: Path, output_file: Path, rows: int, cols: int) -> str:
    """Return a ``mapmosaic stitch`` invocation for the given tiles."""
    return shlex.join(
        [
            "mapmosaic",
            "stitch",
            "--input",
            str(tiles_dir),
            "--output",
            str(output_file),
            "--rows",
            str(rows),
            "--cols",
            str(cols),
        ]
    )
