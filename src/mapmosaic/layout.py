"""On-disk naming for capture runs.

Assembly depends only on these names plus the grid size, so tiles captured in
one process can be stitched by a later, separate invocation.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path

TILES_DIRNAME = "tiles"
MANIFEST_NAME = "manifest.json"
STITCHED_NAME = "stitched.png"
RUN_DIR_FORMAT = "%Y-%m-%d_%H-%M-%S"
TILE_NAME_PATTERN = re.compile(r"^tile_r(\d{2,})_c(\d{2,})\.png$")


def tile_filename(row: int, col: int) -> str:
    """Return ``tile_r00_c00.png`` style names."""
    return f"tile_r{row:02d}_c{col:02d}.png"


def tile_paths(tiles_dir: Path, rows: int, cols: int) -> list[Path]:
    """Return expected tile paths in row-major order."""
    return [tiles_dir / tile_filename(row, col) for row in range(rows) for col in range(cols)]


def infer_grid(tiles_dir: Path) -> tuple[int, int] | None:
    """Infer (rows, cols) from tile names present on disk."""
    rows = cols = 0
    for path in tiles_dir.glob("tile_r*_c*.png"):
        match = TILE_NAME_PATTERN.match(path.name)
        if not match:
            continue
        rows = max(rows, int(match.group(1)) + 1)
        cols = max(cols, int(match.group(2)) + 1)
    if rows == 0 or cols == 0:
        return None
    return (rows, cols)


def make_run_dir(base: Path, *, now: datetime | None = None) -> Path:
    """Create and return ``<base>/<YYYY-MM-DD_HH-MM-SS>``."""
    stamp = (now or datetime.now()).strftime(RUN_DIR_FORMAT)
    run_dir = base / stamp
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir
