from __future__ import annotations

import os
import textwrap
from pathlib import Path

import numpy as np
from PIL import Image

from mapmosaic.layout import tile_filename


def tile_color(row: int, col: int) -> tuple[int, int, int]:
    """Distinct, deterministic color for a grid cell."""
    return ((row * 60 + 10) % 256, (col * 60 + 20) % 256, (row * 13 + col * 7) % 256)


def write_tiles(
    tiles_dir: Path,
    rows: int,
    cols: int,
    *,
    size: tuple[int, int] = (8, 6),
    skip: set[tuple[int, int]] | None = None,
) -> list[Path]:
    """Write solid-color PNG tiles of ``size`` (width, height) in row-major order."""
    tiles_dir.mkdir(parents=True, exist_ok=True)
    width, height = size
    paths = []
    for row in range(rows):
        for col in range(cols):
            if skip and (row, col) in skip:
                continue
            pixels = np.empty((height, width, 3), dtype=np.uint8)
            pixels[:, :] = tile_color(row, col)
            path = tiles_dir / tile_filename(row, col)
            Image.fromarray(pixels).save(path)
            paths.append(path)
    return paths


def write_script(path: Path, body: str) -> Path:
    """Write a small Python program used as a fake external tool."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(body).lstrip(), encoding="utf-8")
    return path


def with_src_env(base_env: dict[str, str] | None = None) -> dict[str, str]:
    """Return an environment with repo src/ on PYTHONPATH."""
    env = dict(base_env or os.environ)
    repo_root = Path(__file__).resolve().parents[1]
    src_path = repo_root / "src"
    if src_path.exists():
        existing = env.get("PYTHONPATH", "")
        entries = [entry for entry in existing.split(os.pathsep) if entry]
        src_str = str(src_path)
        if src_str not in entries:
            entries.insert(0, src_str)
        env["PYTHONPATH"] = os.pathsep.join(entries)
    return env
