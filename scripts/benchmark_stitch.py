"""Benchmark stitching engines and write a calibration file."""

from __future__ import annotations

import argparse
import csv
import json
import shutil
from pathlib import Path
from statistics import mean
from time import perf_counter

import numpy as np
from PIL import Image

from mapmosaic.assembly import AssemblyError, default_engines, probe_job, run_stitch
from mapmosaic.config import Calibration
from mapmosaic.layout import tile_filename

SECONDS_FIELDS = {
    "vips": "vips_seconds_per_mpx",
    "montage": "montage_seconds_per_mpx",
    "inprocess": "inprocess_seconds_per_mpx",
}


def _resolve_output_dir(path_value: str) -> Path:
    """Resolve the benchmark output directory."""
    output_dir = Path(path_value)
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def write_synthetic_tiles(tiles_dir: Path, rows: int, cols: int, tile_size: int) -> None:
    """Write noisy tiles so PNG compression behaves like map imagery."""
    tiles_dir.mkdir(parents=True, exist_ok=True)
    rng = np.random.default_rng(0)
    for row in range(rows):
        for col in range(cols):
            base = rng.integers(0, 256, size=3, dtype=np.uint8)
            noise = rng.integers(0, 48, size=(tile_size, tile_size, 3), dtype=np.uint8)
            pixels = (base.astype(np.uint16) + noise).clip(0, 255).astype(np.uint8)
            Image.fromarray(pixels).save(tiles_dir / tile_filename(row, col))


def main() -> int:
    """CLI entrypoint for stitching benchmarks."""
    parser = argparse.ArgumentParser(description="Benchmark stitching engines.")
    parser.add_argument("--rows", type=int, default=4, help="Tile rows.")
    parser.add_argument("--cols", type=int, default=4, help="Tile columns.")
    parser.add_argument("--tile-size", type=int, default=512, help="Tile edge in pixels.")
    parser.add_argument("--runs", type=int, default=3, help="Number of runs per engine.")
    parser.add_argument(
        "--engine",
        action="append",
        choices=tuple(SECONDS_FIELDS),
        help="Engine to benchmark (repeatable; defaults to all installed).",
    )
    parser.add_argument(
        "--output-dir",
        default="benchmarks/stitch",
        help="Base output directory.",
    )
    parser.add_argument("--csv-path", help="Optional CSV output path override.")
    parser.add_argument(
        "--calibration-out",
        help="Calibration JSON path (defaults to <output-dir>/calibration.json).",
    )
    args = parser.parse_args()

    output_dir = _resolve_output_dir(args.output_dir)
    csv_path = Path(args.csv_path) if args.csv_path else output_dir / "stitch.csv"
    calibration_path = (
        Path(args.calibration_out) if args.calibration_out else output_dir / "calibration.json"
    )
    tiles_dir = output_dir / "tiles"
    if tiles_dir.exists():
        shutil.rmtree(tiles_dir)
    write_synthetic_tiles(tiles_dir, args.rows, args.cols, args.tile_size)

    # The ceiling is lifted so in-process timings exist for any grid size.
    calibration = Calibration(inprocess_max_pixels=10**12)
    engines = [
        engine
        for engine in default_engines()
        if engine.available() and (not args.engine or engine.name in args.engine)
    ]
    rows: list[dict[str, object]] = []
    for engine in engines:
        for run in range(1, args.runs + 1):
            output_file = output_dir / f"{engine.name}_run_{run:02d}.png"
            job = probe_job(tiles_dir, output_file, args.rows, args.cols)
            start = perf_counter()
            try:
                result = run_stitch(
                    job, engines=engines, calibration=calibration, only=engine.name
                )
            except AssemblyError as exc:
                print(f"{engine.name} run {run} failed: {exc}")
                continue
            elapsed = perf_counter() - start
            rows.append(
                {
                    "engine": engine.name,
                    "run": run,
                    "seconds": round(elapsed, 6),
                    "megapixels": round(job.pixels / 1_000_000, 3),
                    "seconds_per_mpx": round(elapsed / (job.pixels / 1_000_000), 6),
                    "bytes_per_pixel": round(result.output_bytes / job.pixels, 6),
                }
            )
            output_file.unlink(missing_ok=True)

    csv_path.parent.mkdir(parents=True, exist_ok=True)
    with csv_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(
            handle,
            fieldnames=[
                "engine",
                "run",
                "seconds",
                "megapixels",
                "seconds_per_mpx",
                "bytes_per_pixel",
            ],
        )
        writer.writeheader()
        writer.writerows(rows)

    calibration_payload: dict[str, float] = {}
    for name, field_name in SECONDS_FIELDS.items():
        samples = [row["seconds_per_mpx"] for row in rows if row["engine"] == name]
        if samples:
            calibration_payload[field_name] = round(mean(samples), 6)
    if rows:
        calibration_payload["bytes_per_pixel"] = round(
            max(row["bytes_per_pixel"] for row in rows), 6
        )
    calibration_path.write_text(json.dumps(calibration_payload, indent=2), encoding="utf-8")

    print(f"Wrote {len(rows)} rows to {csv_path}")
    print(f"Wrote calibration to {calibration_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
