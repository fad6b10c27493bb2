"""Engine selection, tile validation and the fallback stitching chain."""

from __future__ import annotations

import logging
import struct
import time
import warnings
from pathlib import Path
from typing import Callable, Sequence

from PIL import Image

from mapmosaic.assembly.engines import ProgressCallback, StitchEngine
from mapmosaic.assembly.models import (
    AssemblyState,
    EngineChoice,
    EngineFailure,
    EngineExhaustedError,
    MissingTilesError,
    NoEngineAvailableError,
    StitchJob,
    StitchProgress,
    StitchResult,
)
from mapmosaic.config import Calibration
from mapmosaic.layout import tile_paths
from mapmosaic.progress import (
    format_bytes,
    format_duration,
    format_pixels,
    progress_bar,
    summary_box,
)

LOGGER = logging.getLogger(__name__)
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def estimate_bytes(pixels: int, calibration: Calibration) -> int:
    return int(pixels * calibration.bytes_per_pixel)


def estimate_seconds(pixels: int, seconds_per_mpx: float) -> float:
    return pixels / 1_000_000 * seconds_per_mpx


def _install_hints(engines: Sequence[StitchEngine]) -> str:
    hints = [f"{engine.name}: {engine.install_hint}" for engine in engines if engine.install_hint]
    return "; ".join(hints)


def eligible_engines(
    pixels: int,
    engines: Sequence[StitchEngine],
    calibration: Calibration,
    *,
    only: str | None = None,
) -> list[StitchEngine]:
    """Return engines that can handle ``pixels``, in priority order."""
    selected = [engine for engine in engines if only in (None, "auto", engine.name)]
    return [
        engine
        for engine in selected
        if engine.available() and engine.accepts(pixels, calibration)
    ]


def _choice(engine: StitchEngine, pixels: int, calibration: Calibration) -> EngineChoice:
    return EngineChoice(
        engine=engine.name,
        estimated_pixels=pixels,
        estimated_bytes=estimate_bytes(pixels, calibration),
        estimated_seconds=estimate_seconds(pixels, engine.seconds_per_mpx(calibration)),
    )


def _no_engine_error(
    pixels: int,
    engines: Sequence[StitchEngine],
    calibration: Calibration,
    only: str | None,
) -> NoEngineAvailableError:
    scope = "" if only in (None, "auto") else f" (requested engine: {only})"
    return NoEngineAvailableError(
        f"No stitching engine available for {format_pixels(pixels)} pixels{scope}. "
        f"In-process limit is {format_pixels(int(calibration.inprocess_max_pixels))} pixels. "
        f"Install one of: {_install_hints(engines)}. Tiles were left on disk."
    )


def select_engine(
    tile_width: int,
    tile_height: int,
    rows: int,
    cols: int,
    *,
    engines: Sequence[StitchEngine],
    calibration: Calibration,
    only: str | None = None,
) -> EngineChoice:
    """Pick the first eligible engine and attach size and time estimates."""
    pixels = tile_width * cols * tile_height * rows
    candidates = eligible_engines(pixels, engines, calibration, only=only)
    if not candidates:
        raise _no_engine_error(pixels, engines, calibration, only)
    return _choice(candidates[0], pixels, calibration)


def validate_tiles(input_dir: Path, rows: int, cols: int) -> list[Path]:
    """Return row-major tile paths, raising if any is absent."""
    paths = tile_paths(input_dir, rows, cols)
    missing = [path for path in paths if not path.is_file()]
    if missing:
        raise MissingTilesError(missing)
    return paths


def probe_job(input_dir: Path, output_file: Path, rows: int, cols: int) -> StitchJob:
    """Build a StitchJob using the first tile's pixel size.

    Every expected tile is checked first so a missing-tile error lists all of
    them, not only the one used for probing.
    """
    if rows < 1 or cols < 1:
        raise ValueError("rows and cols must be positive.")
    first = validate_tiles(input_dir, rows, cols)[0]
    with Image.open(first) as tile:
        width, height = tile.size
    return StitchJob(
        input_dir=input_dir,
        output_file=output_file,
        rows=rows,
        cols=cols,
        tile_width=width,
        tile_height=height,
    )


def read_resolution(path: Path) -> tuple[int, int] | None:
    """Return (width, height) from the image header without decoding pixels."""
    with path.open("rb") as handle:
        header = handle.read(24)
    if header[:8] == PNG_SIGNATURE and header[12:16] == b"IHDR":
        width, height = struct.unpack(">II", header[16:24])
        return (width, height)
    # Non-PNG outputs: Pillow reads headers lazily but guards large images.
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", Image.DecompressionBombWarning)
        try:
            with Image.open(path) as image:
                return image.size
        except (OSError, Image.DecompressionBombError):
            return None


def _remove_partial(path: Path) -> None:
    if path.exists():
        LOGGER.debug("Removing partial output %s", path)
        path.unlink()


def run_stitch(
    job: StitchJob,
    *,
    engines: Sequence[StitchEngine],
    calibration: Calibration,
    only: str | None = None,
    on_progress: ProgressCallback | None = None,
    on_engine: Callable[[EngineChoice], None] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> StitchResult:
    """Assemble ``job`` with the first engine that succeeds.

    Missing tiles abort before anything is written. Each failing engine has
    its partial output removed before the next one is tried.
    """
    tiles = validate_tiles(job.input_dir, job.rows, job.cols)
    candidates = eligible_engines(job.pixels, engines, calibration, only=only)
    if not candidates:
        raise _no_engine_error(job.pixels, engines, calibration, only)

    job.output_file.parent.mkdir(parents=True, exist_ok=True)
    failures: list[EngineFailure] = []
    start = clock()
    for engine in candidates:
        choice = _choice(engine, job.pixels, calibration)
        context = {"engine": engine.name}
        LOGGER.info(
            "Stitching %dx%d tiles into %s (est. %s, ~%s).",
            job.cols,
            job.rows,
            job.output_file.name,
            format_bytes(choice.estimated_bytes),
            format_duration(choice.estimated_seconds),
            extra=context,
        )
        if on_engine:
            on_engine(choice)
        _remove_partial(job.output_file)
        if on_progress:
            on_progress(
                StitchProgress(
                    state=AssemblyState.PROCESSING,
                    current_bytes=0,
                    estimated_bytes=choice.estimated_bytes,
                    elapsed_seconds=0.0,
                    eta_seconds=choice.estimated_seconds,
                )
            )
        run = engine.assemble(
            job,
            tiles,
            choice,
            interval=calibration.monitor_interval_s,
            on_progress=on_progress,
        )
        if run.returncode == 0 and job.output_file.is_file():
            output_bytes = job.output_file.stat().st_size
            return StitchResult(
                job=job,
                choice=choice,
                output_file=job.output_file,
                state=AssemblyState.COMPLETE,
                elapsed_seconds=clock() - start,
                output_bytes=output_bytes,
                resolution=read_resolution(job.output_file),
                failures=failures,
            )
        detail = run.detail or "engine exited without writing output"
        failures.append(EngineFailure(engine.name, run.returncode, detail))
        LOGGER.warning(
            "Failed during %s (exit %s): %s",
            run.reached.value,
            run.returncode,
            detail,
            extra=context,
        )
        _remove_partial(job.output_file)

    raise EngineExhaustedError(failures)


def render_stitch_progress(progress: StitchProgress, engine: str) -> str:
    """Format one monitor sample as a console line."""
    eta = format_duration(progress.eta_seconds)
    if progress.state is AssemblyState.WRITING:
        return (
            f"Stitching [{engine}] {progress_bar(progress.percent, 100)} | "
            f"{format_bytes(progress.current_bytes)} / "
            f"~{format_bytes(progress.estimated_bytes)} | ~{eta} left"
        )
    return (
        f"Stitching [{engine}] processing tiles... "
        f"{format_duration(progress.elapsed_seconds)} elapsed | ~{eta} left"
    )


def stitch_summary(result: StitchResult) -> list[str]:
    """Post-run box: engine, output size, resolution and time."""
    resolution = "unknown"
    if result.resolution is not None:
        width, height = result.resolution
        resolution = f"{width:,} x {height:,} px"
    rows: list[tuple[str, str] | None] = [
        ("Engine:", result.choice.engine),
        ("Output:", result.output_file.name),
        ("Resolution:", resolution),
        ("File size:", format_bytes(result.output_bytes)),
        ("Time:", format_duration(result.elapsed_seconds)),
    ]
    if result.failures:
        rows.append(None)
        rows.extend(
            ("Fell back:", f"{failure.engine} (exit {failure.returncode})")
            for failure in result.failures
        )
    return summary_box("STITCH COMPLETE", rows)
