"""Capture orchestrator: drive the detector across a planned grid."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from mapmosaic.config import Calibration
from mapmosaic.detector import LoadDetector
from mapmosaic.driver import DriverError, MapRegion, PageDriver, is_page_closed_error
from mapmosaic.geometry import GridPlan, requested_span, tile_ground_size
from mapmosaic.layout import tile_filename
from mapmosaic.logging_utils import tile_context
from mapmosaic.progress import (
    format_bytes,
    format_duration,
    format_pixels,
    progress_bar,
    summary_box,
)
from mapmosaic.timing import TimingTracker

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureProgress:
    """Progress event emitted before each tile and once at the end."""

    done: int
    total: int
    row: int | None
    col: int | None
    elapsed_seconds: float
    eta_seconds: float

    @property
    def finished(self) -> bool:
        return self.done >= self.total


@dataclass
class CaptureResult:
    """Outcome of a capture run (possibly partial)."""

    tiles_dir: Path
    total: int
    captured: list[Path] = field(default_factory=list)
    order: list[tuple[int, int]] = field(default_factory=list)
    timed_out: list[tuple[int, int]] = field(default_factory=list)
    tile_ms: list[float] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def complete(self) -> bool:
        return len(self.captured) == self.total


class CaptureCancelled(Exception):
    """Raised when the page is closed mid-run; carries the partial result."""

    def __init__(self, result: CaptureResult) -> None:
        super().__init__(
            f"Capture cancelled after {len(result.captured)}/{result.total} tiles."
        )
        self.result = result


ProgressCallback = Callable[[CaptureProgress], None]


class CaptureSession:
    """Session-scoped capture state: detector handle, timing, and poll settings."""

    def __init__(
        self,
        detector: LoadDetector,
        *,
        max_wait_ms: float = 5000,
        poll_interval_ms: float = 25,
        timing: TimingTracker | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.detector = detector
        self.max_wait_ms = max_wait_ms
        self.poll_interval_ms = poll_interval_ms
        self.timing = timing or TimingTracker()
        self.clock = clock
        self.sleep = sleep

    def wait_until_ready(self) -> bool:
        """Poll the detector until ready; False once ``max_wait_ms`` has passed."""
        deadline = self.clock() + self.max_wait_ms / 1000.0
        while True:
            if self.detector.ready():
                return True
            if self.clock() >= deadline:
                return False
            self.sleep(self.poll_interval_ms / 1000.0)


def resolve_tile_span(
    page: PageDriver,
    zoom: float,
    *,
    settle_ms: float = 500,
    sleep: Callable[[float], None] = time.sleep,
) -> MapRegion:
    """Apply the span requested for ``zoom`` and return what the map actually shows.

    Map surfaces clamp spans below their minimum, so tiles must be planned
    from the rendered span rather than the requested one.
    """
    region = page.current_region()
    requested = requested_span(zoom)
    page.set_region(region.center, requested)
    sleep(settle_ms / 1000.0)
    actual = page.current_region()
    if not (
        math.isclose(actual.span_lat, requested.lat, rel_tol=1e-3)
        and math.isclose(actual.span_lon, requested.lon, rel_tol=1e-3)
    ):
        LOGGER.info(
            "Map rendered span %.6f x %.6f deg (requested %.6f x %.6f).",
            actual.span_lat,
            actual.span_lon,
            requested.lat,
            requested.lon,
        )
    return actual


def _progress(
    session: CaptureSession,
    done: int,
    total: int,
    row: int | None,
    col: int | None,
    start: float,
) -> CaptureProgress:
    elapsed = session.clock() - start
    remaining_ms = session.timing.remaining_ms(elapsed * 1000.0, done, total)
    return CaptureProgress(
        done=done,
        total=total,
        row=row,
        col=col,
        elapsed_seconds=elapsed,
        eta_seconds=remaining_ms / 1000.0,
    )


def capture_grid(
    page: PageDriver,
    plan: GridPlan,
    tiles_dir: Path,
    *,
    session: CaptureSession,
    on_progress: ProgressCallback | None = None,
) -> CaptureResult:
    """Capture every tile of ``plan`` in row-major order.

    A tile that never reports ready within ``max_wait_ms`` is still captured
    with whatever is on screen; a stale tile is better than aborting a long
    run. Closing the page raises CaptureCancelled with the partial result.
    """
    tiles_dir.mkdir(parents=True, exist_ok=True)
    session.timing.reset()
    total = len(plan)
    result = CaptureResult(tiles_dir=tiles_dir, total=total)
    start = session.clock()

    for index, tile in enumerate(plan):
        context = tile_context(tile.row, tile.col)
        if on_progress:
            on_progress(_progress(session, index, total, tile.row, tile.col, start))
        tile_start = session.clock()
        path = tiles_dir / tile_filename(tile.row, tile.col)
        try:
            if page.has_modal_dialog():
                LOGGER.info("Dismissing modal dialog.", extra=context)
                page.dismiss_modal_dialog()
            session.detector.reset()
            page.set_region((tile.center_lat, tile.center_lon), tile.span)
            ready = session.wait_until_ready()
            if not ready:
                LOGGER.warning(
                    "Tiles not ready after %.0f ms; capturing current frame.",
                    session.max_wait_ms,
                    extra=context,
                )
                result.timed_out.append((tile.row, tile.col))
            state = session.detector.last_state
            if state is not None and state.failed_fetches:
                LOGGER.warning(
                    "%s tile fetch(es) failed; tile may be incomplete.",
                    state.failed_fetches,
                    extra=context,
                )
            page.screenshot(path)
        except DriverError as exc:
            if is_page_closed_error(exc):
                result.elapsed_seconds = session.clock() - start
                raise CaptureCancelled(result) from exc
            raise
        tile_ms = (session.clock() - tile_start) * 1000.0
        session.timing.update(tile_ms)
        result.captured.append(path)
        result.order.append((tile.row, tile.col))
        result.tile_ms.append(tile_ms)
        LOGGER.debug("Captured %s in %.0f ms.", path.name, tile_ms, extra=context)

    result.elapsed_seconds = session.clock() - start
    if on_progress:
        on_progress(_progress(session, total, total, None, None, start))
    return result


def render_capture_progress(progress: CaptureProgress) -> str:
    """Format a progress event as a single console line."""
    bar = progress_bar(progress.done, progress.total)
    if progress.finished:
        average = progress.elapsed_seconds / progress.total if progress.total else 0.0
        return (
            f"{bar} | Done! {progress.done}/{progress.total} tiles in "
            f"{format_duration(progress.elapsed_seconds)} (avg {average:.1f}s/tile)"
        )
    return (
        f"{bar} | Tile {progress.done + 1}/{progress.total} "
        f"(r{progress.row},c{progress.col}) | ~{format_duration(progress.eta_seconds)} left"
    )


def capture_summary(
    plan: GridPlan,
    tile_width: int,
    tile_height: int,
    calibration: Calibration,
) -> list[str]:
    """Pre-run statistics box: grid, final size, estimated size and time."""
    final_width = tile_width * plan.cols
    final_height = tile_height * plan.rows
    pixels = final_width * final_height
    width_m, height_m = tile_ground_size(plan.center, plan.span)
    estimated_seconds = len(plan) * calibration.default_ms_per_tile / 1000.0
    zoom = "n/a" if plan.zoom is None else f"{plan.zoom:g}"
    return summary_box(
        "CAPTURE SUMMARY",
        [
            ("Grid:", f"{plan.cols} x {plan.rows} tiles ({len(plan):,} total)"),
            ("Zoom level:", zoom),
            ("Tile size:", f"{tile_width:,} x {tile_height:,} px"),
            ("Tile ground:", f"~{width_m:,.0f} m x {height_m:,.0f} m"),
            None,
            ("Final image:", f"{final_width:,} x {final_height:,} px"),
            ("Total pixels:", format_pixels(pixels)),
            ("Est. size:", f"~{format_bytes(pixels * calibration.bytes_per_pixel)}"),
            None,
            ("Est. time:", f"~{format_duration(estimated_seconds)}"),
        ],
    )
