"""In-process stand-in for a live map page, used for offline dry runs.

The simulated page hosts the same detector state machine the browser hook
implements: every reposition issues a burst of tile fetches that settle and
decode after configurable latencies, and late events from an earlier view
arrive tagged with their old generation.
"""

from __future__ import annotations

import heapq
import logging
import time
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import numpy as np
from PIL import Image

from mapmosaic.detector import INSTALL_SCRIPT, RESET_SCRIPT, SNAPSHOT_SCRIPT, DetectorState
from mapmosaic.driver import DriverError, MapRegion
from mapmosaic.geometry import Span

LOGGER = logging.getLogger(__name__)
CLOSED_MESSAGE = "Target page, context or browser has been closed"


@dataclass(frozen=True)
class SimulationProfile:
    """Network behaviour of the simulated tile server."""

    fetches_per_view: int = 4
    fetch_latency_ms: float = 30.0
    fetch_stagger_ms: float = 5.0
    decode_latency_ms: float = 10.0
    failing_fetches: int = 0
    min_span_deg: float = 0.0005


class SimulatedMapPage:
    """PageDriver that renders synthetic tiles without a browser."""

    def __init__(
        self,
        tile_pixels: int,
        *,
        center: tuple[float, float] = (0.0, 0.0),
        span: Span = Span(0.01, 0.013),
        profile: SimulationProfile | None = None,
        clock: Callable[[], float] = time.monotonic,
        close_after_screenshots: int | None = None,
        pending_dialogs: int = 0,
    ) -> None:
        self.tile_pixels = tile_pixels
        self.profile = profile or SimulationProfile()
        self.clock = clock
        self.close_after_screenshots = close_after_screenshots
        self.pending_dialogs = pending_dialogs
        self.region = MapRegion(center[0], center[1], span.lat, span.lon)
        self.state = DetectorState()
        self.hook_installed = False
        self.closed = False
        self.url: str | None = None
        self.screenshots: list[Path] = []
        self.regions: list[MapRegion] = []
        self._events: list[tuple[float, int, str, int]] = []
        self._sequence = 0

    def _now_ms(self) -> float:
        return self.clock() * 1000.0

    def _check_open(self) -> None:
        if self.closed:
            raise DriverError(CLOSED_MESSAGE)

    def _schedule(self, due_ms: float, kind: str, generation: int) -> None:
        self._sequence += 1
        heapq.heappush(self._events, (due_ms, self._sequence, kind, generation))

    def _advance(self) -> None:
        now = self._now_ms()
        while self._events and self._events[0][0] <= now:
            due, _, kind, generation = heapq.heappop(self._events)
            if kind == "ok":
                if self.state.fetch_succeeded(generation):
                    self._schedule(due + self.profile.decode_latency_ms, "decode", generation)
            elif kind == "fail":
                self.state.fetch_failed(generation)
            else:
                self.state.image_decoded(generation, due)

    def navigate(self, url: str) -> None:
        self._check_open()
        self.url = url
        self.hook_installed = False
        self.state = DetectorState()
        self._events.clear()

    def evaluate(self, script: str) -> Any:
        self._check_open()
        self._advance()
        if script == INSTALL_SCRIPT:
            if self.hook_installed:
                return False
            self.hook_installed = True
            return True
        if script == RESET_SCRIPT:
            if not self.hook_installed:
                return None
            return self.state.reset(self._now_ms())
        if script == SNAPSHOT_SCRIPT:
            if not self.hook_installed:
                return None
            return self.state.as_payload(self._now_ms())
        raise DriverError("Simulated page only understands detector scripts.")

    def set_region(self, center: tuple[float, float], span: Span) -> None:
        self._check_open()
        self._advance()
        span_lat = max(span.lat, self.profile.min_span_deg)
        span_lon = span.lon * (span_lat / span.lat) if span.lat > 0 else span.lon
        self.region = MapRegion(center[0], center[1], span_lat, span_lon)
        self.regions.append(self.region)
        if not self.hook_installed:
            return
        now = self._now_ms()
        for index in range(self.profile.fetches_per_view):
            generation = self.state.fetch_started()
            due = now + self.profile.fetch_latency_ms + index * self.profile.fetch_stagger_ms
            kind = "fail" if index < self.profile.failing_fetches else "ok"
            self._schedule(due, kind, generation)

    def current_region(self) -> MapRegion:
        self._check_open()
        return self.region

    def screenshot(self, path: Path) -> None:
        self._check_open()
        Image.fromarray(self._render()).save(path, format="PNG")
        self.screenshots.append(path)
        if (
            self.close_after_screenshots is not None
            and len(self.screenshots) >= self.close_after_screenshots
        ):
            LOGGER.debug("Simulated page closing after %s screenshots.", len(self.screenshots))
            self.closed = True

    def _render(self) -> np.ndarray:
        """Paint a flat color keyed on the region center, with a grid border."""
        key = f"{self.region.center_lat:.7f},{self.region.center_lon:.7f}".encode("ascii")
        seed = zlib.crc32(key)
        color = np.array([seed & 0xFF, (seed >> 8) & 0xFF, (seed >> 16) & 0xFF], dtype=np.uint8)
        size = self.tile_pixels
        pixels = np.empty((size, size, 3), dtype=np.uint8)
        pixels[:, :] = color
        pixels[0, :] = 255
        pixels[:, 0] = 255
        return pixels

    def has_modal_dialog(self) -> bool:
        self._check_open()
        return self.pending_dialogs > 0

    def dismiss_modal_dialog(self) -> None:
        self._check_open()
        self.pending_dialogs = max(0, self.pending_dialogs - 1)
