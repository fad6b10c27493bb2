"""Adaptive tile-load detection.

A hook installed in the page counts tile fetches and image decodes. The
orchestrator resets the counters before every reposition and polls a
readiness predicate instead of sleeping for a fixed delay. Each request
remembers the generation that was current when it was issued; callbacks from
an older generation are dropped so late responses for the previous view can
never make the new view look loaded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from mapmosaic.driver import DriverError, PageDriver, is_page_closed_error

GPU_SETTLE_MS = 50.0
LOGGER = logging.getLogger(__name__)

INSTALL_SCRIPT = """
() => {
  if (window.__mapmosaicTiles) {
    return false;
  }
  const state = {
    generation: 0,
    pendingFetches: 0,
    completedFetches: 0,
    decodedImages: 0,
    failedFetches: 0,
    lastDecodeMs: performance.now(),
    hasActivity: false,
  };
  window.__mapmosaicTiles = state;
  const isTile = (input) => {
    const url = typeof input === 'string' ? input : (input && input.url) || '';
    return url.includes('tile?') || url.includes('/tile/');
  };
  const originalFetch = window.fetch;
  window.fetch = function (input, init) {
    const tracked = isTile(input);
    const generation = state.generation;
    if (tracked) {
      state.pendingFetches++;
      state.hasActivity = true;
    }
    return originalFetch.apply(this, arguments).then(
      (response) => {
        if (tracked && generation === state.generation) {
          state.pendingFetches--;
          state.completedFetches++;
          const decoded = () => {
            if (generation === state.generation) {
              state.decodedImages++;
              state.lastDecodeMs = performance.now();
            }
          };
          response.clone().blob().then(decoded, decoded);
        }
        return response;
      },
      (error) => {
        if (tracked && generation === state.generation) {
          state.pendingFetches--;
          state.failedFetches++;
        }
        throw error;
      },
    );
  };
  return true;
}
"""

RESET_SCRIPT = """
() => {
  const state = window.__mapmosaicTiles;
  if (!state) {
    return null;
  }
  state.generation++;
  state.pendingFetches = 0;
  state.completedFetches = 0;
  state.decodedImages = 0;
  state.failedFetches = 0;
  state.lastDecodeMs = performance.now();
  state.hasActivity = false;
  return state.generation;
}
"""

SNAPSHOT_SCRIPT = """
() => {
  const state = window.__mapmosaicTiles;
  if (!state) {
    return null;
  }
  return Object.assign({}, state, { now: performance.now() });
}
"""


@dataclass
class DetectorState:
    """Counters for the current generation of tile activity.

    The page owns the live copy; this class mirrors its transitions so
    snapshots can be evaluated here and simulated pages can host the same
    state machine.
    """

    generation: int = 0
    pending_fetches: int = 0
    completed_fetches: int = 0
    decoded_images: int = 0
    failed_fetches: int = 0
    last_decode_ms: float = 0.0
    has_activity: bool = False

    def reset(self, now_ms: float) -> int:
        self.generation += 1
        self.pending_fetches = 0
        self.completed_fetches = 0
        self.decoded_images = 0
        self.failed_fetches = 0
        self.last_decode_ms = now_ms
        self.has_activity = False
        return self.generation

    def fetch_started(self) -> int:
        """Record a new tile request and return its generation token."""
        self.pending_fetches += 1
        self.has_activity = True
        return self.generation

    def fetch_succeeded(self, generation: int) -> bool:
        if generation != self.generation:
            return False
        self.pending_fetches -= 1
        self.completed_fetches += 1
        return True

    def fetch_failed(self, generation: int) -> bool:
        if generation != self.generation:
            return False
        self.pending_fetches -= 1
        self.failed_fetches += 1
        return True

    def image_decoded(self, generation: int, now_ms: float) -> bool:
        if generation != self.generation:
            return False
        self.decoded_images += 1
        self.last_decode_ms = now_ms
        return True

    def is_ready(self, now_ms: float, settle_ms: float = GPU_SETTLE_MS) -> bool:
        """Return True once every started fetch settled and decoded, plus a settle buffer."""
        if not self.has_activity:
            return False
        return (
            self.pending_fetches == 0
            and self.completed_fetches > 0
            and self.decoded_images >= self.completed_fetches
            and now_ms - self.last_decode_ms >= settle_ms
        )

    def as_payload(self, now_ms: float) -> dict[str, Any]:
        """Serialize using the page-side field names."""
        return {
            "generation": self.generation,
            "pendingFetches": self.pending_fetches,
            "completedFetches": self.completed_fetches,
            "decodedImages": self.decoded_images,
            "failedFetches": self.failed_fetches,
            "lastDecodeMs": self.last_decode_ms,
            "hasActivity": self.has_activity,
            "now": now_ms,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> tuple[DetectorState, float]:
        """Parse a page snapshot into (state, page clock in ms)."""
        try:
            state = cls(
                generation=int(payload["generation"]),
                pending_fetches=int(payload["pendingFetches"]),
                completed_fetches=int(payload["completedFetches"]),
                decoded_images=int(payload["decodedImages"]),
                failed_fetches=int(payload["failedFetches"]),
                last_decode_ms=float(payload["lastDecodeMs"]),
                has_activity=bool(payload["hasActivity"]),
            )
            now_ms = float(payload["now"])
        except (KeyError, TypeError, ValueError) as exc:
            raise DriverError(f"Malformed detector snapshot: {payload!r}") from exc
        return state, now_ms


class LoadDetector:
    """Python handle on the page-side detector."""

    def __init__(self, page: PageDriver, *, settle_ms: float = GPU_SETTLE_MS) -> None:
        self.page = page
        self.settle_ms = settle_ms
        self.last_state: DetectorState | None = None

    def install(self) -> bool:
        """Install the fetch hook; returns False when it was already present."""
        return bool(self.page.evaluate(INSTALL_SCRIPT))

    def reset(self) -> int:
        """Start a new generation. Call immediately before repositioning the view."""
        generation = self.page.evaluate(RESET_SCRIPT)
        if generation is None:
            LOGGER.debug("Detector hook missing (page reloaded?); reinstalling.")
            self.install()
            generation = self.page.evaluate(RESET_SCRIPT)
        self.last_state = None
        return int(generation or 0)

    def snapshot(self) -> tuple[DetectorState, float] | None:
        payload = self.page.evaluate(SNAPSHOT_SCRIPT)
        if payload is None:
            return None
        state, now_ms = DetectorState.from_payload(payload)
        self.last_state = state
        return state, now_ms

    def ready(self) -> bool:
        """Readiness projection; transient driver errors read as not ready."""
        try:
            snapshot = self.snapshot()
        except DriverError as exc:
            if is_page_closed_error(exc):
                raise
            LOGGER.debug("Detector snapshot failed: %s", exc)
            return False
        if snapshot is None:
            return False
        state, now_ms = snapshot
        return state.is_ready(now_ms, self.settle_ms)
