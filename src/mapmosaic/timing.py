"""Per-tile timing tracker used for ETA projection."""

from __future__ import annotations

from dataclasses import dataclass

EMA_ALPHA = 0.3
DEFAULT_MS_PER_TILE = 800.0


@dataclass
class TimingTracker:
    """Exponential moving average over tile capture times.

    Recent tiles weigh more than a cumulative mean because tile cost follows
    the terrain (open water is cheap, dense city is not) and shifts gradually
    across a run. Only used for display; never affects what is captured.
    """

    alpha: float = EMA_ALPHA
    default_ms: float = DEFAULT_MS_PER_TILE
    last_tile_ms: float | None = None
    ema_ms: float | None = None

    def reset(self) -> None:
        self.last_tile_ms = None
        self.ema_ms = None

    def update(self, observed_ms: float) -> float:
        self.last_tile_ms = observed_ms
        if self.ema_ms is None:
            self.ema_ms = observed_ms
        else:
            self.ema_ms = self.alpha * observed_ms + (1 - self.alpha) * self.ema_ms
        return self.ema_ms

    def estimate(self, elapsed_ms: float, tiles_done: int) -> float:
        """Milliseconds per tile: EMA, else running average, else the baseline."""
        if self.ema_ms is not None:
            return self.ema_ms
        if tiles_done > 0:
            return elapsed_ms / tiles_done
        return self.default_ms

    def remaining_ms(self, elapsed_ms: float, tiles_done: int, total: int) -> float:
        return max(0, total - tiles_done) * self.estimate(elapsed_ms, tiles_done)
