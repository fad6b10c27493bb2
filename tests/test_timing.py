from __future__ import annotations

import pytest

from mapmosaic.timing import DEFAULT_MS_PER_TILE, TimingTracker


def test_first_observation_seeds_ema() -> None:
    tracker = TimingTracker()

    assert tracker.update(1000.0) == 1000.0
    assert tracker.last_tile_ms == 1000.0


def test_ema_weights_recent_tiles() -> None:
    tracker = TimingTracker()
    tracker.update(1000.0)

    assert tracker.update(2000.0) == pytest.approx(0.3 * 2000.0 + 0.7 * 1000.0)
    assert tracker.last_tile_ms == 2000.0


def test_estimate_falls_back_to_average_then_default() -> None:
    tracker = TimingTracker()

    assert tracker.estimate(0.0, 0) == DEFAULT_MS_PER_TILE
    assert tracker.estimate(3000.0, 2) == 1500.0
    tracker.update(400.0)
    assert tracker.estimate(3000.0, 2) == 400.0


def test_remaining_ms_uses_estimate() -> None:
    tracker = TimingTracker(default_ms=500.0)

    assert tracker.remaining_ms(0.0, 0, 10) == 5000.0
    tracker.update(200.0)
    assert tracker.remaining_ms(200.0, 1, 10) == 1800.0
    assert tracker.remaining_ms(2000.0, 10, 10) == 0.0


def test_reset_clears_session_state() -> None:
    tracker = TimingTracker()
    tracker.update(123.0)
    tracker.reset()

    assert tracker.ema_ms is None
    assert tracker.last_tile_ms is None
