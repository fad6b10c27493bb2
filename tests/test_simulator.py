from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from mapmosaic.detector import INSTALL_SCRIPT, RESET_SCRIPT, SNAPSHOT_SCRIPT, DetectorState
from mapmosaic.driver import DriverError, is_page_closed_error
from mapmosaic.geometry import Span
from mapmosaic.simulator import SimulatedMapPage, SimulationProfile


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_hook_lifecycle() -> None:
    page = SimulatedMapPage(4, clock=Clock())

    assert page.evaluate(RESET_SCRIPT) is None
    assert page.evaluate(SNAPSHOT_SCRIPT) is None
    assert page.evaluate(INSTALL_SCRIPT) is True
    assert page.evaluate(INSTALL_SCRIPT) is False
    assert page.evaluate(RESET_SCRIPT) == 1

    page.navigate("https://example.invalid/map")
    assert page.evaluate(RESET_SCRIPT) is None


def test_unknown_script_raises() -> None:
    page = SimulatedMapPage(4, clock=Clock())
    with pytest.raises(DriverError):
        page.evaluate("() => document.title")


def test_late_responses_keep_old_generation() -> None:
    clock = Clock()
    page = SimulatedMapPage(4, clock=clock, profile=SimulationProfile(fetches_per_view=2))
    page.evaluate(INSTALL_SCRIPT)
    page.evaluate(RESET_SCRIPT)
    page.set_region((0.0, 0.0), Span(0.01, 0.01))
    page.evaluate(RESET_SCRIPT)

    clock.now = 1.0
    state, _ = DetectorState.from_payload(page.evaluate(SNAPSHOT_SCRIPT))

    assert state.generation == 2
    assert state.completed_fetches == 0
    assert state.decoded_images == 0
    assert not state.has_activity


def test_set_region_clamps_minimum_span() -> None:
    page = SimulatedMapPage(4, clock=Clock(), profile=SimulationProfile(min_span_deg=0.001))

    page.set_region((1.0, 2.0), Span(0.0001, 0.0002))

    region = page.current_region()
    assert region.span_lat == pytest.approx(0.001)
    assert region.span_lon == pytest.approx(0.002)


def test_screenshot_colors_depend_on_center(tmp_path: Path) -> None:
    page = SimulatedMapPage(6, clock=Clock())
    page.set_region((1.0, 1.0), Span(0.01, 0.01))
    page.screenshot(tmp_path / "a.png")
    page.set_region((2.0, 1.0), Span(0.01, 0.01))
    page.screenshot(tmp_path / "b.png")

    with Image.open(tmp_path / "a.png") as first, Image.open(tmp_path / "b.png") as second:
        assert first.size == (6, 6)
        assert first.getpixel((3, 3)) != second.getpixel((3, 3))


def test_closed_page_raises_closed_error(tmp_path: Path) -> None:
    page = SimulatedMapPage(4, clock=Clock(), close_after_screenshots=1)
    page.screenshot(tmp_path / "a.png")

    with pytest.raises(DriverError) as excinfo:
        page.current_region()
    assert is_page_closed_error(excinfo.value)
