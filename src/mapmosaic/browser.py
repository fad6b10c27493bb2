"""Playwright-backed page driver for the MapKit map surface."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from playwright.sync_api import Dialog, Page, sync_playwright
from playwright.sync_api import Error as PlaywrightError

from mapmosaic.config import CaptureConfig, resolve_center
from mapmosaic.driver import DriverError, MapRegion
from mapmosaic.geometry import Span

LOGGER = logging.getLogger(__name__)
T = TypeVar("T")

REGION_SCRIPT = """
() => ({
  centerLat: map.region.center.latitude,
  centerLon: map.region.center.longitude,
  spanLat: map.region.span.latitudeDelta,
  spanLon: map.region.span.longitudeDelta,
})
"""

SET_REGION_SCRIPT = """
([lat, lon, spanLat, spanLon]) => {
  const center = new mapkit.Coordinate(lat, lon);
  const span = new mapkit.CoordinateSpan(spanLat, spanLon);
  map.region = new mapkit.CoordinateRegion(center, span);
}
"""

MAP_READY_SCRIPT = "() => typeof window.map !== 'undefined' && !!window.map.region"

HIDE_UI_SCRIPT = """
() => {
  map.showsZoomControl = false;
  map.showsMapTypeControl = false;
  map.showsCompass = false;
  map.showsScale = false;
  if (document.getElementById('mapmosaic-hide-ui')) {
    return;
  }
  const style = document.createElement('style');
  style.id = 'mapmosaic-hide-ui';
  style.textContent = `
    .mk-compass, [class*='compass'], [class*='Compass'],
    .mk-attribution, [class*='attribution'], [class*='Attribution'],
    .mk-legal, [class*='legal'], [class*='Legal'],
    .mk-logo, [class*='logo'], [class*='watermark'],
    .mk-controls, [class*='controls'], [class*='Controls'] {
      display: none !important;
    }
  `;
  document.head.appendChild(style);
}
"""

INSTALL_HINT = "Install the browser with: python -m playwright install chromium"


class BrowserUnavailableError(RuntimeError):
    """Raised when Chromium cannot be launched through Playwright."""


class PlaywrightMapPage:
    """PageDriver implementation over a Playwright page hosting MapKit JS."""

    def __init__(self, page: Page) -> None:
        self._page = page
        self._dialog: Dialog | None = None
        page.on("dialog", self._on_dialog)

    def _on_dialog(self, dialog: Dialog) -> None:
        LOGGER.debug("Modal dialog opened: %s", dialog.message)
        self._dialog = dialog

    def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return func(*args, **kwargs)
        except PlaywrightError as exc:
            raise DriverError(str(exc)) from exc

    def navigate(self, url: str) -> None:
        self._call(self._page.goto, url, wait_until="domcontentloaded")

    def evaluate(self, script: str) -> Any:
        return self._call(self._page.evaluate, script)

    def screenshot(self, path: Path) -> None:
        self._call(self._page.screenshot, path=str(path))

    def current_region(self) -> MapRegion:
        return MapRegion.from_payload(self.evaluate(REGION_SCRIPT))

    def set_region(self, center: tuple[float, float], span: Span) -> None:
        lat, lon = center
        self._call(self._page.evaluate, SET_REGION_SCRIPT, [lat, lon, span.lat, span.lon])

    def has_modal_dialog(self) -> bool:
        return self._dialog is not None

    def dismiss_modal_dialog(self) -> None:
        dialog, self._dialog = self._dialog, None
        if dialog is not None:
            self._call(dialog.dismiss)

    def wait_for_map(self, timeout_ms: float = 30000) -> None:
        """Block until the page exposes an initialized ``map`` global."""
        self._call(self._page.wait_for_function, MAP_READY_SCRIPT, timeout=timeout_ms)

    def pause(self, milliseconds: float) -> None:
        self._call(self._page.wait_for_timeout, milliseconds)

    def set_map_type(self, map_type: str) -> None:
        self._call(self._page.evaluate, "(mapType) => { map.mapType = mapType; }", map_type)

    def hide_ui(self) -> None:
        self.evaluate(HIDE_UI_SCRIPT)


@contextmanager
def open_map_page(config: CaptureConfig) -> Iterator[PlaywrightMapPage]:
    """Launch Chromium with a square viewport and yield a page driver."""
    with sync_playwright() as playwright:
        try:
            browser = playwright.chromium.launch(headless=config.headless)
        except PlaywrightError as exc:
            raise BrowserUnavailableError(f"Could not launch Chromium: {exc}\n{INSTALL_HINT}") from exc
        try:
            context = browser.new_context(
                viewport={"width": config.viewport_size, "height": config.viewport_size},
                device_scale_factor=2 if config.hidpi else 1,
            )
            yield PlaywrightMapPage(context.new_page())
        finally:
            try:
                browser.close()
            except PlaywrightError as exc:
                LOGGER.debug("Browser already closed: %s", exc)


def setup_map(page: PlaywrightMapPage, config: CaptureConfig) -> MapRegion:
    """Load the map, strip UI chrome, and center on the configured focal point."""
    page.navigate(config.map_url.format(city=config.city))
    page.wait_for_map()
    if page.has_modal_dialog():
        page.dismiss_modal_dialog()
    page.set_map_type(config.map_type)
    page.hide_ui()
    lat, lon = resolve_center(config)
    LOGGER.info("Centering on %.4f, %.4f", lat, lon)
    page.set_region((lat, lon), page.current_region().span)
    page.pause(config.span_settle_ms)
    return page.current_region()
