"""Page driver protocol shared by the browser and simulated map surfaces."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from mapmosaic.geometry import Span

PAGE_CLOSED_PATTERNS = (
    "no such window",
    "target window already closed",
    "target page, context or browser has been closed",
    "target closed",
    "browser has been closed",
    "page has been closed",
)


class DriverError(RuntimeError):
    """Raised when the page driver cannot complete a command."""


@dataclass(frozen=True)
class MapRegion:
    """Center and span of what the map surface currently displays."""

    center_lat: float
    center_lon: float
    span_lat: float
    span_lon: float

    @property
    def center(self) -> tuple[float, float]:
        return (self.center_lat, self.center_lon)

    @property
    def span(self) -> Span:
        return Span(self.span_lat, self.span_lon)

    @classmethod
    def from_payload(cls, payload: Any) -> MapRegion:
        if not isinstance(payload, dict):
            raise DriverError(f"Unexpected region payload: {payload!r}")
        try:
            return cls(
                center_lat=float(payload["centerLat"]),
                center_lon=float(payload["centerLon"]),
                span_lat=float(payload["spanLat"]),
                span_lon=float(payload["spanLon"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DriverError(f"Unexpected region payload: {payload!r}") from exc


class PageDriver(Protocol):
    """Capabilities the orchestrator needs from a live map page."""

    def navigate(self, url: str) -> None:
        ...

    def evaluate(self, script: str) -> Any:
        ...

    def screenshot(self, path: Path) -> None:
        ...

    def current_region(self) -> MapRegion:
        ...

    def set_region(self, center: tuple[float, float], span: Span) -> None:
        ...

    def has_modal_dialog(self) -> bool:
        ...

    def dismiss_modal_dialog(self) -> None:
        ...


def is_page_closed_error(exc: BaseException) -> bool:
    """Return True when an error means the user closed the page or window."""
    message = str(exc).lower()
    return any(pattern in message for pattern in PAGE_CLOSED_PATTERNS)
