"""Grid planning: turn a focal point and tile span into ordered tile centers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from pyproj import Geod

MIN_SPAN_DEG = 0.0001
LON_ASPECT = 1.3

_GEOD = Geod(ellps="WGS84")


@dataclass(frozen=True)
class Span:
    """Angular height (lat) and width (lon) covered by one tile, in degrees."""

    lat: float
    lon: float


@dataclass(frozen=True)
class TileDescriptor:
    """One planned grid cell."""

    row: int
    col: int
    center_lat: float
    center_lon: float
    span_lat: float
    span_lon: float

    @property
    def span(self) -> Span:
        return Span(self.span_lat, self.span_lon)


@dataclass(frozen=True)
class GridPlan:
    """Row-major sequence of tiles for one capture session."""

    tiles: tuple[TileDescriptor, ...]
    rows: int
    cols: int
    zoom: float | None = None

    def __len__(self) -> int:
        return len(self.tiles)

    def __iter__(self) -> Iterator[TileDescriptor]:
        return iter(self.tiles)

    @property
    def center(self) -> tuple[float, float]:
        """Focal point the grid was planned around."""
        first = self.tiles[0]
        lat = first.center_lat + _centered_offset(0, self.rows) * first.span_lat
        lon = first.center_lon - _centered_offset(0, self.cols) * first.span_lon
        return (lat, lon)

    @property
    def span(self) -> Span:
        return self.tiles[0].span


def requested_span(zoom: float) -> Span:
    """Span to request for a zoom factor; the map may clamp it when rendering."""
    if zoom <= 0:
        raise ValueError("zoom must be positive.")
    lat = max(MIN_SPAN_DEG, 0.1 / zoom)
    return Span(lat, lat * LON_ASPECT)


def _centered_offset(index: int, count: int) -> float:
    """Offset of ``index`` from the middle of ``count`` cells, in cell units."""
    if count == 1:
        return 0.0
    return index - (count - 1) / 2.0


def plan_grid(
    center: tuple[float, float],
    tile_span: Span,
    rows: int,
    cols: int,
    *,
    zoom: float | None = None,
) -> GridPlan:
    """Plan a rows x cols grid centered on ``center``.

    Row 0 is the northern edge and column 0 the western edge, so the plan
    order matches the pixel layout of the assembled mosaic.
    """
    if rows < 1 or cols < 1:
        raise ValueError("rows and cols must be at least 1.")
    center_lat, center_lon = center
    tiles = tuple(
        TileDescriptor(
            row=row,
            col=col,
            center_lat=center_lat - _centered_offset(row, rows) * tile_span.lat,
            center_lon=center_lon + _centered_offset(col, cols) * tile_span.lon,
            span_lat=tile_span.lat,
            span_lon=tile_span.lon,
        )
        for row in range(rows)
        for col in range(cols)
    )
    return GridPlan(tiles=tiles, rows=rows, cols=cols, zoom=zoom)


def tile_ground_size(center: tuple[float, float], span: Span) -> tuple[float, float]:
    """Return (width_m, height_m) of a tile on the WGS84 ellipsoid."""
    lat, lon = center
    _, _, width = _GEOD.inv(lon - span.lon / 2.0, lat, lon + span.lon / 2.0, lat)
    _, _, height = _GEOD.inv(lon, lat - span.lat / 2.0, lon, lat + span.lat / 2.0)
    return (abs(width), abs(height))
