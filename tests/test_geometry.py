from __future__ import annotations

import pytest

from mapmosaic.geometry import Span, plan_grid, requested_span, tile_ground_size


def test_plan_grid_row_major_offsets() -> None:
    plan = plan_grid((37.0, -122.0), Span(0.01, 0.02), 3, 3)

    assert len(plan) == 9
    assert [(tile.row, tile.col) for tile in plan] == [
        (row, col) for row in range(3) for col in range(3)
    ]
    first = plan.tiles[0]
    middle = plan.tiles[4]
    last = plan.tiles[8]
    assert first.center_lat == pytest.approx(37.01)
    assert first.center_lon == pytest.approx(-122.02)
    assert middle.center_lat == pytest.approx(37.0)
    assert middle.center_lon == pytest.approx(-122.0)
    assert last.center_lat == pytest.approx(36.99)
    assert last.center_lon == pytest.approx(-121.98)


def test_plan_grid_every_cell_once() -> None:
    plan = plan_grid((0.0, 0.0), Span(0.001, 0.0013), 4, 7)

    cells = {(tile.row, tile.col) for tile in plan}
    assert len(cells) == len(plan) == 28
    assert all(0 <= row < 4 and 0 <= col < 7 for row, col in cells)


def test_plan_grid_single_cell_is_exact_center() -> None:
    plan = plan_grid((51.5074, -0.1278), Span(0.5, 0.65), 1, 1)

    tile = plan.tiles[0]
    assert tile.center_lat == 51.5074
    assert tile.center_lon == -0.1278


def test_plan_grid_single_row_offsets_longitude_only() -> None:
    plan = plan_grid((10.0, 20.0), Span(1.0, 2.0), 1, 2)

    assert [tile.center_lat for tile in plan] == [10.0, 10.0]
    assert [tile.center_lon for tile in plan] == [19.0, 21.0]


def test_plan_grid_even_grid_is_symmetric() -> None:
    plan = plan_grid((0.0, 0.0), Span(1.0, 1.0), 2, 2)

    assert [tile.center_lat for tile in plan] == [0.5, 0.5, -0.5, -0.5]
    assert [tile.center_lon for tile in plan] == [-0.5, 0.5, -0.5, 0.5]


def test_plan_grid_center_and_span_round_trip() -> None:
    plan = plan_grid((48.8566, 2.3522), Span(0.002, 0.0026), 5, 4, zoom=50)

    lat, lon = plan.center
    assert lat == pytest.approx(48.8566)
    assert lon == pytest.approx(2.3522)
    assert plan.span == Span(0.002, 0.0026)
    assert plan.zoom == 50


@pytest.mark.parametrize(("rows", "cols"), [(0, 3), (3, 0), (-1, 1)])
def test_plan_grid_rejects_empty_grids(rows: int, cols: int) -> None:
    with pytest.raises(ValueError):
        plan_grid((0.0, 0.0), Span(1.0, 1.0), rows, cols)


def test_requested_span_scales_and_clamps() -> None:
    span = requested_span(100)
    assert span.lat == pytest.approx(0.001)
    assert span.lon == pytest.approx(0.0013)

    clamped = requested_span(10_000)
    assert clamped.lat == pytest.approx(0.0001)
    assert clamped.lon == pytest.approx(0.00013)


def test_requested_span_rejects_non_positive_zoom() -> None:
    with pytest.raises(ValueError):
        requested_span(0)


def test_tile_ground_size_equator() -> None:
    width_m, height_m = tile_ground_size((0.0, 0.0), Span(0.01, 0.01))

    assert width_m == pytest.approx(1113.2, rel=1e-3)
    assert height_m == pytest.approx(1105.7, rel=1e-3)


def test_tile_ground_size_shrinks_with_latitude() -> None:
    equator, _ = tile_ground_size((0.0, 0.0), Span(0.01, 0.01))
    north, _ = tile_ground_size((60.0, 0.0), Span(0.01, 0.01))

    assert north == pytest.approx(equator / 2, rel=0.01)
