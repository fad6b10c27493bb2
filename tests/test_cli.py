from __future__ import annotations

import json
import subprocess
import sys
from contextlib import contextmanager
from pathlib import Path

from PIL import Image

from mapmosaic import __version__, cli
from mapmosaic.geometry import Span, plan_grid
from mapmosaic.manifest import build_manifest, write_manifest
from mapmosaic.simulator import SimulatedMapPage
from tests.utils import with_src_env, write_tiles


def _run_dirs(base: Path) -> list[Path]:
    return [path for path in base.iterdir() if path.is_dir()]


def test_cli_help() -> None:
    result = subprocess.run(
        [sys.executable, "-m", "mapmosaic", "--help"],
        check=False,
        capture_output=True,
        text=True,
        env=with_src_env(),
    )
    assert result.returncode == 0
    assert "capture" in result.stdout
    assert "stitch" in result.stdout


def test_cli_version(capsys) -> None:
    assert cli.main(["version"]) == 0
    assert capsys.readouterr().out.strip() == __version__


def test_cli_stitch_subprocess(tmp_path: Path) -> None:
    tiles_dir = tmp_path / "tiles"
    write_tiles(tiles_dir, 2, 3, size=(8, 6))
    output = tmp_path / "mosaic.png"

    result = subprocess.run(
        [
            sys.executable,
            "-m",
            "mapmosaic",
            "stitch",
            "--input",
            str(tiles_dir),
            "--output",
            str(output),
            "--rows",
            "2",
            "--cols",
            "3",
            "--engine",
            "inprocess",
        ],
        check=False,
        capture_output=True,
        text=True,
        env=with_src_env(),
    )

    assert result.returncode == 0, result.stderr
    assert "Reproduce with: mapmosaic stitch" in result.stderr
    assert "STITCH COMPLETE" in result.stderr
    with Image.open(output) as image:
        assert image.size == (24, 12)


def test_cli_stitch_missing_tiles(tmp_path: Path, capsys) -> None:
    tiles_dir = tmp_path / "tiles"
    write_tiles(tiles_dir, 2, 2, skip={(1, 1)})

    code = cli.main(
        ["stitch", "--input", str(tiles_dir), "--rows", "2", "--cols", "2", "--engine", "inprocess"]
    )

    assert code == 1
    assert "Stitch failed: Missing 1 tile(s): tile_r01_c01.png" in capsys.readouterr().err
    assert not (tmp_path / "stitched.png").exists()
    assert len(list(tiles_dir.iterdir())) == 3


def test_cli_stitch_grid_from_manifest(tmp_path: Path, capsys) -> None:
    run_dir = tmp_path / "run"
    tiles_dir = run_dir / "tiles"
    write_tiles(tiles_dir, 2, 2, size=(4, 4))
    plan = plan_grid((37.0, -122.0), Span(0.001, 0.0013), 2, 2, zoom=100)
    manifest = build_manifest(
        plan,
        tiles_dir=tiles_dir,
        run_dir=run_dir,
        tile_width=4,
        tile_height=4,
        map_type="satellite",
        hidpi=False,
        source="simulated",
    )
    write_manifest(run_dir / "manifest.json", manifest)

    code = cli.main(["stitch", "--input", str(tiles_dir), "--engine", "inprocess"])

    err = capsys.readouterr().err
    assert code == 0
    assert "Original capture: mapmosaic capture" in err
    with Image.open(run_dir / "stitched.png") as image:
        assert image.size == (8, 8)


def test_cli_stitch_infers_grid_from_names(tmp_path: Path) -> None:
    tiles_dir = tmp_path / "tiles"
    write_tiles(tiles_dir, 3, 2, size=(5, 5))

    assert cli.main(["stitch", "--input", str(tiles_dir), "--engine", "inprocess"]) == 0
    with Image.open(tmp_path / "stitched.png") as image:
        assert image.size == (10, 15)


def test_cli_stitch_bad_manifest(tmp_path: Path, capsys) -> None:
    tiles_dir = tmp_path / "tiles"
    write_tiles(tiles_dir, 1, 1)
    (tmp_path / "manifest.json").write_text(json.dumps({"rows": 1}), encoding="utf-8")

    assert cli.main(["stitch", "--input", str(tiles_dir)]) == 1
    assert "Unreadable capture manifest" in capsys.readouterr().err


def test_cli_stitch_missing_input(tmp_path: Path) -> None:
    assert cli.main(["stitch", "--input", str(tmp_path / "nope")]) == 1


def test_cli_invalid_calibration(tmp_path: Path) -> None:
    tiles_dir = tmp_path / "tiles"
    write_tiles(tiles_dir, 1, 1)
    calibration = tmp_path / "cal.json"
    calibration.write_text(json.dumps({"warp_factor": 9}), encoding="utf-8")

    code = cli.main(["stitch", "--input", str(tiles_dir), "--calibration", str(calibration)])

    assert code == 2


def test_cli_capture_simulated_end_to_end(tmp_path: Path, capsys) -> None:
    code = cli.main(
        [
            "capture",
            "--simulate",
            "--rows",
            "2",
            "--cols",
            "2",
            "--viewport-size",
            "8",
            "--no-hidpi",
            "--output-dir",
            str(tmp_path),
        ]
    )

    err = capsys.readouterr().err
    assert code == 0, err
    (run_dir,) = _run_dirs(tmp_path)
    tiles = sorted(path.name for path in (run_dir / "tiles").iterdir())
    assert tiles == ["tile_r00_c00.png", "tile_r00_c01.png", "tile_r01_c00.png", "tile_r01_c01.png"]
    manifest = json.loads((run_dir / "manifest.json").read_text(encoding="utf-8"))
    assert manifest["source"] == "simulated"
    assert manifest["capture"]["captured"] == 4
    assert manifest["hidpi"] is False
    with Image.open(run_dir / "stitched.png") as image:
        assert image.size == (16, 16)
    assert "CAPTURE SUMMARY" in err
    assert "Done! 4/4 tiles" in err
    assert "Reproduce with: mapmosaic capture" in err
    assert "--tile-span" in err


def test_cli_capture_no_stitch(tmp_path: Path, capsys) -> None:
    code = cli.main(
        [
            "capture",
            "--simulate",
            "--rows",
            "1",
            "--cols",
            "2",
            "--viewport-size",
            "8",
            "--no-hidpi",
            "--tile-span",
            "0.002",
            "0.0026",
            "--output-dir",
            str(tmp_path),
            "--no-stitch",
        ]
    )

    err = capsys.readouterr().err
    assert code == 0
    (run_dir,) = _run_dirs(tmp_path)
    assert not (run_dir / "stitched.png").exists()
    assert "Stitch later with: mapmosaic stitch" in err
    manifest = json.loads((run_dir / "manifest.json").read_text(encoding="utf-8"))
    assert manifest["tile_span"] == {"lat": 0.002, "lon": 0.0026}


def test_cli_capture_browser_unavailable(tmp_path: Path, monkeypatch, capsys) -> None:
    from mapmosaic import browser

    @contextmanager
    def unavailable(config):
        raise browser.BrowserUnavailableError("Could not launch Chromium")
        yield

    monkeypatch.setattr(browser, "open_map_page", unavailable)

    code = cli.main(["capture", "--output-dir", str(tmp_path), "--rows", "1", "--cols", "1"])

    assert code == 2
    assert "Could not launch Chromium" in capsys.readouterr().err
    assert not tmp_path.exists() or not _run_dirs(tmp_path)


def test_cli_capture_window_closed_exits_cleanly(tmp_path: Path, monkeypatch, capsys) -> None:
    from mapmosaic import browser

    @contextmanager
    def closing_page(config):
        yield SimulatedMapPage(8, center=(37.0, -122.0), close_after_screenshots=1)

    monkeypatch.setattr(browser, "open_map_page", closing_page)
    monkeypatch.setattr(browser, "setup_map", lambda page, config: page.current_region())

    code = cli.main(
        [
            "capture",
            "--output-dir",
            str(tmp_path),
            "--rows",
            "2",
            "--cols",
            "2",
            "--viewport-size",
            "8",
            "--no-hidpi",
            "--tile-span",
            "0.001",
            "0.0013",
        ]
    )

    err = capsys.readouterr().err
    assert code == 0
    assert "Map window closed" in err
    (run_dir,) = _run_dirs(tmp_path)
    assert [path.name for path in (run_dir / "tiles").iterdir()] == ["tile_r00_c00.png"]
    assert not (run_dir / "manifest.json").exists()


def test_cli_capture_rejects_bad_grid(tmp_path: Path) -> None:
    try:
        cli.main(["capture", "--simulate", "--rows", "0", "--output-dir", str(tmp_path)])
    except SystemExit as exc:
        assert exc.code == 2
    else:
        raise AssertionError("expected argparse error")
