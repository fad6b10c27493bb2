from __future__ import annotations

import sys
from pathlib import Path

from mapmosaic import doctor
from mapmosaic.doctor import (
    check_engine,
    check_python_deps,
    check_python_version,
    check_viewer,
    run_doctor,
)
from tests.utils import write_script


def test_doctor_defaults() -> None:
    results = run_doctor(check_browser=False)
    names = {result.name for result in results}
    assert {"python", "playwright", "pillow", "numpy", "pyproj", "jsonschema"} <= names
    assert {"vips", "imagemagick", "vipsdisp"} <= names
    assert "chromium" not in names


def test_python_version_ok() -> None:
    assert check_python_version().status == "ok"


def test_python_version_too_old(monkeypatch) -> None:
    monkeypatch.setattr(doctor, "MIN_PYTHON", (99, 0))
    result = check_python_version()
    assert result.status == "error"
    assert "99.0" in result.detail


def test_python_deps_report_versions() -> None:
    results = {result.name: result for result in check_python_deps()}
    assert results["numpy"].status == "ok"
    assert results["pillow"].status == "ok"


def test_python_deps_missing_module(monkeypatch) -> None:
    monkeypatch.setattr(doctor, "PYTHON_DEPS", (("nosuchdep", "mapmosaic_nosuchdep"),))
    results = list(check_python_deps())
    assert results[0].status == "error"
    assert "pip install nosuchdep" in results[0].detail


def test_check_engine_missing() -> None:
    result = check_engine("vips", None, "apt install libvips-tools")
    assert result.status == "warn"
    assert "libvips" in result.detail


def test_check_engine_reports_version(tmp_path: Path) -> None:
    script = write_script(tmp_path / "fake_magick.py", 'print("Version: ImageMagick 7.1.1-21")\n')
    result = check_engine("imagemagick", [sys.executable, str(script)], "hint")
    assert result.status == "ok"
    assert result.detail.startswith("7.1.1")


def test_check_engine_silent_tool(tmp_path: Path) -> None:
    script = write_script(tmp_path / "silent.py", "pass\n")
    result = check_engine("vips", [sys.executable, str(script)], "hint")
    assert result.status == "warn"


def test_check_viewer(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr("shutil.which", lambda name: None)
    assert check_viewer({}).status == "warn"
    viewer = tmp_path / "vipsdisp"
    viewer.write_text("", encoding="utf-8")
    assert check_viewer({"vipsdisp": viewer}).status == "ok"
