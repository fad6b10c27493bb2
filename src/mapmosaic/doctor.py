"""Environment and dependency checks for mapmosaic."""

from __future__ import annotations

import importlib
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from mapmosaic.tools.config import load_tool_paths
from mapmosaic.tools.discovery import find_montage, find_tool, find_vips, tool_version

MIN_PYTHON = (3, 10)
PYTHON_DEPS = (
    ("playwright", "playwright"),
    ("pillow", "PIL"),
    ("numpy", "numpy"),
    ("pyproj", "pyproj"),
    ("jsonschema", "jsonschema"),
)


@dataclass(frozen=True)
class CheckResult:
    """Result of a single doctor check."""

    name: str
    status: str
    detail: str


def _status(name: str, status: str, detail: str) -> CheckResult:
    """Helper to build a CheckResult."""
    return CheckResult(name=name, status=status, detail=detail)


def check_python_version() -> CheckResult:
    """Verify the running Python meets the minimum version."""
    if sys.version_info < MIN_PYTHON:
        return _status(
            "python",
            "error",
            f"Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ required",
        )
    return _status("python", "ok", f"{sys.version_info.major}.{sys.version_info.minor}")


def check_python_deps() -> Iterable[CheckResult]:
    """Verify that key Python dependencies can be imported."""
    results = []
    for name, module_name in PYTHON_DEPS:
        try:
            module = importlib.import_module(module_name)
        except ImportError as exc:
            results.append(_status(name, "error", f"{exc}; pip install {name}"))
            continue
        version = getattr(module, "__version__", None) or "installed"
        results.append(_status(name, "ok", str(version)))
    return results


def check_engine(name: str, command: list[str] | None, hint: str) -> CheckResult:
    """Report whether an external stitching engine is installed."""
    if not command:
        return _status(name, "warn", f"not found; {hint}")
    version = tool_version(command)
    if version is None:
        return _status(name, "warn", f"{' '.join(command)} did not report a version")
    return _status(name, "ok", f"{version} ({command[0]})")


def check_viewer(tool_paths: dict[str, Path]) -> CheckResult:
    viewer = find_tool("vipsdisp", tool_paths)
    if viewer is None:
        return _status("vipsdisp", "warn", "not found; --open will be skipped")
    return _status("vipsdisp", "ok", str(viewer))


def check_chromium() -> CheckResult:
    """Check that Playwright has a Chromium build to launch."""
    try:
        from playwright.sync_api import Error as PlaywrightError
        from playwright.sync_api import sync_playwright
    except ImportError as exc:
        return _status("chromium", "error", f"{exc}; pip install playwright")
    try:
        with sync_playwright() as playwright:
            executable = Path(playwright.chromium.executable_path)
    except PlaywrightError as exc:
        return _status("chromium", "error", str(exc))
    if not executable.exists():
        return _status(
            "chromium",
            "error",
            "Chromium not installed; run: python -m playwright install chromium",
        )
    return _status("chromium", "ok", str(executable))


def run_doctor(*, check_browser: bool = True) -> list[CheckResult]:
    """Run all environment checks and return the aggregated results."""
    tool_paths = load_tool_paths()
    results = [check_python_version(), *check_python_deps()]
    results.append(
        check_engine("vips", find_vips(tool_paths), "brew install vips / apt install libvips-tools")
    )
    results.append(
        check_engine(
            "imagemagick",
            find_montage(tool_paths),
            "brew install imagemagick / apt install imagemagick",
        )
    )
    results.append(check_viewer(tool_paths))
    if check_browser:
        results.append(check_chromium())
    return results
