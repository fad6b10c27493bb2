"""Locate the external stitching tools and image viewer."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path

from mapmosaic.subprocess_utils import run_command
from mapmosaic.tools.config import load_tool_paths

LOGGER = logging.getLogger(__name__)
VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")


def find_tool(name: str, tool_paths: dict[str, Path] | None = None) -> Path | None:
    """Return the executable for a tool, preferring configured paths over PATH."""
    paths = load_tool_paths() if tool_paths is None else tool_paths
    configured = paths.get(name)
    if configured is not None:
        if configured.exists():
            return configured
        LOGGER.warning("Configured %s path does not exist: %s", name, configured)
    found = shutil.which(name)
    return Path(found) if found else None


def find_vips(tool_paths: dict[str, Path] | None = None) -> list[str] | None:
    """Return the ``vips`` command prefix, or None when libvips is not installed."""
    vips = find_tool("vips", tool_paths)
    return [str(vips)] if vips else None


def find_montage(tool_paths: dict[str, Path] | None = None) -> list[str] | None:
    """Return the ImageMagick montage command prefix.

    ImageMagick 7 ships a single ``magick`` binary; version 6 installs
    ``montage`` directly.
    """
    magick = find_tool("magick", tool_paths)
    if magick:
        return [str(magick), "montage"]
    montage = find_tool("montage", tool_paths)
    if montage:
        return [str(montage)]
    return None


def tool_version(command: list[str]) -> str | None:
    """Return the dotted version reported by ``<command> --version``."""
    result = run_command([*command, "--version"], timeout=10)
    if not result.ok:
        return None
    match = VERSION_PATTERN.search(result.stdout or result.stderr)
    if not match:
        return None
    return ".".join(part for part in match.groups() if part is not None)


def launch_viewer(
    image_path: Path, tool_paths: dict[str, Path] | None = None
) -> subprocess.Popen[bytes] | None:
    """Open an image in ``vipsdisp`` in its own session.

    Returns the viewer process, or None when vipsdisp is not installed. The
    viewer outlives this process; callers that stay alive can ``wait()`` on it.
    """
    viewer = find_tool("vipsdisp", tool_paths)
    if not viewer:
        LOGGER.debug("vipsdisp not installed; skipping viewer launch.")
        return None
    process = subprocess.Popen(
        [str(viewer), str(image_path)],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    LOGGER.info("Opened %s in vipsdisp (pid %s).", image_path, process.pid)
    return process
