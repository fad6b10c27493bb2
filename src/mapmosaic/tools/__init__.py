"""External tool discovery helpers."""

from mapmosaic.tools.config import load_tool_paths
from mapmosaic.tools.discovery import find_montage, find_tool, find_vips, launch_viewer

__all__ = [
    "find_montage",
    "find_tool",
    "find_vips",
    "launch_viewer",
    "load_tool_paths",
]
