"""Console progress rendering and human-readable formatting."""

from __future__ import annotations

import sys
from typing import Sequence, TextIO

BOX_WIDTH = 55
LABEL_WIDTH = 14
CLEAR_EOL = "\x1b[K"


def format_duration(seconds: float) -> str:
    """Format seconds as ``1h 2m``, ``3m 4s`` or ``5s``."""
    total = int(max(0.0, seconds))
    if total >= 3600:
        return f"{total // 3600}h {(total // 60) % 60}m"
    if total >= 60:
        return f"{total // 60}m {total % 60}s"
    return f"{total}s"


def format_bytes(size: float) -> str:
    if size >= 1024**3:
        return f"{size / 1024**3:.1f} GB"
    if size >= 1024**2:
        return f"{size / 1024**2:.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{int(size)} bytes"


def format_pixels(pixels: int) -> str:
    if pixels >= 1_000_000_000:
        return f"{pixels / 1_000_000_000:.2f} billion"
    if pixels >= 1_000_000:
        return f"{pixels / 1_000_000:.1f} million"
    return f"{pixels:,}"


def progress_bar(current: float, total: float, width: int = 20) -> str:
    """Return ``[████░░░░]  50%`` for current/total."""
    fraction = 0.0 if total <= 0 else min(1.0, max(0.0, current / total))
    filled = int(fraction * width)
    return f"[{'█' * filled}{'░' * (width - filled)}] {int(fraction * 100):3d}%"


def summary_box(title: str, rows: Sequence[tuple[str, str] | None]) -> list[str]:
    """Render a fixed-width box; ``None`` entries become separator lines."""
    inner = BOX_WIDTH - 2
    value_width = inner - 2 - LABEL_WIDTH - 1
    left_pad = (inner - len(title)) // 2
    lines = [
        "┌" + "─" * inner + "┐",
        "│" + " " * left_pad + title + " " * (inner - len(title) - left_pad) + "│",
        "├" + "─" * inner + "┤",
    ]
    for row in rows:
        if row is None:
            lines.append("├" + "─" * inner + "┤")
            continue
        label, value = row
        lines.append(f"│  {label:<{LABEL_WIDTH}}{value:<{value_width}} │")
    lines.append("└" + "─" * inner + "┘")
    return lines


class ConsoleProgress:
    """Single-line progress display that redraws in place on a terminal."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stderr
        self.last_line: str | None = None
        self._interactive = bool(getattr(self.stream, "isatty", lambda: False)())

    def update(self, line: str) -> None:
        self.last_line = line
        if self._interactive:
            self.stream.write(f"\r  {line}{CLEAR_EOL}")
        else:
            self.stream.write(f"  {line}\n")
        self.stream.flush()

    def finish(self, line: str) -> None:
        self.last_line = line
        if self._interactive:
            self.stream.write(f"\r  {line}{CLEAR_EOL}\n")
        else:
            self.stream.write(f"  {line}\n")
        self.stream.flush()

    def write_block(self, lines: Sequence[str]) -> None:
        self.stream.write("\n".join(lines) + "\n")
        self.stream.flush()
