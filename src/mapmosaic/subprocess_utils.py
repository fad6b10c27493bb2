"""Subprocess helpers for probing and supervising external tools."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence


@dataclass(frozen=True)
class CommandResult:
    """Captured output from a command invocation."""

    command: list[str]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def tail_text(text: str, *, max_lines: int = 20) -> str:
    """Return the last lines of tool output for error summaries."""
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) > max_lines:
        lines = lines[-max_lines:]
    return "\n".join(lines)


def _decode(raw: str | bytes | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def run_command(
    command: Sequence[str],
    *,
    cwd: Path | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run a short-lived command to completion and capture its output."""
    cmd_list = [str(item) for item in command]
    try:
        result = subprocess.run(
            cmd_list,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        stderr = _decode(exc.stderr)
        timeout_message = f"Command timed out after {timeout} seconds."
        stderr = f"{stderr}\n{timeout_message}" if stderr else timeout_message
        return CommandResult(cmd_list, 124, _decode(exc.stdout), stderr, True)
    except OSError as exc:
        return CommandResult(cmd_list, 127, "", str(exc), False)
    return CommandResult(cmd_list, result.returncode, result.stdout, result.stderr, False)


def start_command(
    command: Sequence[str],
    *,
    cwd: Path | None = None,
) -> subprocess.Popen[str]:
    """Launch a long-running command with piped output.

    The caller owns the process and must collect it with ``communicate()``.
    """
    cmd_list = [str(item) for item in command]
    return subprocess.Popen(
        cmd_list,
        cwd=cwd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
