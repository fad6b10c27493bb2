"""Data models and errors for mosaic assembly."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Sequence


class AssemblyState(str, Enum):
    """Lifecycle of one assembly invocation."""

    PLANNING = "planning"
    PROCESSING = "processing"
    WRITING = "writing"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class StitchJob:
    """Inputs for assembling one mosaic; never mutated after dispatch."""

    input_dir: Path
    output_file: Path
    rows: int
    cols: int
    tile_width: int
    tile_height: int

    @property
    def width(self) -> int:
        return self.tile_width * self.cols

    @property
    def height(self) -> int:
        return self.tile_height * self.rows

    @property
    def pixels(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class EngineChoice:
    """Engine picked for a job together with its size and time estimates."""

    engine: str
    estimated_pixels: int
    estimated_bytes: int
    estimated_seconds: float


@dataclass(frozen=True)
class StitchProgress:
    """Sample reported by the output growth monitor."""

    state: AssemblyState
    current_bytes: int
    estimated_bytes: int
    elapsed_seconds: float
    eta_seconds: float

    @property
    def percent(self) -> int:
        """Completion from bytes on disk, capped at 99 until the engine exits."""
        if self.state is not AssemblyState.WRITING:
            return 0
        return min(99, max(0, int(100 * self.current_bytes / max(1, self.estimated_bytes))))


@dataclass(frozen=True)
class EngineFailure:
    """One engine attempt that did not produce an output file."""

    engine: str
    returncode: int | None
    detail: str


@dataclass
class StitchResult:
    """Outcome of a successful assembly."""

    job: StitchJob
    choice: EngineChoice
    output_file: Path
    state: AssemblyState
    elapsed_seconds: float
    output_bytes: int
    resolution: tuple[int, int] | None = None
    failures: list[EngineFailure] = field(default_factory=list)


class AssemblyError(RuntimeError):
    """Base class for assembly failures; captured tiles are left untouched."""

    state = AssemblyState.FAILED


class MissingTilesError(AssemblyError):
    """Raised when expected tile files are absent."""

    def __init__(self, missing: Sequence[Path]) -> None:
        self.missing = list(missing)
        names = ", ".join(path.name for path in self.missing[:20])
        more = len(self.missing) - 20
        suffix = f" (+{more} more)" if more > 0 else ""
        super().__init__(f"Missing {len(self.missing)} tile(s): {names}{suffix}")


class NoEngineAvailableError(AssemblyError):
    """Raised when no installed engine can handle the requested size."""


class EngineExhaustedError(AssemblyError):
    """Raised when every eligible engine failed."""

    def __init__(self, failures: Sequence[EngineFailure]) -> None:
        self.failures = list(failures)
        details = "; ".join(
            f"{failure.engine} (exit {failure.returncode}): {failure.detail}"
            for failure in self.failures
        )
        super().__init__(f"All stitching engines failed: {details}")
