"""Assembly engines: libvips, in-process Pillow, and ImageMagick montage."""

from __future__ import annotations

import logging
import shlex
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol, Sequence

from PIL import Image

from mapmosaic.assembly.models import AssemblyState, EngineChoice, StitchJob, StitchProgress
from mapmosaic.assembly.monitor import OutputGrowthMonitor
from mapmosaic.config import Calibration
from mapmosaic.subprocess_utils import run_command, start_command, tail_text
from mapmosaic.tools.discovery import find_montage, find_vips

LOGGER = logging.getLogger(__name__)
ENGINE_NAMES = ("vips", "inprocess", "montage")

ProgressCallback = Callable[[StitchProgress], None]


@dataclass(frozen=True)
class EngineRun:
    """Exit status of one engine attempt and the furthest state it reached."""

    returncode: int
    detail: str
    reached: AssemblyState


class StitchEngine(Protocol):
    """Strategy interface shared by all assembly engines."""

    name: str
    install_hint: str

    def available(self) -> bool:
        ...

    def accepts(self, pixels: int, calibration: Calibration) -> bool:
        ...

    def seconds_per_mpx(self, calibration: Calibration) -> float:
        ...

    def assemble(
        self,
        job: StitchJob,
        tiles: Sequence[Path],
        choice: EngineChoice,
        *,
        interval: float = 1.0,
        on_progress: ProgressCallback | None = None,
    ) -> EngineRun:
        ...


class SubprocessEngine:
    """Base for engines that stream tiles to disk from an external process."""

    name = "subprocess"
    install_hint = ""

    def __init__(self, command: list[str] | None) -> None:
        self.base_command = command

    def available(self) -> bool:
        return self.base_command is not None

    def accepts(self, pixels: int, calibration: Calibration) -> bool:
        return True

    def seconds_per_mpx(self, calibration: Calibration) -> float:
        raise NotImplementedError

    def build_command(self, job: StitchJob, tiles: Sequence[Path]) -> list[str]:
        raise NotImplementedError

    def assemble(
        self,
        job: StitchJob,
        tiles: Sequence[Path],
        choice: EngineChoice,
        *,
        interval: float = 1.0,
        on_progress: ProgressCallback | None = None,
    ) -> EngineRun:
        return self.run_monitored(
            self.build_command(job, tiles),
            job,
            choice,
            interval=interval,
            on_progress=on_progress,
        )

    def run_monitored(
        self,
        command: list[str],
        job: StitchJob,
        choice: EngineChoice,
        *,
        cwd: Path | None = None,
        interval: float = 1.0,
        on_progress: ProgressCallback | None = None,
    ) -> EngineRun:
        """Run the engine under an output growth monitor until it exits."""
        LOGGER.debug("Running %s", shlex.join(command), extra={"engine": self.name})
        try:
            process = start_command(command, cwd=cwd)
        except OSError as exc:
            return EngineRun(127, str(exc), AssemblyState.PLANNING)
        monitor = OutputGrowthMonitor(
            job.output_file,
            estimated_bytes=choice.estimated_bytes,
            estimated_seconds=choice.estimated_seconds,
            interval=interval,
            on_sample=on_progress,
        )
        try:
            with monitor:
                _, stderr = process.communicate()
        finally:
            if process.poll() is None:
                process.kill()
                process.wait()
        return EngineRun(process.returncode, tail_text(stderr or ""), monitor.state)


class VipsEngine(SubprocessEngine):
    """libvips ``arrayjoin``: demand-driven, constant memory, fastest.

    vips takes the tile list as one whitespace-separated argument, so tiles
    are named relative to the tiles directory. When even that list would
    exceed the kernel's per-argument limit, each row is joined into a
    temporary ``.v`` image first and the rows are then stacked.
    """

    name = "vips"
    install_hint = "brew install vips / apt install libvips-tools (recommended)"
    # Linux caps a single argv string at 128 KiB (MAX_ARG_STRLEN).
    max_list_chars = 100_000

    def seconds_per_mpx(self, calibration: Calibration) -> float:
        return calibration.vips_seconds_per_mpx

    def _arrayjoin(self, names: Sequence[str], output: Path, across: int) -> list[str]:
        assert self.base_command is not None
        return [
            *self.base_command,
            "arrayjoin",
            " ".join(names),
            str(output.absolute()),
            "--across",
            str(across),
        ]

    def build_command(self, job: StitchJob, tiles: Sequence[Path]) -> list[str]:
        return self._arrayjoin([path.name for path in tiles], job.output_file, job.cols)

    def _rows_dir(self, job: StitchJob) -> Path:
        return job.output_file.parent / f".{job.output_file.stem}.vips-rows"

    def assemble(
        self,
        job: StitchJob,
        tiles: Sequence[Path],
        choice: EngineChoice,
        *,
        interval: float = 1.0,
        on_progress: ProgressCallback | None = None,
    ) -> EngineRun:
        if sum(len(path.name) + 1 for path in tiles) <= self.max_list_chars:
            return self.run_monitored(
                self.build_command(job, tiles),
                job,
                choice,
                cwd=job.input_dir,
                interval=interval,
                on_progress=on_progress,
            )
        rows_dir = self._rows_dir(job)
        rows_dir.mkdir(parents=True, exist_ok=True)
        try:
            failed = self._join_rows(job, tiles, choice, rows_dir, on_progress)
            if failed is not None:
                return failed
            row_names = [f"row_{row:05d}.v" for row in range(job.rows)]
            return self.run_monitored(
                self._arrayjoin(row_names, job.output_file, 1),
                job,
                choice,
                cwd=rows_dir,
                interval=interval,
                on_progress=on_progress,
            )
        finally:
            shutil.rmtree(rows_dir, ignore_errors=True)

    def _join_rows(
        self,
        job: StitchJob,
        tiles: Sequence[Path],
        choice: EngineChoice,
        rows_dir: Path,
        on_progress: ProgressCallback | None,
    ) -> EngineRun | None:
        LOGGER.info(
            "Tile list too long for one call; joining %d rows first.",
            job.rows,
            extra={"engine": self.name},
        )
        start = time.monotonic()
        for row in range(job.rows):
            names = [path.name for path in tiles[row * job.cols : (row + 1) * job.cols]]
            command = self._arrayjoin(names, rows_dir / f"row_{row:05d}.v", job.cols)
            result = run_command(command, cwd=job.input_dir)
            if not result.ok:
                return EngineRun(
                    result.returncode,
                    tail_text(result.stderr) or f"row {row} failed",
                    AssemblyState.PROCESSING,
                )
            if on_progress:
                elapsed = time.monotonic() - start
                done = (row + 1) / job.rows
                on_progress(
                    StitchProgress(
                        state=AssemblyState.PROCESSING,
                        current_bytes=0,
                        estimated_bytes=choice.estimated_bytes,
                        elapsed_seconds=elapsed,
                        eta_seconds=elapsed / done - elapsed,
                    )
                )
        return None


class MontageEngine(SubprocessEngine):
    """ImageMagick ``montage -mode concatenate``: slower, streams to disk."""

    name = "montage"
    install_hint = "brew install imagemagick / apt install imagemagick"

    def seconds_per_mpx(self, calibration: Calibration) -> float:
        return calibration.montage_seconds_per_mpx

    def _list_path(self, job: StitchJob) -> Path:
        return job.output_file.parent / f".{job.output_file.stem}.montage-tiles.txt"

    def build_command(self, job: StitchJob, tiles: Sequence[Path]) -> list[str]:
        assert self.base_command is not None
        return [
            *self.base_command,
            f"@{self._list_path(job)}",
            "-mode",
            "concatenate",
            "-tile",
            f"{job.cols}x",
            str(job.output_file),
        ]

    def assemble(
        self,
        job: StitchJob,
        tiles: Sequence[Path],
        choice: EngineChoice,
        *,
        interval: float = 1.0,
        on_progress: ProgressCallback | None = None,
    ) -> EngineRun:
        # Tile lists go through an @file; tens of thousands of paths overflow argv.
        list_path = self._list_path(job)
        list_path.write_text(
            "\n".join(f'"{path}"' for path in tiles) + "\n",
            encoding="utf-8",
        )
        try:
            return super().assemble(
                job, tiles, choice, interval=interval, on_progress=on_progress
            )
        finally:
            list_path.unlink(missing_ok=True)


class InProcessEngine:
    """Paste tiles onto one Pillow canvas and write it as PNG."""

    name = "inprocess"
    install_hint = "fits only when the mosaic is below the in-process pixel ceiling"

    def available(self) -> bool:
        return True

    def accepts(self, pixels: int, calibration: Calibration) -> bool:
        return pixels <= calibration.inprocess_max_pixels

    def seconds_per_mpx(self, calibration: Calibration) -> float:
        return calibration.inprocess_seconds_per_mpx

    def assemble(
        self,
        job: StitchJob,
        tiles: Sequence[Path],
        choice: EngineChoice,
        *,
        interval: float = 1.0,
        on_progress: ProgressCallback | None = None,
    ) -> EngineRun:
        start = time.monotonic()
        cell = (job.tile_width, job.tile_height)
        try:
            # Single RGB buffer for the whole mosaic; tiles are pasted in place.
            with Image.new("RGB", (job.width, job.height)) as canvas:
                for index, path in enumerate(tiles):
                    row, col = divmod(index, job.cols)
                    with Image.open(path) as tile:
                        if tile.size != cell:
                            LOGGER.warning(
                                "Tile %s is %sx%s, expected %sx%s.",
                                path.name,
                                tile.size[0],
                                tile.size[1],
                                job.tile_width,
                                job.tile_height,
                                extra={"engine": self.name},
                            )
                        width = min(tile.size[0], job.tile_width)
                        height = min(tile.size[1], job.tile_height)
                        patch = tile.convert("RGB").crop((0, 0, width, height))
                    canvas.paste(patch, (col * job.tile_width, row * job.tile_height))
                    if on_progress and col == job.cols - 1:
                        done = (row + 1) / job.rows
                        elapsed = time.monotonic() - start
                        on_progress(
                            StitchProgress(
                                state=AssemblyState.PROCESSING,
                                current_bytes=0,
                                estimated_bytes=choice.estimated_bytes,
                                elapsed_seconds=elapsed,
                                eta_seconds=elapsed / done - elapsed,
                            )
                        )
                canvas.save(job.output_file, format="PNG")
        except (OSError, ValueError, MemoryError) as exc:
            return EngineRun(1, str(exc), AssemblyState.PROCESSING)
        return EngineRun(0, "", AssemblyState.WRITING)


def default_engines(tool_paths: dict[str, Path] | None = None) -> list[StitchEngine]:
    """Return all engines in priority order, probing installed tools."""
    return [
        VipsEngine(find_vips(tool_paths)),
        InProcessEngine(),
        MontageEngine(find_montage(tool_paths)),
    ]
