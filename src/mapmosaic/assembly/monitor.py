"""Background monitor that infers stitching progress from output file growth."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable

from mapmosaic.assembly.models import AssemblyState, StitchProgress

LOGGER = logging.getLogger(__name__)


class OutputGrowthMonitor:
    """Sample the output file size on a timer while an engine runs.

    While the file is empty the engine is still reading tiles and the ETA
    comes from the up-front estimate. Once bytes appear the monitor switches
    to the writing phase and projects the ETA from the write rate measured
    since that switch, so writer start-up latency does not skew the rate.
    """

    def __init__(
        self,
        output_file: Path,
        *,
        estimated_bytes: int,
        estimated_seconds: float,
        interval: float = 1.0,
        on_sample: Callable[[StitchProgress], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.output_file = output_file
        self.estimated_bytes = estimated_bytes
        self.estimated_seconds = estimated_seconds
        self.interval = interval
        self.on_sample = on_sample
        self.clock = clock
        self.state = AssemblyState.PROCESSING
        self.last_sample: StitchProgress | None = None
        self._started_at: float | None = None
        self._write_started_at: float | None = None
        self._write_start_bytes = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def __enter__(self) -> OutputGrowthMonitor:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def start(self) -> None:
        self._started_at = self.clock()
        self._thread = threading.Thread(target=self._run, name="stitch-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Signal the sampler to exit and wait for it."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.sample()

    def _current_bytes(self) -> int:
        try:
            return self.output_file.stat().st_size
        except OSError:
            return 0

    def sample(self, now: float | None = None) -> StitchProgress:
        now = self.clock() if now is None else now
        if self._started_at is None:
            self._started_at = now
        size = self._current_bytes()
        elapsed = now - self._started_at
        if size > 0 and self.state is AssemblyState.PROCESSING:
            self.state = AssemblyState.WRITING
            self._write_started_at = now
            self._write_start_bytes = size
            LOGGER.debug("Output appeared after %.1fs; writing phase.", elapsed)

        eta = max(0.0, self.estimated_seconds - elapsed)
        if self.state is AssemblyState.WRITING and self._write_started_at is not None:
            write_elapsed = now - self._write_started_at
            written = size - self._write_start_bytes
            if write_elapsed > 0 and written > 0:
                rate = written / write_elapsed
                eta = max(0, self.estimated_bytes - size) / rate

        progress = StitchProgress(
            state=self.state,
            current_bytes=size,
            estimated_bytes=self.estimated_bytes,
            elapsed_seconds=elapsed,
            eta_seconds=eta,
        )
        self.last_sample = progress
        if self.on_sample:
            self.on_sample(progress)
        return progress
