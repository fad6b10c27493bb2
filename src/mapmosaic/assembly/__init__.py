"""Mosaic assembly: engine selection, supervised stitching and fallback."""

from mapmosaic.assembly.engines import (
    ENGINE_NAMES,
    InProcessEngine,
    MontageEngine,
    StitchEngine,
    VipsEngine,
    default_engines,
)
from mapmosaic.assembly.models import (
    AssemblyError,
    AssemblyState,
    EngineChoice,
    EngineExhaustedError,
    EngineFailure,
    MissingTilesError,
    NoEngineAvailableError,
    StitchJob,
    StitchProgress,
    StitchResult,
)
from mapmosaic.assembly.monitor import OutputGrowthMonitor
from mapmosaic.assembly.pipeline import (
    probe_job,
    render_stitch_progress,
    run_stitch,
    select_engine,
    stitch_summary,
    validate_tiles,
)

__all__ = [
    "ENGINE_NAMES",
    "AssemblyError",
    "AssemblyState",
    "EngineChoice",
    "EngineExhaustedError",
    "EngineFailure",
    "InProcessEngine",
    "MissingTilesError",
    "MontageEngine",
    "NoEngineAvailableError",
    "OutputGrowthMonitor",
    "StitchEngine",
    "StitchJob",
    "StitchProgress",
    "StitchResult",
    "VipsEngine",
    "default_engines",
    "probe_job",
    "render_stitch_progress",
    "run_stitch",
    "select_engine",
    "stitch_summary",
    "validate_tiles",
]
