"""Command-line interface for mapmosaic."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import jsonschema

from mapmosaic import __version__
from mapmosaic.assembly import (
    ENGINE_NAMES,
    AssemblyError,
    EngineChoice,
    StitchProgress,
    default_engines,
    probe_job,
    render_stitch_progress,
    run_stitch,
    stitch_summary,
)
from mapmosaic.capture import (
    CaptureCancelled,
    CaptureProgress,
    CaptureResult,
    CaptureSession,
    capture_grid,
    capture_summary,
    render_capture_progress,
    resolve_tile_span,
)
from mapmosaic.config import (
    CITY_CENTERS,
    DEFAULT_CITY,
    Calibration,
    CaptureConfig,
    load_calibration,
    resolve_center,
)
from mapmosaic.detector import LoadDetector
from mapmosaic.doctor import run_doctor
from mapmosaic.driver import DriverError, PageDriver, is_page_closed_error
from mapmosaic.geometry import GridPlan, Span, plan_grid, requested_span
from mapmosaic.layout import MANIFEST_NAME, STITCHED_NAME, TILES_DIRNAME, infer_grid, make_run_dir
from mapmosaic.logging_utils import LogOptions, configure_logging
from mapmosaic.manifest import (
    build_manifest,
    capture_command,
    find_manifest,
    load_manifest,
    stitch_command,
    write_manifest,
)
from mapmosaic.progress import ConsoleProgress
from mapmosaic.simulator import SimulatedMapPage
from mapmosaic.timing import TimingTracker
from mapmosaic.tools.discovery import launch_viewer

LOGGER = logging.getLogger("mapmosaic.cli")
EXIT_ENVIRONMENT = 2


def _add_capture_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the capture subcommand."""
    capture = subparsers.add_parser("capture", help="Capture a grid of map screenshots.")
    capture.add_argument(
        "--city",
        default=DEFAULT_CITY,
        help=f"City preset for the grid center ({', '.join(sorted(CITY_CENTERS))}).",
    )
    capture.add_argument("--center-lat", type=float, help="Grid center latitude.")
    capture.add_argument("--center-lon", type=float, help="Grid center longitude.")
    capture.add_argument("--rows", type=int, default=10, help="Number of tile rows.")
    capture.add_argument("--cols", type=int, default=10, help="Number of tile columns.")
    capture.add_argument(
        "--zoom",
        type=float,
        default=100,
        help="Zoom factor; requested span is 0.1/zoom degrees of latitude.",
    )
    capture.add_argument(
        "--tile-span",
        nargs=2,
        type=float,
        metavar=("LAT", "LON"),
        help="Use this tile span in degrees instead of probing the map.",
    )
    capture.add_argument(
        "--hidpi",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Capture at device scale factor 2.",
    )
    capture.add_argument(
        "--viewport-size",
        type=int,
        default=1000,
        help="Square viewport edge in CSS pixels.",
    )
    capture.add_argument(
        "--map-type",
        default="satellite",
        choices=("satellite", "hybrid", "standard", "mutedStandard"),
        help="MapKit map type.",
    )
    capture.add_argument(
        "--output-dir",
        default="output",
        help="Base directory for timestamped run folders.",
    )
    capture.add_argument(
        "--max-wait-ms",
        type=float,
        default=5000,
        help="Per-tile readiness timeout before capturing anyway.",
    )
    capture.add_argument(
        "--poll-interval-ms",
        type=float,
        default=25,
        help="Readiness polling interval.",
    )
    capture.add_argument("--headless", action="store_true", help="Run Chromium headless.")
    capture.add_argument(
        "--no-stitch",
        action="store_true",
        help="Only capture tiles; stitch later with 'mapmosaic stitch'.",
    )
    capture.add_argument(
        "--simulate",
        action="store_true",
        help="Use the offline simulated map instead of a browser.",
    )
    capture.add_argument(
        "--open",
        action="store_true",
        help="Open the stitched image in vipsdisp when done.",
    )
    capture.add_argument("--calibration", help="Path to a calibration JSON file.")


def _add_stitch_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the stitch subcommand."""
    stitch = subparsers.add_parser("stitch", help="Assemble captured tiles into one image.")
    stitch.add_argument("--input", required=True, help="Directory holding tile_rNN_cNN.png files.")
    stitch.add_argument(
        "--output",
        help=f"Output image (defaults to {STITCHED_NAME} beside the tiles directory).",
    )
    stitch.add_argument("--rows", type=int, help="Tile rows (defaults from the manifest).")
    stitch.add_argument("--cols", type=int, help="Tile columns (defaults from the manifest).")
    stitch.add_argument(
        "--engine",
        choices=("auto", *ENGINE_NAMES),
        default="auto",
        help="Force a stitching engine instead of automatic selection.",
    )
    stitch.add_argument(
        "--open",
        action="store_true",
        help="Open the stitched image in vipsdisp when done.",
    )
    stitch.add_argument("--calibration", help="Path to a calibration JSON file.")


def _add_doctor_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the doctor subcommand."""
    doctor = subparsers.add_parser("doctor", help="Check external dependencies and environment.")
    doctor.add_argument(
        "--skip-browser",
        action="store_true",
        help="Do not probe the Playwright Chromium install.",
    )


def _add_version_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the version subcommand."""
    subparsers.add_parser("version", help="Print the current version.")


def _load_calibration(value: str | None) -> Calibration:
    return load_calibration(Path(value) if value else None)


def _capture_config(args: argparse.Namespace) -> CaptureConfig:
    return CaptureConfig(
        city=args.city,
        center_lat=args.center_lat,
        center_lon=args.center_lon,
        rows=args.rows,
        cols=args.cols,
        zoom=args.zoom,
        map_type=args.map_type,
        viewport_size=args.viewport_size,
        hidpi=args.hidpi,
        headless=args.headless,
        output_dir=Path(args.output_dir),
        max_wait_ms=args.max_wait_ms,
        poll_interval_ms=args.poll_interval_ms,
    )


def _capture_on_page(
    page: PageDriver,
    config: CaptureConfig,
    tiles_dir: Path,
    *,
    calibration: Calibration,
    tile_span: Span | None,
    progress: ConsoleProgress,
) -> tuple[GridPlan, CaptureResult]:
    """Install the detector, plan the grid from the rendered span, and capture it."""
    detector = LoadDetector(page, settle_ms=config.settle_ms)
    detector.install()
    center = resolve_center(config)
    if tile_span is None:
        tile_span = resolve_tile_span(page, config.zoom, settle_ms=config.span_settle_ms).span
    plan = plan_grid(center, tile_span, config.rows, config.cols, zoom=config.zoom)
    progress.write_block(
        capture_summary(plan, config.tile_pixels, config.tile_pixels, calibration)
    )
    session = CaptureSession(
        detector,
        max_wait_ms=config.max_wait_ms,
        poll_interval_ms=config.poll_interval_ms,
        timing=TimingTracker(default_ms=calibration.default_ms_per_tile),
    )

    def on_progress(event: CaptureProgress) -> None:
        line = render_capture_progress(event)
        if event.finished:
            progress.finish(line)
        else:
            progress.update(line)

    result = capture_grid(page, plan, tiles_dir, session=session, on_progress=on_progress)
    return plan, result


def _run_capture(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    config = _capture_config(args)
    try:
        config.validate()
    except ValueError as exc:
        parser.error(str(exc))
    try:
        calibration = _load_calibration(args.calibration)
    except (OSError, ValueError) as exc:
        LOGGER.error("Invalid calibration: %s", exc)
        return EXIT_ENVIRONMENT
    tile_span = Span(*args.tile_span) if args.tile_span else None
    progress = ConsoleProgress()
    options = {"calibration": calibration, "tile_span": tile_span, "progress": progress}

    run_dir: Path | None = None
    try:
        if args.simulate:
            run_dir = make_run_dir(config.output_dir)
            page = SimulatedMapPage(
                config.tile_pixels,
                center=resolve_center(config),
                span=requested_span(config.zoom),
            )
            plan, result = _capture_on_page(page, config, run_dir / TILES_DIRNAME, **options)
        else:
            try:
                from mapmosaic.browser import BrowserUnavailableError, open_map_page, setup_map
            except ImportError as exc:
                LOGGER.error("Playwright is not installed (%s). Run: pip install playwright", exc)
                return EXIT_ENVIRONMENT
            try:
                with open_map_page(config) as page:
                    setup_map(page, config)
                    run_dir = make_run_dir(config.output_dir)
                    plan, result = _capture_on_page(
                        page, config, run_dir / TILES_DIRNAME, **options
                    )
            except BrowserUnavailableError as exc:
                LOGGER.error("%s", exc)
                return EXIT_ENVIRONMENT
    except CaptureCancelled as exc:
        LOGGER.info("Map window closed; %s Tiles kept in %s.", exc, exc.result.tiles_dir)
        return 0
    except DriverError as exc:
        if is_page_closed_error(exc):
            LOGGER.info("Map window closed before capture started.")
            return 0
        LOGGER.error("Capture failed: %s", exc)
        return 1

    assert run_dir is not None
    tiles_dir = run_dir / TILES_DIRNAME
    manifest = build_manifest(
        plan,
        tiles_dir=tiles_dir,
        run_dir=run_dir,
        tile_width=config.tile_pixels,
        tile_height=config.tile_pixels,
        map_type=config.map_type,
        hidpi=config.hidpi,
        source="simulated" if args.simulate else "browser",
        result=result,
    )
    write_manifest(run_dir / MANIFEST_NAME, manifest)
    if result.timed_out:
        LOGGER.warning(
            "%s tile(s) captured before the map reported ready.", len(result.timed_out)
        )
    LOGGER.info("Tiles saved to %s", tiles_dir)
    LOGGER.info("Reproduce with: %s", capture_command(manifest))

    output_file = run_dir / STITCHED_NAME
    if args.no_stitch:
        LOGGER.info(
            "Stitch later with: %s",
            stitch_command(tiles_dir, output_file, plan.rows, plan.cols),
        )
        return 0
    return _stitch(
        tiles_dir,
        output_file,
        plan.rows,
        plan.cols,
        engine="auto",
        calibration=calibration,
        open_result=args.open,
        progress=progress,
    )


def _stitch(
    tiles_dir: Path,
    output_file: Path,
    rows: int,
    cols: int,
    *,
    engine: str,
    calibration: Calibration,
    open_result: bool,
    progress: ConsoleProgress,
) -> int:
    """Run assembly and report the outcome; returns an exit code."""
    current = {"engine": engine}

    def on_engine(choice: EngineChoice) -> None:
        current["engine"] = choice.engine

    def on_progress(sample: StitchProgress) -> None:
        progress.update(render_stitch_progress(sample, current["engine"]))

    try:
        job = probe_job(tiles_dir, output_file, rows, cols)
        result = run_stitch(
            job,
            engines=default_engines(),
            calibration=calibration,
            only=engine,
            on_progress=on_progress,
            on_engine=on_engine,
        )
    except AssemblyError as exc:
        LOGGER.error("Stitch %s: %s", exc.state.value, exc)
        return 1
    progress.finish(f"Stitched {result.output_file}")
    progress.write_block(stitch_summary(result))
    if open_result:
        launch_viewer(result.output_file)
    return 0


def _resolve_grid(args: argparse.Namespace, tiles_dir: Path) -> tuple[int, int] | None:
    """Rows/cols from flags, then the capture manifest, then tile names on disk."""
    rows, cols = args.rows, args.cols
    if rows is not None and cols is not None:
        return (rows, cols)
    manifest_path = find_manifest(tiles_dir)
    if manifest_path is not None:
        manifest = load_manifest(manifest_path)
        LOGGER.info("Original capture: %s", capture_command(manifest))
        return (rows or manifest["rows"], cols or manifest["cols"])
    inferred = infer_grid(tiles_dir)
    if inferred is None:
        return None
    return (rows or inferred[0], cols or inferred[1])


def _run_stitch_command(args: argparse.Namespace) -> int:
    tiles_dir = Path(args.input)
    if not tiles_dir.is_dir():
        LOGGER.error("Input directory not found: %s", tiles_dir)
        return 1
    try:
        calibration = _load_calibration(args.calibration)
    except (OSError, ValueError) as exc:
        LOGGER.error("Invalid calibration: %s", exc)
        return EXIT_ENVIRONMENT
    try:
        grid = _resolve_grid(args, tiles_dir)
    except (json.JSONDecodeError, TypeError, jsonschema.ValidationError) as exc:
        LOGGER.error("Unreadable capture manifest: %s", exc)
        return 1
    if grid is None:
        LOGGER.error("Could not determine grid size; pass --rows and --cols.")
        return 1
    rows, cols = grid
    output_file = Path(args.output) if args.output else tiles_dir.parent / STITCHED_NAME
    LOGGER.info("Reproduce with: %s", stitch_command(tiles_dir, output_file, rows, cols))
    return _stitch(
        tiles_dir,
        output_file,
        rows,
        cols,
        engine=args.engine,
        calibration=calibration,
        open_result=args.open,
        progress=ConsoleProgress(),
    )


def main(argv: list[str] | None = None) -> int:
    """Run the CLI entrypoint and return an exit code."""
    parser = argparse.ArgumentParser(
        prog="mapmosaic",
        description="Capture map tile grids and stitch them into one large image",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (repeatable).",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce log output to warnings and errors.",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON on stderr.",
    )
    parser.add_argument(
        "--log-file",
        help="Optional path for JSON log output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_capture_parser(subparsers)
    _add_stitch_parser(subparsers)
    _add_doctor_parser(subparsers)
    _add_version_parser(subparsers)

    args = parser.parse_args(argv)
    log_file_value = getattr(args, "log_file", None)
    log_options = LogOptions(
        verbose=getattr(args, "verbose", 0) or 0,
        quiet=bool(getattr(args, "quiet", False)),
        log_file=Path(log_file_value) if log_file_value else None,
        json_console=bool(getattr(args, "log_json", False)),
    )
    configure_logging(log_options)

    if args.command == "version":
        print(__version__)
        return 0
    if args.command == "capture":
        return _run_capture(args, parser)
    if args.command == "stitch":
        return _run_stitch_command(args)
    if args.command == "doctor":
        results = run_doctor(check_browser=not args.skip_browser)
        for result in results:
            LOGGER.info("%s: %s - %s", result.name, result.status, result.detail)
        if any(result.status == "error" for result in results):
            return 1
        return 0
    return 2
