"""Command-line interface for fireshot.

Entry point flow:
1. Parse arguments; introspection flags print and exit
2. Load configuration (file, environment, CLI overrides)
3. Route to a subcommand: gui (default), full, edit, or diagnose
"""

import argparse
import atexit
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .capture import ImageFileCaptureProvider, WaylandCaptureProvider
from .config import (
    EXPORT_FORMATS,
    Config,
    config_defaults,
    config_schema,
    config_to_dict,
    load_config,
    validate_config_file,
)
from .emit import EVENT_CATALOG, configure, emit
from .errors import CaptureError, FireshotError
from .export import ExportRequest, FileTarget
from .result import Result
from .session import Session

log = logging.getLogger(__name__)

DIAGNOSTIC_ENV = ("XDG_SESSION_TYPE", "XDG_CURRENT_DESKTOP", "WAYLAND_DISPLAY", "DISPLAY")


def _add_output_options(parser: argparse.ArgumentParser):
    parser.add_argument(
        "--path", "-p",
        metavar="PATH",
        help="Output path (default: <output_dir>/fireshot_<timestamp>.<ext>)",
    )
    parser.add_argument(
        "--format", "-f",
        choices=sorted(EXPORT_FORMATS),
        help="Output format (default: from config)",
    )
    parser.add_argument(
        "--quality", "-q",
        type=int,
        metavar="1-100",
        help="Quality for lossy formats (default: from config)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print export metadata as JSON to stdout",
    )


def _add_capture_options(parser: argparse.ArgumentParser):
    parser.add_argument(
        "--delay", "-d",
        type=int,
        default=0,
        metavar="MS",
        help="Delay before capture in milliseconds",
    )
    parser.add_argument(
        "--monitor",
        metavar="NAME",
        help="Capture specific monitor (e.g., eDP-1, HDMI-A-1)",
    )


def create_argument_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI usage."""
    parser = argparse.ArgumentParser(
        prog="fireshot",
        description="Screenshot capture and annotation for Wayland",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                              # Capture, select and annotate (default)
  %(prog)s gui --delay 2000             # Same, after two seconds
  %(prog)s gui --path /tmp/raw.png      # Save the raw capture, no editor
  %(prog)s full --monitor eDP-1 --json  # Save one monitor, print metadata
  %(prog)s full --edit                  # Whole monitor preselected in the editor
  %(prog)s edit shot.png                # Annotate an existing image
""",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"fireshot {__version__}",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to config file (default: platform config dir)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    # Introspection
    parser.add_argument(
        "--print-defaults",
        action="store_true",
        help="Print default configuration as JSON and exit",
    )
    parser.add_argument(
        "--print-config-schema",
        action="store_true",
        help="Print configuration schema as JSON and exit",
    )
    parser.add_argument(
        "--validate-config",
        action="store_true",
        help="Validate configuration file and exit",
    )
    parser.add_argument(
        "--print-resolved",
        action="store_true",
        help="Print resolved configuration as JSON and exit",
    )
    parser.add_argument(
        "--print-event-catalog",
        action="store_true",
        help="Print event catalog as JSON and exit",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    gui = subparsers.add_parser("gui", help="Interactive capture with editor (default)")
    _add_capture_options(gui)
    _add_output_options(gui)

    full = subparsers.add_parser("full", help="Capture a whole monitor and save it")
    _add_capture_options(full)
    _add_output_options(full)
    full.add_argument(
        "--edit",
        action="store_true",
        help="Open the editor with the whole monitor selected instead of saving",
    )

    edit = subparsers.add_parser("edit", help="Annotate an existing PNG")
    edit.add_argument("file", metavar="FILE", help="Image to open")
    _add_output_options(edit)

    subparsers.add_parser("diagnose", help="Print environment and output diagnostics")

    return parser


def _emit_json(payload) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _handle_introspection(args: argparse.Namespace) -> Optional[int]:
    config_path = Path(args.config).expanduser() if args.config else None

    if args.print_defaults:
        _emit_json(config_defaults())
        return 0

    if args.print_config_schema:
        _emit_json(config_schema())
        return 0

    if args.validate_config:
        errors = validate_config_file(config_path)
        if errors:
            for error in errors:
                print(error, file=sys.stderr)
            return 1
        return 0

    if args.print_resolved:
        config = load_config(config_path=config_path)
        _emit_json(config_to_dict(config))
        return 0

    if args.print_event_catalog:
        _emit_json({"catalog": EVENT_CATALOG})
        return 0

    return None


def _config_overrides(args: argparse.Namespace) -> dict:
    overrides = {}
    if getattr(args, "format", None):
        overrides["default_format"] = "jpeg" if args.format == "jpg" else args.format
    if getattr(args, "quality", None) is not None:
        overrides["default_quality"] = args.quality
    return overrides


def _export_request(args: argparse.Namespace, config: Config) -> ExportRequest:
    path = Path(args.path).expanduser() if args.path else None
    return ExportRequest(FileTarget(path), config.default_format, config.default_quality)


def _report(result: Result, args: argparse.Namespace, stage: str) -> int:
    """Exit code for a session Result, printing export metadata when asked."""
    if result.is_failure:
        log.error("%s failed: %s", stage.capitalize(), result.error)
        return 1
    value = result.value
    if getattr(args, "json", False) and hasattr(value, "to_json"):
        print(value.to_json())
    elif getattr(value, "path", None):
        log.info("Saved %s", value.path)
    return 0


def _find_monitor(provider: WaylandCaptureProvider, name: Optional[str]):
    try:
        return Result.ok(provider.find_monitor(name))
    except CaptureError as e:
        emit("error.handled", dict(e.to_dict(), stage="capture"))
        return Result.fail(e)


def _run_editor(session: Session, save_path: Optional[str]) -> int:
    # Import here to avoid GTK initialization for non-interactive commands
    from .ui import run_editor
    return run_editor(session, Path(save_path).expanduser() if save_path else None)


def handle_gui(args: argparse.Namespace, config: Config) -> int:
    """Capture, then select and annotate in the overlay."""
    provider = WaylandCaptureProvider(config)
    found = _find_monitor(provider, args.monitor)
    if found.is_failure:
        return _report(found, args, "capture")

    session = Session(provider, config)
    try:
        result = session.start_gui_session(found.value, args.delay)
        if result.is_failure:
            return _report(result, args, "capture")
        if args.path:
            return _report(session.export_current(_export_request(args, config)), args, "export")
        return _run_editor(session, None)
    finally:
        session.close()


def handle_full(args: argparse.Namespace, config: Config) -> int:
    """Capture a whole monitor and save it, or preselect it in the editor."""
    provider = WaylandCaptureProvider(config)
    found = _find_monitor(provider, args.monitor)
    if found.is_failure:
        return _report(found, args, "capture")

    session = Session(provider, config)
    try:
        request = _export_request(args, config)
        result = session.start_full_capture(
            found.value,
            request.target.path,
            edit_after=args.edit,
            delay_ms=args.delay,
            fmt=request.format,
        )
        if result.is_failure or not args.edit:
            return _report(result, args, "capture" if args.edit else "export")
        return _run_editor(session, args.path)
    finally:
        session.close()


def handle_edit(args: argparse.Namespace, config: Config) -> int:
    """Open an existing image in the editor."""
    provider = ImageFileCaptureProvider(Path(args.file).expanduser())
    try:
        monitor = provider.monitor()
    except CaptureError as e:
        emit("error.handled", dict(e.to_dict(), stage="capture"))
        log.error("Cannot open %s: %s", args.file, e)
        return 1

    session = Session(provider, config)
    try:
        result = session.start_gui_session(monitor)
        if result.is_failure:
            return _report(result, args, "capture")
        return _run_editor(session, args.path)
    finally:
        session.close()


def handle_diagnose(config: Config) -> int:
    print("fireshot diagnostics")
    print("env:")
    for key in DIAGNOSTIC_ENV:
        print(f"  {key}={os.environ.get(key, '<unset>')}")
    print()
    print(f"outputs ({config.wayland_capture}):")
    try:
        for monitor in WaylandCaptureProvider(config).list_monitors():
            print(f"  {monitor.name}: {monitor.width}x{monitor.height} @ {monitor.scale:g}")
    except FireshotError as e:
        print(f"  error: {e}")
        return 1
    return 0


def main(args: Optional[list[str]] = None) -> int:
    """Main entry point.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_argument_parser()
    parsed_args = parser.parse_args(args)

    # Introspection flags short-circuit normal execution
    result = _handle_introspection(parsed_args)
    if result is not None:
        return result

    if parsed_args.command is None:
        parsed_args = parser.parse_args((args if args is not None else sys.argv[1:]) + ["gui"])

    configure("fireshot", stderr=not getattr(parsed_args, "json", False))
    atexit.register(lambda: emit("shutdown", {}))

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.debug else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    config_path = Path(parsed_args.config).expanduser() if parsed_args.config else None
    config = load_config(config_path=config_path, overrides=_config_overrides(parsed_args))

    if parsed_args.command == "diagnose":
        return handle_diagnose(config)
    if parsed_args.command == "full":
        return handle_full(parsed_args, config)
    if parsed_args.command == "edit":
        return handle_edit(parsed_args, config)
    return handle_gui(parsed_args, config)


if __name__ == "__main__":
    sys.exit(main())
