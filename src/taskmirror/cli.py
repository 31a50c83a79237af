"""Command line entry point.

Subcommands:
    serve   Run the HTTP server with the recurring sync pass.
    sync    Run a single pass and print the report.
    check   Verify ClickUp and Drive credentials.
    cron    Print the cron expression for an interval in minutes.
"""

import argparse
import json
import logging
import sys
from typing import Any

import yaml
from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .errors import ConfigurationError, TaskMirrorError
from .logger import setup_logging
from .scheduler import minutes_to_cron
from .service import MirrorService
from .sync.reporter import format_pass_report, report_to_json

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def load_file_config() -> UnifiedConfig:
    """Load .env into the environment and parse the YAML config files.

    Raises:
        ConfigurationError: If a config file cannot be read or is invalid.
    """
    load_dotenv()
    try:
        raw = load_hierarchical_config()
        # pydantic.ValidationError is a ValueError
        return build_config(raw)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Invalid config file: {e}") from e


def build_runtime_config(
    overrides: dict[str, Any] | None = None,
    unified: UnifiedConfig | None = None,
) -> Config:
    """Combine CLI overrides, the environment and the config file into a ``Config``.

    Raises:
        ConfigurationError: If required values are missing or invalid.
    """
    if unified is None:
        unified = load_file_config()
    config_files = discover_config_files()
    if config_files:
        logger.info("Config file: %s", config_files[0])
    return load_config(overrides=overrides, unified=unified)


def _cmd_serve(args: argparse.Namespace, config: Config) -> int:
    import uvicorn

    from .server import create_app

    service = MirrorService.from_config(config)
    app = create_app(service, schedule=not args.no_schedule)
    _stderr_print(
        f"taskmirror {__version__} listening on {config.host}:{config.port}, "
        f"sync every {config.interval_minutes} minutes "
        f"({minutes_to_cron(config.interval_minutes)})"
    )
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)
    return 0


def _cmd_sync(args: argparse.Namespace, config: Config) -> int:
    service = MirrorService.from_config(config)
    report = service.run_pass()
    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    else:
        print(format_pass_report(report))
    return 0 if report.index_saved else 1


def _cmd_check(args: argparse.Namespace, config: Config) -> int:
    service = MirrorService.from_config(config)
    status = service.verify_connections()
    ok = True
    for name, result in status.items():
        mark = "OK  " if result["status"] else "FAIL"
        print(f"[{mark}] {name}: {result['message']}")
        if name == "clickup" and not result["status"]:
            ok = False
    return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskmirror",
        description="Mirror Google Drive files into ClickUp tasks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the server with settings from .env / .taskmirror/config.yml
  taskmirror serve

  # One pass, JSON output
  taskmirror sync --json

  # Verify credentials
  taskmirror check

  # Show the schedule for a 90 minute interval
  taskmirror cron 90
        """,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", help="Also log to this file (rotated at 10 MB)")
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        default="text",
        help="Log line format (default: text)",
    )
    parser.add_argument(
        "--index-path", help="Task index file (overrides MEMORY_STORAGE_PATH)"
    )
    parser.add_argument(
        "--source",
        choices=("drive", "none"),
        help="Remote collection source (overrides TASKMIRROR_SOURCE)",
    )
    parser.add_argument(
        "--version", action="version", version=f"taskmirror version {__version__}"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP server and scheduler")
    serve.add_argument("--host", help="Bind address (overrides HOST)")
    serve.add_argument("--port", type=int, help="Bind port (overrides PORT)")
    serve.add_argument(
        "--interval", type=int, help="Minutes between passes (overrides SCAN_INTERVAL)"
    )
    serve.add_argument(
        "--no-schedule",
        action="store_true",
        help="Only run passes when POST /sync is called",
    )

    sync = sub.add_parser("sync", help="Run a single sync pass")
    sync.add_argument("--json", action="store_true", help="Print the report as JSON")

    sub.add_parser("check", help="Verify ClickUp and Drive connections")

    cron = sub.add_parser("cron", help="Print the cron expression for an interval")
    cron.add_argument("minutes", type=int)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "cron":
        try:
            print(minutes_to_cron(args.minutes))
        except ValueError as e:
            _stderr_print(f"ERROR: {e}")
            return 2
        return 0

    try:
        unified = load_file_config()
    except ConfigurationError as e:
        _stderr_print(f"ERROR: Configuration error: {e}")
        return 2

    setup_logging(
        mode="server" if args.command == "serve" else "cli",
        debug=args.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=args.log_format,
        level=unified.logging.level,
    )

    overrides: dict[str, Any] = {"debug": args.debug}
    if args.index_path:
        overrides["index_path"] = args.index_path
    if args.source:
        overrides["source"] = args.source
    if args.command == "serve":
        if args.host:
            overrides["host"] = args.host
        if args.port:
            overrides["port"] = args.port
        if args.interval:
            overrides["interval_minutes"] = args.interval

    try:
        config = build_runtime_config(overrides, unified)
    except ConfigurationError as e:
        _stderr_print(f"ERROR: Configuration error: {e}")
        return 2

    handlers = {"serve": _cmd_serve, "sync": _cmd_sync, "check": _cmd_check}
    try:
        return handlers[args.command](args, config)
    except TaskMirrorError as e:
        _stderr_print(f"ERROR: {e}")
        return 1
    except KeyboardInterrupt:
        _stderr_print("\nInterrupted.")
        return 130


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
