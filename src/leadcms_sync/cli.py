"""Command-line entry point for leadcms-sync.

Subcommands:

    pull [KIND ...] [--force] [--json]   sync entity kinds into the mirror
    reset KIND [KIND ...]                delete a kind's mirror and cursor
    status [KIND ...] [--diff] [--json]  compare the mirror with the server
    watch                                real-time content sync
    init                                 write a starter config file
"""

import argparse
import json
import logging
import sys
import threading
from typing import Any

from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import ensure_config, find_config_file, load_config_file
from .config_schema import build_config, to_fallbacks
from .core.client import LeadCMSClient
from .core.errors import AuthenticationError, LeadCMSError
from .logger import setup_logging
from .sync.engine import STATUS_KINDS, SyncEngine
from .sync.models import EntityKind
from .sync.reporter import (
    format_status_report,
    format_sync_report,
    report_to_json,
    status_to_json,
)
from .sync.watcher import ChangeWatcher

logger = logging.getLogger(__name__)

KIND_HELP = "one of: " + ", ".join(k.value for k in EntityKind)


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def _status_kind(value: str) -> EntityKind:
    kind = EntityKind(value)
    if kind not in STATUS_KINDS:
        raise argparse.ArgumentTypeError(
            f"status supports {', '.join(k.value for k in STATUS_KINDS)}, not '{value}'"
        )
    return kind


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="leadcms-sync",
        description="leadcms-sync - mirror LeadCMS content into local files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Pull everything (content, media, comments, email templates, settings)
  leadcms-sync pull

  # Pull content only, overwriting local edits
  leadcms-sync pull content --force

  # What would a pull change, with diffs
  leadcms-sync status content --diff

  # Start over for comments
  leadcms-sync reset comments && leadcms-sync pull comments

  # Keep content in sync while editing in LeadCMS
  leadcms-sync watch

Configuration comes from CLI arguments, LEADCMS_* environment variables
(.env is loaded), then .leadcms/config.yml.
        """,
    )
    parser.add_argument(
        "--url",
        help="Override LeadCMS URL (takes precedence over LEADCMS_URL and config files)",
    )
    parser.add_argument(
        "--api-key",
        help="Override API key (visible in process list -- prefer LEADCMS_API_KEY)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also append log records to this file")
    parser.add_argument(
        "--debug-format",
        choices=["text", "json"],
        default="text",
        help="Log record format (default: text)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"leadcms-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    pull = sub.add_parser("pull", help="Fetch remote changes into the mirror")
    pull.add_argument(
        "kinds", nargs="*", type=EntityKind, metavar="KIND", help=KIND_HELP
    )
    pull.add_argument(
        "--force",
        action="store_true",
        help="Overwrite local edits instead of merging",
    )
    pull.add_argument(
        "--json", action="store_true", help="Print reports as JSON"
    )

    reset = sub.add_parser("reset", help="Delete a kind's mirror and cursor")
    reset.add_argument(
        "kinds", nargs="+", type=EntityKind, metavar="KIND", help=KIND_HELP
    )

    status = sub.add_parser(
        "status", help="Compare the mirror with the server without writing"
    )
    status.add_argument(
        "kinds",
        nargs="*",
        type=_status_kind,
        metavar="KIND",
        help="one of: " + ", ".join(k.value for k in STATUS_KINDS),
    )
    status.add_argument(
        "--diff", action="store_true", help="Show a diff for every differing file"
    )
    status.add_argument(
        "--json", action="store_true", help="Print results as JSON"
    )

    watch = sub.add_parser("watch", help="Sync content on every change event")
    watch.add_argument(
        "--debounce",
        type=float,
        default=0.3,
        help="Seconds to wait for a burst of events to settle (default: 0.3)",
    )

    sub.add_parser("init", help="Write a starter .leadcms/config.yml")
    return parser


def resolve_config(args: argparse.Namespace) -> tuple[Config, Any]:
    """Merge CLI > env (.env) > YAML > defaults into a ``Config``."""
    unified = build_config(load_config_file())
    config = load_config(
        url=args.url,
        api_key=args.api_key,
        debug=args.debug,
        yaml_fallbacks=to_fallbacks(unified),
    )
    return config, unified


def _pull(engine: SyncEngine, args: argparse.Namespace) -> int:
    reports = engine.sync_all(args.kinds or None, force_overwrite=args.force)
    if args.json:
        print(
            json.dumps(
                [report_to_json(r) for r in reports.values()], indent=2
            )
        )
    else:
        print("\n\n".join(format_sync_report(r) for r in reports.values()))
    return 0 if all(r.error is None for r in reports.values()) else 1


def _status(engine: SyncEngine, args: argparse.Namespace) -> int:
    kinds = args.kinds or [
        k for k in STATUS_KINDS if engine.config.api_key or not k.requires_auth
    ]
    reports = [engine.status(kind, with_diff=args.diff) for kind in kinds]
    if args.json:
        print(json.dumps([status_to_json(r) for r in reports], indent=2))
    else:
        print(
            "\n\n".join(
                format_status_report(r, show_diff=args.diff) for r in reports
            )
        )
    return 0


def _reset(engine: SyncEngine, args: argparse.Namespace) -> int:
    for kind in args.kinds:
        engine.reset(kind)
        _stderr_print(f"Reset {kind.value}")
    return 0


def _watch(
    engine: SyncEngine, client: LeadCMSClient, args: argparse.Namespace
) -> int:
    watcher = ChangeWatcher(engine, client, debounce=args.debounce)
    stop = threading.Event()
    _stderr_print("Watching LeadCMS for content changes (Ctrl+C to stop)...")
    try:
        watcher.watch(stop)
    except KeyboardInterrupt:
        stop.set()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # .env first so env lookups and ${VAR} interpolation can use it
    load_dotenv()

    if args.command == "init":
        setup_logging(debug=args.debug, debug_format=args.debug_format)
        path = ensure_config()
        print(path)
        return 0

    try:
        config, unified = resolve_config(args)
    except ValueError as e:
        setup_logging(debug=args.debug, debug_format=args.debug_format)
        logger.error("Configuration error: %s", e)
        return 1

    setup_logging(
        debug=config.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=args.debug_format,
        level=unified.logging.level,
    )
    config_file = find_config_file()
    logger.debug(
        "Configuration loaded from: %s", config_file or "environment"
    )
    logger.info("LeadCMS URL: %s", config.url)

    client = LeadCMSClient(config)
    engine = SyncEngine(config, client)
    try:
        if args.command == "pull":
            return _pull(engine, args)
        if args.command == "reset":
            return _reset(engine, args)
        if args.command == "status":
            return _status(engine, args)
        return _watch(engine, client, args)
    except AuthenticationError as e:
        logger.error("Authentication failed: %s", e)
        return 1
    except LeadCMSError as e:
        logger.error("%s", e)
        return 1


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
