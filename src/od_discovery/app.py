"""Command line entry point for the discovery reconciler.

Usage:
    od-discovery run                      # tick scheduler until SIGINT/SIGTERM
    od-discovery reconcile                # one reconciliation cycle
    od-discovery reexport                 # rewrite the search index from the store
    od-discovery add ROOT_URL [FILE_URL ...] [--from-file PATH]
    od-discovery stats                    # refresh stats.json

Every one-shot command prints a JSON summary on stdout and exits non-zero when
the underlying task failed.
"""

# ruff: noqa: T201
from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
import logging
from pathlib import Path
import sys
from typing import Any

import orjson
from pydantic import ValidationError

from . import __version__
from .config import Settings
from .context import AppContext, open_context
from .observability.logging import configure_logging
from .observability.metrics import setup_metrics, start_metrics_server
from .observability.tracing import setup_tracing
from .runtime.signals import install_shutdown_signals
from .services.scheduler_service import TaskKind


logger = logging.getLogger(__name__)

SERVICE_NAME = "odcrawler-discovery"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="od-discovery",
        description="Keep the open-directory link index in step with which roots are reachable.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Run the tick scheduler until interrupted")
    subparsers.add_parser("reconcile", help="Run one reconciliation cycle and exit")
    subparsers.add_parser("reexport", help="Re-export the whole corpus to the search index")
    subparsers.add_parser("stats", help="Recompute and write stats.json")

    add = subparsers.add_parser("add", help="Register a scanned root and its file URLs")
    add.add_argument("root_url", help="Root URL of the open directory")
    add.add_argument("file_urls", nargs="*", help="File URLs found under the root")
    add.add_argument("--from-file", type=Path, help="Read additional file URLs from PATH, one per line")
    return parser


def _emit(payload: dict[str, Any]) -> None:
    print(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode())


def _read_file_urls(args: argparse.Namespace) -> list[str]:
    urls = list(args.file_urls)
    if args.from_file is not None:
        lines = args.from_file.read_text(encoding="utf-8").splitlines()
        urls.extend(line.strip() for line in lines if line.strip())
    return urls


async def _run_task(ctx: AppContext, kind: TaskKind) -> int:
    ok = await ctx.scheduler.trigger(kind)
    result = ctx.scheduler.last_result(kind) if ok else None
    _emit({"task": kind.value, "ok": ok, "result": result, "error": None if ok else ctx.scheduler.stats["last_error"]})
    return 0 if ok else 1


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    async with open_context(settings) as ctx:
        if args.command == "run":
            stop_event = install_shutdown_signals()
            await ctx.scheduler.run_forever(stop_event)
            _emit({"task": "run", "ok": True, "result": ctx.scheduler.stats})
            return 0

        if args.command == "reconcile":
            return await _run_task(ctx, TaskKind.RECONCILE_ROOTS)

        if args.command == "reexport":
            return await _run_task(ctx, TaskKind.RESYNC_INDEX)

        if args.command == "stats":
            return await _run_task(ctx, TaskKind.UPDATE_STATS)

        if args.command == "add":
            result = await ctx.ingest.register_scan(args.root_url, _read_file_urls(args))
            _emit({"task": "add", "ok": result.created, "result": result.to_dict()})
            return 0 if result.created else 1

    raise ValueError(f"Unknown command {args.command!r}")


def _configure_observability(settings: Settings) -> None:
    collector = settings.observability_config()
    setup_tracing(SERVICE_NAME, collector)
    setup_metrics(SERVICE_NAME, collector)
    start_metrics_server(settings.metrics_port)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the reconciler CLI."""
    args = build_parser().parse_args(argv)

    try:
        settings = Settings()
    except ValidationError as exc:
        configure_logging("ERROR", json_output=False)
        logger.error("Configuration is invalid: %s", exc)
        return 2

    configure_logging(args.log_level or settings.log_level, settings.log_json)
    _configure_observability(settings)

    logger.info("Starting od-discovery %s (%s)", __version__, args.command)
    try:
        return asyncio.run(_run(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
