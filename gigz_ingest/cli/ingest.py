# =============================================================================
# gigz_ingest/cli/ingest.py: ingestion job runner
# =============================================================================
#
# One-shot CLI for running ingestion jobs outside a scheduler. Each
# subcommand builds the full object graph (build_pipeline), runs a single
# job, prints the JobResult as JSON on stdout and exits non-zero when the
# job did not succeed. Logs go to stderr so stdout stays machine-readable.
#
# Subcommands:
#
#   init-db  : create catalog tables and indexes
#   discover : discovery scrape (city / genre / date filters)
#   artist   : every concert for one artist (MusicBrainz id on setlist.fm)
#   venue    : every concert for one venue (provider venue id)
#   backfill : walk a date range slice by slice
#
# SIGINT / SIGTERM ask the pipeline to stop at the next stage boundary;
# the partial result is still printed.
#
# Usage examples:
#   python -m gigz_ingest.cli init-db
#   python -m gigz_ingest.cli discover --location London --limit 40
#   python -m gigz_ingest.cli artist a74b1b7f-71a5-4011-9441-d0b5e4122711
#   python -m gigz_ingest.cli backfill --start 2024-01-01 --end 2024-01-31
# =============================================================================

"""Standalone CLI for running concert ingestion jobs.

Usage::

    python -m gigz_ingest.cli init-db
    python -m gigz_ingest.cli discover --location London --start 2024-06-01 --end 2024-06-30
    python -m gigz_ingest.cli artist <musicbrainz-id> --limit 200
    python -m gigz_ingest.cli venue <venue-id>
    python -m gigz_ingest.cli backfill --start 2024-01-01 --end 2024-12-31 --batch-size 100
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from datetime import date
from typing import Any

import structlog
from pydantic import ValidationError

from gigz_ingest.config.settings import Settings
from gigz_ingest.main import build_pipeline, close_pipeline
from gigz_ingest.models.pipeline import JobResult
from gigz_ingest.models.scraped import DateRange, DiscoveryParams, ScrapeParams
from gigz_ingest.utils.errors import AuthenticationError, GigzIngestError
from gigz_ingest.utils.logging import configure_logging
from gigz_ingest.utils.text_normalizer import normalize_date

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_SOURCE = "setlistfm"
_EXIT_OK = 0
_EXIT_JOB_FAILED = 1
_EXIT_AUTH = 2


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def _parse_date(value: str) -> date:
    parsed = normalize_date(value)
    if parsed is None:
        raise argparse.ArgumentTypeError(
            f"invalid date {value!r} (use YYYY-MM-DD or DD-MM-YYYY)"
        )
    return parsed


def _date_range(args: argparse.Namespace) -> DateRange | None:
    if args.start is None and args.end is None:
        return None
    start = args.start or args.end
    end = args.end or args.start
    return DateRange(start=start, end=end)


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_init_db(components: dict[str, Any]) -> int:
    """Create catalog tables."""
    await components["storage"].initialize()
    _print_json({"initialized": components["config"]["storage"]["db_path"]})
    return _EXIT_OK


async def _run_job(args: argparse.Namespace, components: dict[str, Any]) -> JobResult:
    pipeline = components["pipeline"]
    if args.command == "discover":
        params = DiscoveryParams(
            location=args.location,
            genre=args.genre,
            date_range=_date_range(args),
            limit=args.limit,
            offset=args.offset,
        )
        return await pipeline.run_discovery(args.source, params)
    if args.command == "artist":
        params = ScrapeParams(date_range=_date_range(args), limit=args.limit)
        return await pipeline.run_artist_scrape(args.source, args.artist_id, params)
    if args.command == "venue":
        params = ScrapeParams(date_range=_date_range(args), limit=args.limit)
        return await pipeline.run_venue_scrape(args.source, args.venue_id, params)
    return await pipeline.run_backfill(
        args.source, args.start, args.end, batch_size=args.batch_size
    )


def _install_signal_handlers(pipeline: Any) -> list[signal.Signals]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pipeline.request_shutdown)
        except (NotImplementedError, RuntimeError):
            # No loop signal support on this platform; Ctrl-C still raises.
            logger.debug("signal_handler_unavailable", signal=sig.name)
            continue
        installed.append(sig)
    return installed


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    components = build_pipeline(app_settings, config_path=args.config)
    if args.command == "init-db":
        try:
            return await _handle_init_db(components)
        finally:
            await close_pipeline(components)

    installed = _install_signal_handlers(components["pipeline"])
    try:
        await components["storage"].initialize()
        result = await _run_job(args, components)
    except AuthenticationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return _EXIT_AUTH
    except (GigzIngestError, ValidationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return _EXIT_JOB_FAILED
    finally:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)
        await close_pipeline(components)

    print(result.model_dump_json(indent=2))
    return _EXIT_OK if result.success else _EXIT_JOB_FAILED


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _add_source(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--source", default=_DEFAULT_SOURCE, help=f"Source connector (default: {_DEFAULT_SOURCE})"
    )


def _add_dates(parser: argparse.ArgumentParser, required: bool = False) -> None:
    parser.add_argument("--start", type=_parse_date, required=required,
                        help="First date (inclusive)")
    parser.add_argument("--end", type=_parse_date, required=required,
                        help="Last date (inclusive)")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the ingestion CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m gigz_ingest.cli",
        description="Run concert ingestion jobs against the catalog.",
    )
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--log-level", dest="log_level", default=None,
                        help="Override LOG_LEVEL")
    parser.add_argument("--json-logs", dest="json_logs", action="store_true",
                        help="Render logs as JSON")
    subparsers = parser.add_subparsers(dest="command", help="Ingestion commands")

    # -- init-db --
    subparsers.add_parser("init-db", help="Create catalog tables and indexes")

    # -- discover --
    discover_parser = subparsers.add_parser("discover", help="Discovery scrape")
    _add_source(discover_parser)
    discover_parser.add_argument("--location", default=None, help="City name")
    discover_parser.add_argument("--genre", default=None, help="Genre filter")
    _add_dates(discover_parser)
    discover_parser.add_argument("--limit", type=int, default=50, help="Max concerts")
    discover_parser.add_argument("--offset", type=int, default=0, help="Results to skip")

    # -- artist --
    artist_parser = subparsers.add_parser("artist", help="Scrape one artist's concerts")
    artist_parser.add_argument("artist_id", help="Provider artist id (MBID on setlist.fm)")
    _add_source(artist_parser)
    _add_dates(artist_parser)
    artist_parser.add_argument("--limit", type=int, default=100, help="Max concerts")

    # -- venue --
    venue_parser = subparsers.add_parser("venue", help="Scrape one venue's concerts")
    venue_parser.add_argument("venue_id", help="Provider venue id")
    _add_source(venue_parser)
    _add_dates(venue_parser)
    venue_parser.add_argument("--limit", type=int, default=100, help="Max concerts")

    # -- backfill --
    backfill_parser = subparsers.add_parser("backfill", help="Backfill a date range")
    _add_source(backfill_parser)
    _add_dates(backfill_parser, required=True)
    backfill_parser.add_argument("--batch-size", dest="batch_size", type=int, default=None,
                                 help="Concerts per slice (default from config)")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Exits with the job's status code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(_EXIT_JOB_FAILED)

    app_settings = Settings()
    configure_logging(
        log_level=args.log_level or app_settings.log_level,
        json_output=args.json_logs,
        app_env=app_settings.app_env,
    )

    sys.exit(asyncio.run(_run(args, app_settings)))


if __name__ == "__main__":
    main()
