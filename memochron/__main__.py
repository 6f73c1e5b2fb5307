"""Command-line entry for memochron.

Fetches the configured calendar feeds and prints the events of one day.
"""

from __future__ import annotations

import argparse
import asyncio
import datetime
import logging
import sys
from typing import NoReturn, Optional

from . import _init_logging
from .config_manager import ConfigManager, MemochronSettings, load_sources_file, source_from_url
from .http_client import close_all_clients
from .ingestion_cache import IngestionCache
from .logging_config import configure_logging
from .models import ResolvedOccurrence
from .snapshot_store import default_snapshot_path
from .timezone_utils import now_local

logger = logging.getLogger(__name__)


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the memochron CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="memochron",
        description="memochron - fetch iCalendar feeds and list a day's events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m memochron --source https://example.com/cal.ics
  python -m memochron --sources-file calendars.json --date 2025-03-30
  MEMOCHRON_ICS_URLS=~/cal.ics python -m memochron --force
        """,
    )
    parser.add_argument(
        "--date",
        type=datetime.date.fromisoformat,
        metavar="YYYY-MM-DD",
        help="Day to list (default: today in the local timezone)",
    )
    parser.add_argument(
        "--source",
        action="append",
        default=[],
        metavar="URL",
        help="Feed URL or path; may be repeated (adds to MEMOCHRON_ICS_URLS)",
    )
    parser.add_argument("--sources-file", metavar="PATH", help="JSON list of calendar sources")
    parser.add_argument("--force", action="store_true", help="Ignore cached data and refetch")
    parser.add_argument("--snapshot", metavar="PATH", help="Snapshot file (MEMOCHRON_SNAPSHOT_PATH)")
    parser.add_argument("--log-level", metavar="LEVEL", help="Root log level (default: INFO)")
    return parser


def format_event(event: ResolvedOccurrence) -> str:
    """Render one event as a single console line."""
    when = "all day" if event.is_all_day else f"{event.start:%H:%M}-{event.end:%H:%M}"
    line = f"{when:<12} {event.title}"
    if event.location:
        line += f" @ {event.location}"
    return f"{line}  [{event.source}]"


def _build_settings(args: argparse.Namespace) -> MemochronSettings:
    settings = ConfigManager().load_settings()
    sources = list(settings.sources)
    sources.extend(source_from_url(url) for url in args.source)
    if args.sources_file:
        sources.extend(load_sources_file(args.sources_file))
    update: dict = {"sources": sources}
    if args.snapshot:
        update["snapshot_path"] = args.snapshot
    elif not settings.snapshot_path:
        update["snapshot_path"] = str(default_snapshot_path())
    if args.log_level:
        update["log_level"] = args.log_level
    return settings.model_copy(update=update)


async def _run(settings: MemochronSettings, day: Optional[datetime.date], force: bool) -> int:
    cache = IngestionCache.from_settings(
        settings, notifier=lambda message: print(message, file=sys.stderr)
    )
    try:
        await cache.fetch_all(settings.sources, force_refresh=force)
        target = day or now_local(cache.local_tz).date()
        events = cache.events_on_date(target)
        print(f"{target:%A %d %B %Y}: {len(events)} event(s)")
        for event in events:
            print("  " + format_event(event))
    finally:
        await cache.shutdown()
        await close_all_clients()
    return 0


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the memochron CLI."""
    args = _create_parser().parse_args(argv)
    settings = _build_settings(args)

    _init_logging(settings.log_level)
    configure_logging(debug_mode=settings.log_level.upper() == "DEBUG")

    if not settings.sources:
        print("No calendar sources configured. Use --source, --sources-file or MEMOCHRON_ICS_URLS.")
        sys.exit(2)

    sys.exit(asyncio.run(_run(settings, args.date, args.force)))


if __name__ == "__main__":
    main()
