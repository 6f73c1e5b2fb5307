"""Multi-source ingestion with fetch deduplication, staleness policy and snapshots.

IngestionCache owns the process-wide occurrence list. The list is replaced
in a single assignment at the end of each fetch cycle, so readers always see
either the previous complete list or the new one.
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .event_normalizer import EventNormalizer
from .exceptions import CacheCorruptionError, FetchError, TimezoneResolutionError
from .feed_parser import validate_ics_content
from .fetcher import FeedFetcher
from .models import CacheSnapshot, CalendarSource, ResolvedOccurrence, SnapshotSource
from .rrule_expander import ExpanderConfig, intersects
from .snapshot_store import SnapshotStore
from .timezone_utils import TimezoneResolver, get_zoneinfo, now_utc

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL_MINUTES = 30
BACKGROUND_REFRESH_DELAY_SECONDS = 1.0
FORCED_REFRESH_FAILURE_MESSAGE = "Failed to refresh calendars, check console for details"


def _epoch_ms() -> int:
    return int(now_utc().timestamp() * 1000)


@dataclass(frozen=True)
class CacheContents:
    """Result of one completed fetch cycle."""

    events: tuple[ResolvedOccurrence, ...] = ()
    last_fetch_ms: int = 0
    source_keys: frozenset[str] = frozenset()


@dataclass
class IngestionState:
    """Mutable state owned by one IngestionCache."""

    contents: CacheContents = field(default_factory=CacheContents)
    in_flight: bool = False
    snapshot_attempted: bool = False


@dataclass
class SourceResult:
    source: CalendarSource
    events: list[ResolvedOccurrence]
    ok: bool


class IngestionCache:
    """Single entry point for fetching, caching and querying calendar events."""

    def __init__(
        self,
        refresh_interval_minutes: int = DEFAULT_REFRESH_INTERVAL_MINUTES,
        snapshot_store: Optional[SnapshotStore] = None,
        fetcher: Optional[FeedFetcher] = None,
        normalizer: Optional[EventNormalizer] = None,
        notifier: Optional[Callable[[str], None]] = None,
        background_refresh_delay: float = BACKGROUND_REFRESH_DELAY_SECONDS,
        clock: Callable[[], int] = _epoch_ms,
    ):
        """Initialize the cache.

        Args:
            refresh_interval_minutes: Age after which in-memory events are stale
            snapshot_store: Snapshot persistence (None disables snapshots)
            fetcher: Feed reader (default: FeedFetcher())
            normalizer: Per-source normalizer (default: EventNormalizer())
            notifier: Called with a user-facing message when a forced refresh fails
            background_refresh_delay: Seconds between snapshot adoption and its refresh
            clock: Returns the current time in epoch milliseconds
        """
        if refresh_interval_minutes <= 0:
            raise ValueError("refresh_interval_minutes must be > 0")
        self.refresh_interval_ms = refresh_interval_minutes * 60 * 1000
        self.snapshot_store = snapshot_store
        self.fetcher = fetcher or FeedFetcher()
        self.normalizer = normalizer or EventNormalizer()
        self.notifier = notifier
        self.background_refresh_delay = background_refresh_delay
        self.clock = clock
        self.state = IngestionState()
        self._background_task: Optional[asyncio.Task] = None
        self.fetch_count = 0

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> IngestionCache:
        """Build a cache from a settings object (see config_manager.MemochronSettings)."""
        local_tz = None
        timezone_name = getattr(settings, "timezone", None)
        if timezone_name:
            try:
                local_tz = get_zoneinfo(timezone_name)
            except TimezoneResolutionError:
                logger.warning("Invalid timezone %r, using host timezone", timezone_name)
        snapshot_path = getattr(settings, "snapshot_path", None)
        kwargs: dict[str, Any] = {
            "refresh_interval_minutes": int(
                getattr(settings, "refresh_interval", DEFAULT_REFRESH_INTERVAL_MINUTES)
            ),
            "snapshot_store": SnapshotStore(snapshot_path) if snapshot_path else None,
            "fetcher": FeedFetcher(settings),
            "normalizer": EventNormalizer(
                TimezoneResolver(local_tz), expander_config=ExpanderConfig.from_settings(settings)
            ),
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    @property
    def events(self) -> list[ResolvedOccurrence]:
        return list(self.state.contents.events)

    @property
    def local_tz(self) -> datetime.tzinfo:
        return self.normalizer.resolver.local_tz

    async def fetch_all(
        self, sources: Iterable[CalendarSource], force_refresh: bool = False
    ) -> list[ResolvedOccurrence]:
        """Return the merged events of all enabled sources, fetching when required.

        A call made while another fetch is in flight returns the current list
        unchanged; forced refreshes are dropped in that case, not queued.
        """
        return await self._fetch_all(list(sources), force_refresh, notify=force_refresh)

    async def _fetch_all(
        self, sources: list[CalendarSource], force_refresh: bool, notify: bool
    ) -> list[ResolvedOccurrence]:
        if self.state.in_flight:
            logger.debug("Fetch already in progress, returning current events")
            return self.events

        self.state.in_flight = True
        try:
            enabled = [s for s in sources if s.enabled]

            if not self.state.contents.events and not force_refresh and not self.state.snapshot_attempted:
                self.state.snapshot_attempted = True
                if await self._adopt_snapshot(enabled):
                    self._schedule_background_refresh(sources)
                    return self.events

            if not enabled:
                logger.info("No enabled calendar sources, clearing events")
                self.state.contents = CacheContents(last_fetch_ms=self.clock())
                return []

            if not self.needs_refresh(enabled, force_refresh):
                return self.events

            return await self._refresh(enabled, notify)
        finally:
            self.state.in_flight = False

    def needs_refresh(self, enabled: list[CalendarSource], force_refresh: bool = False) -> bool:
        """Decide whether the in-memory events must be refetched."""
        contents = self.state.contents
        if force_refresh or not contents.events:
            return True
        if self.clock() - contents.last_fetch_ms >= self.refresh_interval_ms:
            return True
        if self.has_source_mismatch(enabled):
            logger.info("Enabled calendar sources changed, refreshing")
            return True
        return False

    def has_source_mismatch(self, enabled: list[CalendarSource]) -> bool:
        """True when events belong to a disabled source or an enabled source was never fetched."""
        enabled_keys = {s.key for s in enabled}
        event_keys = {e.source_id for e in self.state.contents.events}
        if event_keys - enabled_keys:
            return True
        return any(
            key not in event_keys and key not in self.state.contents.source_keys
            for key in enabled_keys
        )

    async def _adopt_snapshot(self, enabled: list[CalendarSource]) -> bool:
        """Load the persisted snapshot into memory when it is usable."""
        if self.snapshot_store is None or not enabled:
            return False
        try:
            snapshot = await asyncio.to_thread(self.snapshot_store.load)
        except CacheCorruptionError as e:
            logger.debug("No usable snapshot, fetching normally: %s", e)
            return False

        enabled_keys = {s.key for s in enabled}
        if snapshot.source_keys != enabled_keys:
            logger.info("Ignoring snapshot: calendar sources changed since it was written")
            return False
        age_ms = self.clock() - snapshot.timestamp
        if age_ms >= self.refresh_interval_ms:
            logger.info("Ignoring snapshot: %d minutes old", age_ms // 60_000)
            return False

        self.state.contents = CacheContents(
            events=tuple(snapshot.events),
            last_fetch_ms=snapshot.timestamp,
            source_keys=frozenset(snapshot.source_keys),
        )
        logger.info("Loaded %d events from snapshot", len(snapshot.events))
        return True

    def _schedule_background_refresh(self, sources: list[CalendarSource]) -> None:
        if self._background_task is not None and not self._background_task.done():
            return
        self._background_task = asyncio.create_task(self._background_refresh(sources))

    async def _background_refresh(self, sources: list[CalendarSource]) -> None:
        await asyncio.sleep(self.background_refresh_delay)
        try:
            await self._fetch_all(sources, force_refresh=True, notify=False)
        except Exception:
            logger.exception("Background calendar refresh failed")

    async def _refresh(
        self, enabled: list[CalendarSource], notify: bool
    ) -> list[ResolvedOccurrence]:
        """Fetch every enabled source concurrently and replace the in-memory list."""
        self.fetch_count += 1
        logger.debug("Fetching %d calendar sources", len(enabled))

        fetch_results = await asyncio.gather(
            *(self._fetch_source(s) for s in enabled), return_exceptions=True
        )

        results: list[SourceResult] = []
        for source, result in zip(enabled, fetch_results):
            if isinstance(result, BaseException):
                logger.error("Calendar %r failed: %r", source.name, result)
                results.append(SourceResult(source, [], ok=False))
            else:
                results.append(result)

        merged: list[ResolvedOccurrence] = []
        for result in results:
            merged.extend(result.events)

        fetched_at = self.clock()
        # Failed sources stay unrecorded so the next call retries them
        self.state.contents = CacheContents(
            events=tuple(merged),
            last_fetch_ms=fetched_at,
            source_keys=frozenset(r.source.key for r in results if r.ok),
        )

        failed = [r.source.name for r in results if not r.ok]
        if failed:
            logger.warning("Calendar sources failed this cycle: %s", ", ".join(failed))
        if notify and len(failed) == len(results) and self.notifier is not None:
            self.notifier(FORCED_REFRESH_FAILURE_MESSAGE)

        logger.info(
            "Fetched %d events from %d sources (%d failed)", len(merged), len(enabled), len(failed)
        )
        await self._persist(enabled, fetched_at, merged)
        return list(merged)

    async def _fetch_source(self, source: CalendarSource) -> SourceResult:
        """Fetch and normalize one source; failures yield an empty result."""
        try:
            text = await self.fetcher.fetch_text(source)
        except FetchError as e:
            if e.diagnostics:
                logger.error("Error fetching calendar %r: %s (diagnostics: %s)", source.name, e, e.diagnostics)
            else:
                logger.error("Error fetching calendar %r: %s", source.name, e)
            return SourceResult(source, [], ok=False)

        if not validate_ics_content(text):
            logger.error("Calendar %r did not return iCalendar data", source.name)
            return SourceResult(source, [], ok=False)

        return SourceResult(source, self.normalizer.normalize(text, source), ok=True)

    async def _persist(
        self, enabled: list[CalendarSource], timestamp: int, events: list[ResolvedOccurrence]
    ) -> None:
        if self.snapshot_store is None:
            return
        snapshot = CacheSnapshot(
            timestamp=timestamp,
            sources=[SnapshotSource(url=s.key, name=s.name) for s in enabled],
            events=events,
        )
        try:
            await asyncio.to_thread(self.snapshot_store.save, snapshot)
        except Exception as e:
            logger.warning("Failed to save calendar snapshot: %s", e)

    def events_on_date(self, day: datetime.date) -> list[ResolvedOccurrence]:
        """Events touching a local calendar day, ascending by start.

        An event that ends exactly at the day's midnight belongs to the
        previous day only, unless it also starts there (zero length).
        """
        start_of_day = datetime.datetime.combine(day, datetime.time.min).replace(tzinfo=self.local_tz)
        end_of_day = datetime.datetime.combine(day, datetime.time.max).replace(tzinfo=self.local_tz)
        matches = [
            e
            for e in self.state.contents.events
            if e.start <= end_of_day and (e.end > start_of_day or e.start >= start_of_day)
        ]
        return sorted(matches, key=lambda e: e.start)

    def events_between(
        self, start: datetime.datetime, end: datetime.datetime
    ) -> list[ResolvedOccurrence]:
        """Events intersecting [start, end], ascending by start."""
        matches = [e for e in self.state.contents.events if intersects(e.start, e.end, start, end)]
        return sorted(matches, key=lambda e: e.start)

    async def run_refresh_loop(
        self,
        sources_provider: Callable[[], Iterable[CalendarSource]],
        stop_event: asyncio.Event,
    ) -> None:
        """Refresh immediately, then every refresh interval until stop_event is set."""
        interval = self.refresh_interval_ms / 1000
        logger.debug("Refresh loop starting with interval %d seconds", interval)
        while not stop_event.is_set():
            try:
                await self.fetch_all(sources_provider())
            except Exception:
                logger.exception("Periodic calendar refresh failed")
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
        logger.debug("Refresh loop stopped")

    async def shutdown(self) -> None:
        """Cancel the pending background refresh, if any."""
        task = self._background_task
        self._background_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
