"""Per-source normalization: feed text in, resolved occurrences out."""

from __future__ import annotations

import datetime
import logging
from typing import Optional

from .exceptions import ParseError, RecurrenceParseError
from .feed_parser import FeedParser
from .models import CalendarSource, EventDefinition, ResolvedOccurrence
from .rrule_expander import (
    ExpanderConfig,
    OverrideMap,
    RecurrenceExpander,
    expansion_window,
    intersects,
    occurrence_from_definition,
    override_key,
    resolve_interval,
)
from .timezone_utils import TimezoneResolver

logger = logging.getLogger(__name__)


class EventNormalizer:
    """Turn one feed's raw text into its final occurrence list.

    Parse failures are contained: a malformed feed yields an empty list and a
    logged error, never an exception.
    """

    def __init__(
        self,
        resolver: Optional[TimezoneResolver] = None,
        parser: Optional[FeedParser] = None,
        expander_config: Optional[ExpanderConfig] = None,
    ):
        self.resolver = resolver or TimezoneResolver()
        self.parser = parser or FeedParser()
        self.expander_config = expander_config or ExpanderConfig()

    def normalize(
        self,
        raw_text: str,
        source: CalendarSource,
        now: Optional[datetime.datetime] = None,
    ) -> list[ResolvedOccurrence]:
        """Parse, expand and tag the events of one feed.

        Args:
            raw_text: Feed content
            source: Configured source the text came from
            now: Reference time for the expansion window (default: current time)

        Returns:
            Occurrences with unique ids, tagged with the source's name, key and color
        """
        try:
            document = self.parser.parse_document(raw_text)
        except ParseError as e:
            logger.error("Failed to parse calendar %r (%s): %s", source.name, source.url, e)
            return []

        resolver = self.resolver.with_custom_zones(document.custom_zones)
        expander = RecurrenceExpander(resolver, self.expander_config)
        window_start, window_end = expansion_window(now, resolver.local_tz)

        primaries = [d for d in document.definitions if not d.is_override and not d.is_cancelled]
        masters = {d.uid: d for d in primaries if d.is_recurring}
        override_map = self.build_override_map(document.definitions, masters, resolver)

        occurrences: list[ResolvedOccurrence] = []
        for definition in primaries:
            if not definition.is_recurring:
                start, end = resolve_interval(definition, resolver)
                occurrences.append(occurrence_from_definition(definition, start, end, definition.uid))
                continue

            try:
                occurrences.extend(
                    expander.expand(
                        definition, override_map, definition.exdates, window_start, window_end
                    )
                )
            except RecurrenceParseError as e:
                logger.warning("%s; keeping the first instance only", e)
                start, end = resolve_interval(definition, resolver)
                if intersects(start, end, window_start, window_end):
                    occurrences.append(
                        occurrence_from_definition(definition, start, end, definition.uid)
                    )

        orphans = set(override_map.overrides) - override_map.consumed
        if orphans:
            logger.debug(
                "Dropped %d overrides without a matching instance in %r", len(orphans), source.name
            )

        result = self._finalize(occurrences, source)
        logger.info(
            "Normalized %r: %d definitions -> %d occurrences",
            source.name,
            len(document.definitions),
            len(result),
        )
        return result

    def build_override_map(
        self,
        definitions: list[EventDefinition],
        masters: dict[str, EventDefinition],
        resolver: TimezoneResolver,
    ) -> OverrideMap:
        """Collect RECURRENCE-ID definitions into an override map.

        Cancelled overrides mark their key as suppressed. When a feed carries
        both a cancelled and a replacement instance for one date, suppression wins.
        """
        override_map = OverrideMap()
        for definition in definitions:
            if not definition.is_override:
                continue
            day = self._recurrence_day(definition, masters.get(definition.uid), resolver)
            key = override_key(definition.uid, day)
            if definition.is_cancelled:
                override_map.suppressed.add(key)
                override_map.overrides.pop(key, None)
            elif key not in override_map.suppressed:
                override_map.overrides[key] = definition
        return override_map

    def _recurrence_day(
        self,
        definition: EventDefinition,
        master: Optional[EventDefinition],
        resolver: TimezoneResolver,
    ) -> datetime.date:
        """Calendar date of the replaced instance, read in the series' zone."""
        rid = definition.recurrence_id
        if rid is None:
            raise ValueError(f"{definition.uid!r} is not a recurrence override")
        if rid.is_date or master is None or rid.tzid == master.start.tzid or rid.tzid is None:
            return rid.value.date()

        rid_zone = resolver.zone_for(rid.tzid)
        master_zone = resolver.zone_for(master.start.tzid) or resolver.local_tz
        if rid_zone is None:
            return rid.value.date()
        return rid.value.replace(tzinfo=rid_zone).astimezone(master_zone).date()

    def _finalize(
        self, occurrences: list[ResolvedOccurrence], source: CalendarSource
    ) -> list[ResolvedOccurrence]:
        """Tag with source fields, drop duplicate ids, clamp inverted intervals."""
        seen: set[str] = set()
        result: list[ResolvedOccurrence] = []
        for occurrence in occurrences:
            if occurrence.id in seen:
                logger.debug("Duplicate occurrence id %s in %r", occurrence.id, source.name)
                continue
            seen.add(occurrence.id)

            update = {"source": source.name, "source_id": source.key, "color": source.color}
            if occurrence.end < occurrence.start:
                logger.warning(
                    "Event %s ends before it starts, clamping end to start", occurrence.id
                )
                update["end"] = occurrence.start
            result.append(occurrence.model_copy(update=update))
        return result
