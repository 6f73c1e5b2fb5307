"""Recurrence expansion for event definitions.

Series are expanded with dateutil's rrule machinery over naive wall-clock
values in the series' own zone, then each candidate is resolved to a local
instant. Expansion is bounded to a fixed window around today so unbounded
rules (daily forever) stay finite.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from dateutil.relativedelta import relativedelta
from dateutil.rrule import rruleset, rrulestr

from .exceptions import RecurrenceParseError
from .models import EventDefinition, ResolvedOccurrence
from .timezone_utils import TimezoneResolver, now_local

logger = logging.getLogger(__name__)

WINDOW_MONTHS_BEFORE = 1
WINDOW_MONTHS_AFTER = 2


@dataclass
class ExpanderConfig:
    """Limits for recurrence expansion."""

    # Occurrences at or after the window start, per series
    max_occurrences_per_rule: int = 1000
    # Candidates scanned per series, including those before the window
    max_scanned_candidates: int = 200_000

    @classmethod
    def from_settings(cls, settings: Any) -> ExpanderConfig:
        """Extract expansion limits from a settings object, using defaults for missing values."""
        return cls(
            max_occurrences_per_rule=getattr(settings, "max_occurrences_per_rule", 1000),
            max_scanned_candidates=getattr(settings, "max_scanned_candidates", 200_000),
        )


@dataclass
class OverrideMap:
    """Recurrence exceptions keyed by override_key(uid, date).

    A key lives in overrides when a replacement instance exists, or in
    suppressed when the instance was cancelled. consumed records the keys
    the expander actually applied.
    """

    overrides: dict[str, EventDefinition] = field(default_factory=dict)
    suppressed: set[str] = field(default_factory=set)
    consumed: set[str] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.overrides) + len(self.suppressed)


def override_key(uid: str, day: datetime.date) -> str:
    """Key shared by a series instance and its RECURRENCE-ID override."""
    return f"{uid}::{day.isoformat()}"


def expansion_window(
    now: Optional[datetime.datetime] = None,
    local_tz: Optional[datetime.tzinfo] = None,
) -> tuple[datetime.datetime, datetime.datetime]:
    """Return (start, end) of the expansion window.

    Start is local midnight one calendar month before today, end is the last
    microsecond of the day two calendar months after today.
    """
    current = now if now is not None else now_local(local_tz)
    if local_tz is not None:
        current = current.astimezone(local_tz)
    zone = current.tzinfo
    today = current.date()

    start_day = today - relativedelta(months=WINDOW_MONTHS_BEFORE)
    end_day = today + relativedelta(months=WINDOW_MONTHS_AFTER)
    window_start = datetime.datetime.combine(start_day, datetime.time.min).replace(tzinfo=zone)
    window_end = datetime.datetime.combine(end_day, datetime.time.max).replace(tzinfo=zone)
    return window_start, window_end


def intersects(
    start: datetime.datetime,
    end: datetime.datetime,
    range_start: datetime.datetime,
    range_end: datetime.datetime,
) -> bool:
    """Closed-interval overlap test."""
    return start <= range_end and end >= range_start


def resolve_interval(
    definition: EventDefinition,
    resolver: TimezoneResolver,
    default_tzid: Optional[str] = None,
) -> tuple[datetime.datetime, datetime.datetime]:
    """Resolve a definition's own start and end to local instants.

    Args:
        definition: Parsed event
        resolver: Resolver carrying the local zone and the feed's custom zones
        default_tzid: Zone used when the definition's start has none
    """
    start_tzid = definition.start.tzid or default_tzid
    start = resolver.resolve(definition.start.value, start_tzid, definition.start.is_date)
    if definition.end.is_date:
        end = resolver.local_midnight(definition.end.value.date())
    else:
        end = resolver.resolve(definition.end.value, definition.end.tzid or start_tzid)
    return start, end


def occurrence_from_definition(
    definition: EventDefinition,
    start: datetime.datetime,
    end: datetime.datetime,
    occurrence_id: str,
    master_uid: Optional[str] = None,
) -> ResolvedOccurrence:
    """Build an occurrence carrying a definition's descriptive fields."""
    return ResolvedOccurrence(
        id=occurrence_id,
        title=definition.summary,
        start=start,
        end=end,
        description=definition.description,
        location=definition.location,
        is_all_day=definition.is_all_day,
        attendees=list(definition.attendees),
        is_recurring=master_uid is not None,
        recurrence_master_id=master_uid,
    )


def _normalize_until(rule: str, zone: Optional[datetime.tzinfo], local_tz: datetime.tzinfo) -> str:
    """Rewrite UNTIL so dateutil can pair it with a naive DTSTART.

    A UTC UNTIL becomes wall-clock time in the series zone; a date-only UNTIL
    covers the whole day.
    """
    parts = []
    for part in rule.split(";"):
        name, _, value = part.partition("=")
        if name.strip().upper() == "UNTIL" and value:
            value = value.strip()
            if value.upper().endswith("Z"):
                until = datetime.datetime.strptime(value[:-1], "%Y%m%dT%H%M%S").replace(
                    tzinfo=datetime.timezone.utc
                )
                value = until.astimezone(zone or local_tz).strftime("%Y%m%dT%H%M%S")
            elif len(value) == 8:
                value = f"{value}T235959"
            part = f"UNTIL={value}"
        parts.append(part)
    return ";".join(parts)


class RecurrenceExpander:
    """Expand recurring definitions into concrete occurrences."""

    def __init__(self, resolver: TimezoneResolver, config: Optional[ExpanderConfig] = None):
        self.resolver = resolver
        self.config = config or ExpanderConfig()

    def build_ruleset(self, definition: EventDefinition) -> rruleset:
        """Build the occurrence generator for a series over naive wall-clock values.

        Raises:
            RecurrenceParseError: If the RRULE cannot be parsed
        """
        dtstart = definition.start.value
        ruleset = rruleset()
        if definition.rrule:
            zone = self.resolver.zone_for(definition.start.tzid)
            try:
                rule_text = _normalize_until(definition.rrule, zone, self.resolver.local_tz)
                ruleset.rrule(rrulestr(rule_text, dtstart=dtstart))
            except (ValueError, TypeError, OverflowError) as e:
                raise RecurrenceParseError(
                    f"Invalid RRULE for {definition.uid!r}: {definition.rrule!r}: {e}"
                ) from e
        # DTSTART is always the first instance, even when the rule does not match it
        ruleset.rdate(dtstart)
        for rdate in definition.rdates:
            ruleset.rdate(rdate)
        return ruleset

    def expand(
        self,
        definition: EventDefinition,
        overrides: Optional[OverrideMap] = None,
        exclusions: Optional[Iterable[datetime.date]] = None,
        window_start: Optional[datetime.datetime] = None,
        window_end: Optional[datetime.datetime] = None,
    ) -> list[ResolvedOccurrence]:
        """Expand one series within [window_start, window_end].

        Args:
            definition: Recurring definition (RRULE and/or RDATE)
            overrides: Override and suppression map for the feed
            exclusions: Excluded calendar dates (default: the definition's EXDATEs)
            window_start: Window start (default: expansion_window())
            window_end: Window end (default: expansion_window())

        Returns:
            Occurrences in generator order

        Raises:
            RecurrenceParseError: If the RRULE cannot be parsed
        """
        overrides = overrides if overrides is not None else OverrideMap()
        excluded = set(exclusions if exclusions is not None else definition.exdates)
        if window_start is None or window_end is None:
            default_start, default_end = expansion_window(local_tz=self.resolver.local_tz)
            window_start = window_start or default_start
            window_end = window_end or default_end

        ruleset = self.build_ruleset(definition)
        tzid = definition.start.tzid
        is_date = definition.is_all_day

        master_start, master_end = resolve_interval(definition, self.resolver)
        duration = max(master_end - master_start, datetime.timedelta(0))
        day_span = max((definition.end.value.date() - definition.start.value.date()).days, 0)

        occurrences: list[ResolvedOccurrence] = []
        scanned = 0
        in_window = 0
        for candidate in ruleset:
            scanned += 1
            if scanned > self.config.max_scanned_candidates:
                logger.warning(
                    "Stopped expanding %s after %d candidates", definition.uid, scanned - 1
                )
                break

            start = self.resolver.resolve(candidate, tzid, is_date)
            if start > window_end:
                break

            if is_date:
                end = self.resolver.local_midnight(candidate.date() + datetime.timedelta(days=day_span))
            else:
                end = start + duration

            if end >= window_start:
                in_window += 1
                if in_window > self.config.max_occurrences_per_rule:
                    logger.warning(
                        "Occurrence limit %d reached for %s",
                        self.config.max_occurrences_per_rule,
                        definition.uid,
                    )
                    break

            key = override_key(definition.uid, candidate.date())
            if candidate.date() in excluded or key in overrides.suppressed:
                overrides.consumed.add(key)
                continue

            override = overrides.overrides.get(key)
            if override is not None:
                overrides.consumed.add(key)
                o_start, o_end = resolve_interval(override, self.resolver, default_tzid=tzid)
                if intersects(o_start, o_end, window_start, window_end):
                    occurrences.append(
                        occurrence_from_definition(
                            override,
                            o_start,
                            o_end,
                            f"{definition.uid}_{int(o_start.timestamp())}",
                            master_uid=definition.uid,
                        )
                    )
                continue

            if intersects(start, end, window_start, window_end):
                occurrences.append(
                    occurrence_from_definition(
                        definition,
                        start,
                        end,
                        f"{definition.uid}_{int(start.timestamp())}",
                        master_uid=definition.uid,
                    )
                )

        logger.debug(
            "Expanded %s: %d occurrences from %d candidates", definition.uid, len(occurrences), scanned
        )
        return occurrences
