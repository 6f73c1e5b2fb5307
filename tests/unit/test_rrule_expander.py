"""
Unit tests for memochron.rrule_expander

Covers:
- expansion window bounds
- UNTIL normalization for zoned and date-only rules
- DST-correct instants across a transition
- EXDATE, suppression and override handling
- occurrence caps and invalid RRULE errors
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import pytest

from memochron.exceptions import RecurrenceParseError
from memochron.models import DefinitionDateTime, EventDefinition
from memochron.rrule_expander import (
    ExpanderConfig,
    OverrideMap,
    RecurrenceExpander,
    _normalize_until,
    expansion_window,
    intersects,
    override_key,
    resolve_interval,
)
from memochron.timezone_utils import TimezoneResolver

pytestmark = [pytest.mark.unit, pytest.mark.fast]

UTC = ZoneInfo("UTC")
NEW_YORK = ZoneInfo("America/New_York")
NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_definition(
    start: datetime,
    end: datetime,
    rrule: Optional[str] = None,
    tzid: Optional[str] = "UTC",
    uid: str = "series-1",
    is_date: bool = False,
    **kwargs,
) -> EventDefinition:
    return EventDefinition(
        uid=uid,
        summary=kwargs.pop("summary", "Series"),
        start=DefinitionDateTime(value=start, tzid=None if is_date else tzid, is_date=is_date),
        end=DefinitionDateTime(value=end, tzid=None if is_date else tzid, is_date=is_date),
        rrule=rrule,
        **kwargs,
    )


@pytest.fixture
def window():
    return expansion_window(NOW, UTC)


@pytest.fixture
def expander(utc_resolver):
    return RecurrenceExpander(utc_resolver)


def test_expansion_window_when_mid_month_then_one_month_back_two_forward() -> None:
    start, end = expansion_window(NOW, UTC)

    assert start == datetime(2023, 12, 15, 0, 0, tzinfo=UTC)
    assert end.date() == date(2024, 3, 15)
    assert (end.hour, end.minute, end.second) == (23, 59, 59)


def test_expansion_window_when_month_end_then_clamped_to_shorter_month() -> None:
    start, end = expansion_window(datetime(2024, 3, 31, 9, 0, tzinfo=UTC), UTC)

    assert start.date() == date(2024, 2, 29)
    assert end.date() == date(2024, 5, 31)


def test_intersects_when_touching_then_closed_interval() -> None:
    a = datetime(2024, 1, 15, 10, tzinfo=UTC)
    b = datetime(2024, 1, 15, 11, tzinfo=UTC)
    c = datetime(2024, 1, 15, 12, tzinfo=UTC)

    assert intersects(a, b, b, c) is True
    assert intersects(a, a, a, a) is True
    assert intersects(a, b, c, c) is False


def test_override_key_combines_uid_and_date() -> None:
    assert override_key("abc", date(2024, 1, 29)) == "abc::2024-01-29"


class TestNormalizeUntil:
    def test_normalize_until_when_utc_then_converted_to_series_wall_clock(self) -> None:
        rule = _normalize_until("FREQ=DAILY;UNTIL=20240105T140000Z", NEW_YORK, UTC)
        assert rule == "FREQ=DAILY;UNTIL=20240105T090000"

    def test_normalize_until_when_date_only_then_covers_whole_day(self) -> None:
        rule = _normalize_until("FREQ=WEEKLY;UNTIL=20240131;BYDAY=MO", None, UTC)
        assert rule == "FREQ=WEEKLY;UNTIL=20240131T235959;BYDAY=MO"

    def test_normalize_until_when_absent_then_unchanged(self) -> None:
        assert _normalize_until("FREQ=DAILY;COUNT=3", NEW_YORK, UTC) == "FREQ=DAILY;COUNT=3"


class TestRecurrenceExpander:
    def test_expand_when_weekly_then_every_monday_in_window(self, expander, window) -> None:
        definition = make_definition(
            datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11), "FREQ=WEEKLY;BYDAY=MO"
        )

        occurrences = expander.expand(definition, window_start=window[0], window_end=window[1])

        assert len(occurrences) == 11
        assert occurrences[0].start == datetime(2024, 1, 1, 10, tzinfo=UTC)
        assert occurrences[-1].start == datetime(2024, 3, 11, 10, tzinfo=UTC)
        assert all(o.start.weekday() == 0 for o in occurrences)
        assert all(o.end - o.start == timedelta(hours=1) for o in occurrences)
        assert all(o.recurrence_master_id == "series-1" and o.is_recurring for o in occurrences)

    def test_expand_when_instances_then_ids_use_start_timestamp(self, expander, window) -> None:
        definition = make_definition(
            datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11), "FREQ=DAILY;COUNT=2"
        )

        occurrences = expander.expand(definition, window_start=window[0], window_end=window[1])

        first_ts = int(datetime(2024, 1, 1, 10, tzinfo=timezone.utc).timestamp())
        assert [o.id for o in occurrences] == [
            f"series-1_{first_ts}",
            f"series-1_{first_ts + 86400}",
        ]

    def test_expand_when_utc_until_then_last_day_included(self, expander, window) -> None:
        definition = make_definition(
            datetime(2024, 1, 1, 9),
            datetime(2024, 1, 1, 10),
            "FREQ=DAILY;UNTIL=20240105T140000Z",
            tzid="America/New_York",
        )

        occurrences = expander.expand(definition, window_start=window[0], window_end=window[1])

        assert [o.start.day for o in occurrences] == [1, 2, 3, 4, 5]
        assert all(o.start.hour == 14 for o in occurrences)

    def test_expand_when_crossing_dst_then_local_wall_clock_preserved(self, utc_resolver) -> None:
        expander = RecurrenceExpander(utc_resolver)
        definition = make_definition(
            datetime(2024, 3, 1, 9),
            datetime(2024, 3, 1, 10),
            "FREQ=WEEKLY;COUNT=3",
            tzid="America/New_York",
        )
        start, end = expansion_window(datetime(2024, 3, 1, 12, tzinfo=UTC), UTC)

        occurrences = expander.expand(definition, window_start=start, window_end=end)

        assert [o.start.hour for o in occurrences] == [14, 14, 13]
        assert all(o.start.astimezone(NEW_YORK).hour == 9 for o in occurrences)

    def test_expand_when_exdate_then_instance_skipped(self, expander, window) -> None:
        definition = make_definition(
            datetime(2024, 1, 1, 10),
            datetime(2024, 1, 1, 11),
            "FREQ=DAILY;COUNT=5",
            exdates=[date(2024, 1, 3)],
        )

        occurrences = expander.expand(definition, window_start=window[0], window_end=window[1])

        assert [o.start.day for o in occurrences] == [1, 2, 4, 5]

    def test_expand_when_override_then_replaces_instance(self, expander, window) -> None:
        master = make_definition(
            datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11), "FREQ=DAILY;COUNT=3"
        )
        moved = make_definition(
            datetime(2024, 1, 2, 15),
            datetime(2024, 1, 2, 16),
            summary="Moved",
            location="Room B",
            recurrence_id=DefinitionDateTime(value=datetime(2024, 1, 2, 10), tzid="UTC"),
        )
        overrides = OverrideMap(overrides={override_key("series-1", date(2024, 1, 2)): moved})

        occurrences = expander.expand(
            master, overrides, window_start=window[0], window_end=window[1]
        )

        assert len(occurrences) == 3
        second = occurrences[1]
        assert second.title == "Moved"
        assert second.location == "Room B"
        assert second.start == datetime(2024, 1, 2, 15, tzinfo=UTC)
        assert second.id == f"series-1_{int(second.start.timestamp())}"
        assert second.recurrence_master_id == "series-1"
        assert override_key("series-1", date(2024, 1, 2)) in overrides.consumed

    def test_expand_when_suppressed_then_instance_removed(self, expander, window) -> None:
        master = make_definition(
            datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11), "FREQ=DAILY;COUNT=3"
        )
        overrides = OverrideMap(suppressed={override_key("series-1", date(2024, 1, 3))})

        occurrences = expander.expand(
            master, overrides, window_start=window[0], window_end=window[1]
        )

        assert [o.start.day for o in occurrences] == [1, 2]

    def test_expand_when_exdate_and_override_share_date_then_excluded(
        self, expander, window
    ) -> None:
        master = make_definition(
            datetime(2024, 1, 1, 10),
            datetime(2024, 1, 1, 11),
            "FREQ=DAILY;COUNT=3",
            exdates=[date(2024, 1, 2)],
        )
        moved = make_definition(
            datetime(2024, 1, 2, 15),
            datetime(2024, 1, 2, 16),
            summary="Moved",
            recurrence_id=DefinitionDateTime(value=datetime(2024, 1, 2, 10), tzid="UTC"),
        )
        overrides = OverrideMap(overrides={override_key("series-1", date(2024, 1, 2)): moved})

        occurrences = expander.expand(
            master, overrides, window_start=window[0], window_end=window[1]
        )

        assert [o.start.day for o in occurrences] == [1, 3]
        assert all(o.title != "Moved" for o in occurrences)

    def test_expand_when_instance_straddles_window_start_then_included(self, expander) -> None:
        definition = make_definition(
            datetime(2023, 12, 10, 23), datetime(2023, 12, 11, 2), "FREQ=DAILY;COUNT=10"
        )
        start, end = expansion_window(NOW, UTC)

        occurrences = expander.expand(definition, window_start=start, window_end=end)

        first = occurrences[0]
        assert first.start == datetime(2023, 12, 14, 23, tzinfo=UTC)
        assert first.start < start < first.end
        assert len(occurrences) == 6

    def test_expand_when_all_day_then_local_midnights(self, window) -> None:
        expander = RecurrenceExpander(TimezoneResolver(ZoneInfo("Europe/Paris")))
        definition = make_definition(
            datetime(2024, 1, 1), datetime(2024, 1, 3), "FREQ=WEEKLY;COUNT=2", is_date=True
        )

        occurrences = expander.expand(definition, window_start=window[0], window_end=window[1])

        assert len(occurrences) == 2
        first = occurrences[0]
        assert first.is_all_day is True
        assert first.start == datetime(2024, 1, 1, tzinfo=ZoneInfo("Europe/Paris"))
        assert first.end == datetime(2024, 1, 3, tzinfo=ZoneInfo("Europe/Paris"))

    def test_expand_when_rdates_then_extra_instances_added(self, expander, window) -> None:
        definition = make_definition(
            datetime(2024, 1, 10, 9),
            datetime(2024, 1, 10, 10),
            rdates=[datetime(2024, 1, 12, 9), datetime(2024, 1, 20, 14)],
        )

        occurrences = expander.expand(definition, window_start=window[0], window_end=window[1])

        assert [(o.start.day, o.start.hour) for o in occurrences] == [(10, 9), (12, 9), (20, 14)]

    def test_expand_when_series_starts_before_window_then_old_instances_dropped(
        self, expander
    ) -> None:
        definition = make_definition(
            datetime(2023, 1, 2, 10), datetime(2023, 1, 2, 11), "FREQ=WEEKLY;BYDAY=MO"
        )
        start, end = expansion_window(NOW, UTC)

        occurrences = expander.expand(definition, window_start=start, window_end=end)

        assert occurrences[0].start == datetime(2023, 12, 18, 10, tzinfo=UTC)
        assert all(start <= o.start <= end for o in occurrences)

    def test_expand_when_cap_reached_then_stops_and_warns(
        self, utc_resolver, window, caplog
    ) -> None:
        expander = RecurrenceExpander(utc_resolver, ExpanderConfig(max_occurrences_per_rule=5))
        definition = make_definition(
            datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11), "FREQ=DAILY"
        )

        with caplog.at_level(logging.WARNING, logger="memochron.rrule_expander"):
            occurrences = expander.expand(
                definition, window_start=window[0], window_end=window[1]
            )

        assert len(occurrences) == 5
        assert "Occurrence limit 5 reached" in caplog.text

    def test_build_ruleset_when_rrule_invalid_then_recurrence_parse_error(self, expander) -> None:
        definition = make_definition(
            datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11), "FREQ=SOMETIMES"
        )

        with pytest.raises(RecurrenceParseError):
            expander.build_ruleset(definition)

    def test_build_ruleset_when_until_malformed_then_recurrence_parse_error(self, expander) -> None:
        definition = make_definition(
            datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11), "FREQ=DAILY;UNTIL=2024-01-05Z"
        )

        with pytest.raises(RecurrenceParseError):
            expander.build_ruleset(definition)


def test_resolve_interval_when_default_tzid_then_used_for_floating_override(utc_resolver) -> None:
    override = make_definition(datetime(2024, 1, 2, 9), datetime(2024, 1, 2, 10), tzid=None)

    start, end = resolve_interval(override, utc_resolver, default_tzid="America/New_York")

    assert start == datetime(2024, 1, 2, 14, tzinfo=UTC)
    assert end == datetime(2024, 1, 2, 15, tzinfo=UTC)
