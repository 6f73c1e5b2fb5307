"""
Unit tests for memochron.import_service

Covers:
- single-event import with source tagging
- rejection of files with zero or several events
- id and title fallbacks
- attendee filtering and timezone handling on import
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from memochron.exceptions import ImportValidationError, ParseError
from memochron.import_service import (
    IMPORTED_SOURCE_ID,
    IMPORTED_SOURCE_NAME,
    MULTIPLE_EVENTS_MESSAGE,
    NO_EVENTS_MESSAGE,
    import_single_event,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]

UTC = ZoneInfo("UTC")


def test_import_single_event_when_one_event_then_tagged_as_imported(sample_ics_simple) -> None:
    event = import_single_event(sample_ics_simple, local_tz=UTC)

    assert event.id == "single-001@memochron.test"
    assert event.title == "Team Meeting"
    assert event.source == IMPORTED_SOURCE_NAME
    assert event.source_id == IMPORTED_SOURCE_ID
    assert event.start == datetime(2024, 1, 15, 10, tzinfo=UTC)
    assert event.end == datetime(2024, 1, 15, 11, tzinfo=UTC)


def test_import_single_event_when_no_events_then_validation_error() -> None:
    empty = "BEGIN:VCALENDAR\nVERSION:2.0\nPRODID:-//MemoChron Test//EN\nEND:VCALENDAR\n"

    with pytest.raises(ImportValidationError, match=NO_EVENTS_MESSAGE):
        import_single_event(empty, local_tz=UTC)


def test_import_single_event_when_several_events_then_validation_error(calendar_text) -> None:
    feed = calendar_text("UID:a\nDTSTART:20240115T100000Z", "UID:b\nDTSTART:20240116T100000Z")

    with pytest.raises(ImportValidationError) as excinfo:
        import_single_event(feed, local_tz=UTC)

    assert str(excinfo.value) == MULTIPLE_EVENTS_MESSAGE


def test_import_single_event_when_not_calendar_then_parse_error() -> None:
    with pytest.raises(ParseError):
        import_single_event("just some notes", local_tz=UTC)


def test_import_single_event_when_no_uid_or_summary_then_fallbacks(calendar_text) -> None:
    feed = calendar_text("DTSTART:20240115T100000Z\nDTEND:20240115T103000Z")

    event = import_single_event(feed, local_tz=UTC)

    assert event.id.startswith("imported-")
    assert event.id[len("imported-"):].isdigit()
    assert event.title == "Untitled Event"


def test_import_single_event_when_uid_looks_generated_then_kept(calendar_text) -> None:
    feed = calendar_text("UID:generated-by-exchange-42\nDTSTART:20240115T100000Z")

    event = import_single_event(feed, local_tz=UTC)

    assert event.id == "generated-by-exchange-42"


def test_import_single_event_when_recurring_then_not_expanded(calendar_text) -> None:
    feed = calendar_text(
        """
        UID:series-import
        DTSTART;TZID=Europe/Berlin:20240115T090000
        DTEND;TZID=Europe/Berlin:20240115T100000
        RRULE:FREQ=DAILY;COUNT=10
        SUMMARY:Daily
        """
    )

    event = import_single_event(feed, local_tz=UTC)

    assert event.id == "series-import"
    assert event.start == datetime(2024, 1, 15, 8, tzinfo=UTC)
    assert event.is_recurring is False


def test_import_single_event_when_cancelled_then_still_imported(calendar_text) -> None:
    feed = calendar_text("UID:gone\nDTSTART:20240115T100000Z\nSTATUS:CANCELLED\nSUMMARY:Off")

    event = import_single_event(feed, local_tz=UTC)

    assert event.id == "gone"


def test_import_single_event_when_all_day_then_local_midnights(sample_ics_all_day) -> None:
    tokyo = ZoneInfo("Asia/Tokyo")

    event = import_single_event(sample_ics_all_day, local_tz=tokyo)

    assert event.is_all_day is True
    assert event.start == datetime(2024, 1, 16, tzinfo=tokyo)
    assert event.end - event.start == timedelta(days=1)


def test_import_single_event_when_filters_given_then_attendees_filtered(calendar_text) -> None:
    feed = calendar_text(
        """
        UID:people
        DTSTART:20240115T100000Z
        ATTENDEE;CN=Alice:mailto:alice@example.com
        ATTENDEE;CN=Me Myself:mailto:me@example.com
        ATTENDEE;CN=Board Room;CUTYPE=ROOM:mailto:board@example.com
        """
    )

    event = import_single_event(feed, local_tz=UTC, excluded_attendees=["me myself"])

    assert [a.name for a in event.attendees] == ["Alice"]
