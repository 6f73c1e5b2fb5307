"""Unit tests for memochron.attendee_parser."""

import pytest
from icalendar import Event, vCalAddress

from memochron.attendee_parser import AttendeeParser
from memochron.models import AttendeeRole

pytestmark = [pytest.mark.unit, pytest.mark.fast]


def make_attendee(address: str, **params: str) -> vCalAddress:
    attendee = vCalAddress(address)
    for key, value in params.items():
        attendee.params[key.upper()] = value
    return attendee


class TestParseAttendee:
    def test_parse_attendee_when_cn_present_then_uses_cn_and_strips_mailto(self) -> None:
        parser = AttendeeParser()
        prop = make_attendee(
            "mailto:jane@example.com", cn="Jane Doe", role="OPT-PARTICIPANT", partstat="ACCEPTED"
        )

        attendee = parser.parse_attendee(prop)

        assert attendee is not None
        assert attendee.name == "Jane Doe"
        assert attendee.email == "jane@example.com"
        assert attendee.role == AttendeeRole.OPTIONAL.value
        assert attendee.status == "ACCEPTED"

    def test_parse_attendee_when_no_cn_then_name_is_address(self) -> None:
        attendee = AttendeeParser().parse_attendee(make_attendee("MAILTO:bob@example.com"))

        assert attendee is not None
        assert attendee.name == "bob@example.com"
        assert attendee.status == "NEEDS-ACTION"
        assert attendee.role == AttendeeRole.REQUIRED.value

    def test_parse_attendee_when_room_then_filtered(self) -> None:
        prop = make_attendee("mailto:room1@example.com", cn="Room 1", cutype="ROOM")
        assert AttendeeParser().parse_attendee(prop) is None

    def test_parse_attendee_when_cutype_lowercase_then_compared_case_insensitively(self) -> None:
        prop = make_attendee("mailto:amy@example.com", cn="Amy", cutype="individual")

        attendee = AttendeeParser().parse_attendee(prop)

        assert attendee is not None
        assert attendee.cutype == "INDIVIDUAL"

    def test_parse_attendee_when_custom_cutype_filter_then_rooms_kept(self) -> None:
        parser = AttendeeParser(cutype_filter=["INDIVIDUAL", "ROOM", ""])
        prop = make_attendee("mailto:room1@example.com", cn="Room 1", cutype="ROOM")

        assert parser.parse_attendee(prop) is not None

    def test_parse_attendee_when_name_excluded_then_skipped(self) -> None:
        parser = AttendeeParser(excluded_names=["Calendar Bot"])
        prop = make_attendee("mailto:bot@example.com", cn="calendar bot")

        assert parser.parse_attendee(prop) is None


def test_parse_attendees_when_component_has_several_then_keeps_feed_order() -> None:
    event = Event()
    event.add("attendee", make_attendee("mailto:a@example.com", cn="Alice"))
    event.add("attendee", make_attendee("mailto:conf@example.com", cn="Big Room", cutype="ROOM"))
    event.add("attendee", make_attendee("mailto:c@example.com", cn="Carol"))

    attendees = AttendeeParser().parse_attendees(event)

    assert [a.name for a in attendees] == ["Alice", "Carol"]


def test_parse_attendees_when_single_or_none_then_handles_both() -> None:
    parser = AttendeeParser()
    single = Event()
    single.add("attendee", make_attendee("mailto:a@example.com", cn="Alice"))

    assert [a.name for a in parser.parse_attendees(single)] == ["Alice"]
    assert parser.parse_attendees(Event()) == []
