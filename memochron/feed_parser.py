"""iCalendar feed parsing into EventDefinition records."""

from __future__ import annotations

import datetime
import hashlib
import logging
from collections.abc import Mapping
from typing import Any, Optional, Union

from icalendar import Calendar

from .attendee_parser import AttendeeParser
from .exceptions import ParseError, TimezoneResolutionError
from .models import DefinitionDateTime, DefinitionStatus, EventDefinition, ParsedCalendar
from .timezone_utils import lookup_zone

logger = logging.getLogger(__name__)


def validate_ics_content(ics_content: Union[str, bytes, None]) -> bool:
    """Cheap structural check for the VCALENDAR envelope."""
    if not ics_content:
        return False
    text = ics_content.decode("utf-8", "replace") if isinstance(ics_content, bytes) else ics_content
    return "BEGIN:VCALENDAR" in text and "END:VCALENDAR" in text


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return list(value) if isinstance(value, list) else [value]


def _expand_date_values(props: list[Any]) -> list[Any]:
    """Flatten EXDATE/RDATE properties (single, comma list or repeated lines) to raw values."""
    values: list[Any] = []
    for prop in props:
        try:
            items = getattr(prop, "dts", [prop])
        except ValueError:
            # icalendar keeps unparseable values as broken text properties
            logger.debug("Skipping unparseable date list %r", prop)
            continue
        for item in items:
            try:
                value = getattr(item, "dt", item)
            except ValueError:
                continue
            # RDATE;VALUE=PERIOD yields (start, end-or-duration)
            if isinstance(value, tuple):
                value = value[0]
            values.append(value)
    return values


def to_definition_datetime(prop: Any) -> DefinitionDateTime:
    """Convert an icalendar date/date-time property to a DefinitionDateTime.

    The wall-clock components are kept as written. A UTC value ("...Z") with
    no TZID parameter is recorded with tzid "UTC"; a value with neither is
    floating.
    """
    value = prop.dt
    params = getattr(prop, "params", {}) or {}
    tzid = params.get("TZID")

    if isinstance(value, datetime.datetime):
        if tzid is None and value.tzinfo is not None:
            tzid = "UTC" if value.utcoffset() == datetime.timedelta(0) else str(value.tzinfo)
        return DefinitionDateTime(value=value.replace(tzinfo=None), tzid=tzid, is_date=False)

    if isinstance(value, datetime.date):
        midnight = datetime.datetime.combine(value, datetime.time())
        return DefinitionDateTime(value=midnight, tzid=None, is_date=True)

    raise ValueError(f"Unsupported date value: {value!r}")


class FeedParser:
    """Parse raw iCalendar text into event definitions.

    Only VEVENT components are read. Cancelled events that are not overrides
    of a series instance are dropped here and never reach expansion.
    """

    def __init__(
        self, attendee_parser: Optional[AttendeeParser] = None, drop_cancelled: bool = True
    ):
        self.attendee_parser = attendee_parser or AttendeeParser()
        self.drop_cancelled = drop_cancelled

    def parse(self, raw: Union[str, bytes]) -> list[EventDefinition]:
        """Parse a feed and return its event definitions.

        Raises:
            ParseError: If the text is not a calendar document
        """
        return self.parse_document(raw).definitions

    def parse_document(self, raw: Union[str, bytes]) -> ParsedCalendar:
        """Parse a feed and return definitions plus calendar-level metadata.

        Raises:
            ParseError: If the text is not a calendar document
        """
        calendars = self._load_calendars(raw)

        custom_zones: dict[str, datetime.tzinfo] = {}
        for calendar in calendars:
            custom_zones.update(self._build_custom_zones(calendar))

        first = calendars[0]
        result = ParsedCalendar(
            calendar_name=self._get_calendar_property(first, "X-WR-CALNAME"),
            calendar_timezone=self._get_calendar_property(first, "X-WR-TIMEZONE"),
            custom_zones=custom_zones,
        )

        for calendar in calendars:
            for component in calendar.walk("VEVENT"):
                result.raw_event_count += 1
                definition = self.parse_event(component, custom_zones)
                if definition is None:
                    continue
                if self.drop_cancelled and definition.is_cancelled and not definition.is_override:
                    logger.debug("Dropping cancelled event %s", definition.uid)
                    continue
                result.definitions.append(definition)

        logger.debug(
            "Parsed %d of %d VEVENT blocks (%d custom zones)",
            len(result.definitions),
            result.raw_event_count,
            len(custom_zones),
        )
        return result

    def _load_calendars(self, raw: Union[str, bytes]) -> list[Calendar]:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", "replace")
        if not raw or "BEGIN:VCALENDAR" not in raw:
            raise ParseError("Missing BEGIN:VCALENDAR marker")

        try:
            calendars = Calendar.from_ical(raw, multiple=True)
        except Exception as e:
            raise ParseError(f"Invalid iCalendar data: {e}") from e

        calendars = [c for c in calendars if getattr(c, "name", None) == "VCALENDAR"]
        if not calendars:
            raise ParseError("No VCALENDAR component found")
        return calendars

    def _build_custom_zones(self, calendar: Calendar) -> dict[str, datetime.tzinfo]:
        """Build tzinfo objects from embedded VTIMEZONE definitions."""
        zones: dict[str, datetime.tzinfo] = {}
        for vtimezone in calendar.walk("VTIMEZONE"):
            try:
                zones[vtimezone.tz_name] = vtimezone.to_tz()
            except Exception as e:
                logger.warning("Ignoring unusable VTIMEZONE %r: %s", vtimezone.get("TZID"), e)
        return zones

    def _get_calendar_property(self, calendar: Calendar, prop_name: str) -> Optional[str]:
        prop = calendar.get(prop_name)
        return str(prop) if prop else None

    def parse_event(
        self,
        component: Any,
        custom_zones: Optional[Mapping[str, datetime.tzinfo]] = None,
    ) -> Optional[EventDefinition]:
        """Parse a single VEVENT component.

        Args:
            component: icalendar VEVENT component
            custom_zones: Zones built from the feed's VTIMEZONE blocks

        Returns:
            EventDefinition, or None when the component has no usable DTSTART
        """
        dtstart = component.get("DTSTART")
        if dtstart is None:
            logger.warning("Skipping VEVENT without DTSTART (UID=%s)", component.get("UID"))
            return None

        try:
            start = to_definition_datetime(dtstart)
            end = self._parse_end(component, start)
            recurrence_id = None
            if component.get("RECURRENCE-ID") is not None:
                recurrence_id = to_definition_datetime(component.get("RECURRENCE-ID"))
        except ValueError as e:
            logger.warning("Skipping VEVENT with unreadable times (UID=%s): %s", component.get("UID"), e)
            return None

        status = DefinitionStatus.NORMAL
        if str(component.get("STATUS", "")).strip().upper() == "CANCELLED":
            status = DefinitionStatus.CANCELLED

        rrule = None
        rrule_props = _as_list(component.get("RRULE"))
        if rrule_props:
            if len(rrule_props) > 1:
                logger.debug("Multiple RRULE lines on %s, using the first", component.get("UID"))
            rrule = rrule_props[0].to_ical().decode("utf-8")

        zone = self._definition_zone(start.tzid, custom_zones)

        organizer = component.get("ORGANIZER")
        return EventDefinition(
            uid=self._get_uid(component),
            uid_generated=not self._get_text(component, "UID"),
            summary=self._get_text(component, "SUMMARY") or "",
            description=self._get_text(component, "DESCRIPTION"),
            location=self._get_text(component, "LOCATION"),
            url=self._get_text(component, "URL"),
            organizer=str(organizer).replace("mailto:", "") if organizer else None,
            start=start,
            end=end,
            status=status,
            rrule=rrule,
            recurrence_id=recurrence_id,
            exdates=self._parse_exdates(component, zone),
            rdates=self._parse_rdates(component, zone),
            attendees=self.attendee_parser.parse_attendees(component),
        )

    def _parse_end(self, component: Any, start: DefinitionDateTime) -> DefinitionDateTime:
        """DTEND, else DTSTART + DURATION, else the RFC 5545 default length."""
        dtend = component.get("DTEND")
        if dtend is not None:
            end = to_definition_datetime(dtend)
            if end.tzid is None and not end.is_date:
                end.tzid = start.tzid
            return end

        duration = component.get("DURATION")
        if duration is not None:
            return DefinitionDateTime(
                value=start.value + duration.dt, tzid=start.tzid, is_date=start.is_date
            )

        if start.is_date:
            return DefinitionDateTime(
                value=start.value + datetime.timedelta(days=1), tzid=None, is_date=True
            )
        return start.model_copy()

    def _definition_zone(
        self, tzid: Optional[str], custom_zones: Optional[Mapping[str, datetime.tzinfo]]
    ) -> Optional[datetime.tzinfo]:
        try:
            return lookup_zone(tzid, custom_zones)
        except TimezoneResolutionError:
            return None

    def _parse_exdates(self, component: Any, zone: Optional[datetime.tzinfo]) -> list[datetime.date]:
        """Excluded calendar dates, read in the series' own zone."""
        dates: list[datetime.date] = []
        for value in _expand_date_values(_as_list(component.get("EXDATE"))):
            if isinstance(value, datetime.datetime):
                if value.tzinfo is not None and zone is not None:
                    value = value.astimezone(zone)
                dates.append(value.date())
            elif isinstance(value, datetime.date):
                dates.append(value)
        return dates

    def _parse_rdates(self, component: Any, zone: Optional[datetime.tzinfo]) -> list[datetime.datetime]:
        """Extra series start values as naive wall-clock times in the series' zone."""
        starts: list[datetime.datetime] = []
        for value in _expand_date_values(_as_list(component.get("RDATE"))):
            if isinstance(value, datetime.datetime):
                if value.tzinfo is not None and zone is not None:
                    value = value.astimezone(zone)
                starts.append(value.replace(tzinfo=None))
            elif isinstance(value, datetime.date):
                starts.append(datetime.datetime.combine(value, datetime.time()))
        return starts

    def _get_text(self, component: Any, name: str) -> Optional[str]:
        value = component.get(name)
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def _get_uid(self, component: Any) -> str:
        uid = self._get_text(component, "UID")
        if uid:
            return uid
        digest = hashlib.sha1(component.to_ical()).hexdigest()[:16]
        logger.debug("VEVENT without UID, using content hash %s", digest)
        return f"generated-{digest}"
