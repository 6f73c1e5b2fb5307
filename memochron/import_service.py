"""Explicit import of a single-event .ics file."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from typing import Optional, Union

from .attendee_parser import AttendeeParser
from .exceptions import ImportValidationError
from .feed_parser import FeedParser
from .models import ResolvedOccurrence
from .rrule_expander import occurrence_from_definition, resolve_interval
from .timezone_utils import TimezoneResolver, now_utc

logger = logging.getLogger(__name__)

IMPORTED_SOURCE_NAME = "Imported"
IMPORTED_SOURCE_ID = "imported"
NO_EVENTS_MESSAGE = "No events found in the ICS file"
MULTIPLE_EVENTS_MESSAGE = (
    "Multiple events found. Only single event ICS files are supported for drag and drop"
)


def import_single_event(
    raw: Union[str, bytes],
    local_tz: Optional[datetime.tzinfo] = None,
    cutype_filter: Optional[Iterable[str]] = None,
    excluded_attendees: Optional[Iterable[str]] = None,
) -> ResolvedOccurrence:
    """Parse a file that must hold exactly one VEVENT.

    Recurrence is not expanded; the event's own start and end are used.

    Args:
        raw: File content
        local_tz: Output zone (default: configured local zone)
        cutype_filter: CUTYPE values to keep for attendees
        excluded_attendees: Attendee display names to leave out

    Returns:
        The event, tagged with source "Imported"

    Raises:
        ParseError: If the content is not iCalendar data
        ImportValidationError: If the file has zero or several events
    """
    parser = FeedParser(AttendeeParser(cutype_filter, excluded_attendees), drop_cancelled=False)
    document = parser.parse_document(raw)

    if document.raw_event_count == 0:
        raise ImportValidationError(NO_EVENTS_MESSAGE)
    if document.raw_event_count > 1:
        raise ImportValidationError(MULTIPLE_EVENTS_MESSAGE)
    if not document.definitions:
        # The only VEVENT had no usable DTSTART
        raise ImportValidationError(NO_EVENTS_MESSAGE)

    definition = document.definitions[0]
    resolver = TimezoneResolver(local_tz, document.custom_zones)
    start, end = resolve_interval(definition, resolver)

    occurrence_id = definition.uid
    if definition.uid_generated:
        occurrence_id = f"imported-{int(now_utc().timestamp() * 1000)}"

    occurrence = occurrence_from_definition(definition, start, max(start, end), occurrence_id)
    logger.info("Imported event %r (%s)", occurrence.title, occurrence.id)
    return occurrence.model_copy(
        update={
            "title": occurrence.title or "Untitled Event",
            "source": IMPORTED_SOURCE_NAME,
            "source_id": IMPORTED_SOURCE_ID,
        }
    )
