"""Data models for calendar ingestion."""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class DefinitionStatus(str, Enum):
    """Event status values the pipeline distinguishes."""

    NORMAL = "NORMAL"
    CANCELLED = "CANCELLED"


class AttendeeRole(str, Enum):
    """Participation role of an attendee."""

    REQUIRED = "REQ-PARTICIPANT"
    OPTIONAL = "OPT-PARTICIPANT"
    CHAIR = "CHAIR"
    NON_PARTICIPANT = "NON-PARTICIPANT"


class Attendee(BaseModel):
    """Calendar event attendee."""

    name: str = Field(..., description="Display name (CN) or mailbox local part")
    email: Optional[str] = Field(default=None, description="Address without the mailto: scheme")
    role: AttendeeRole = Field(default=AttendeeRole.REQUIRED, description="ROLE parameter")
    status: str = Field(default="NEEDS-ACTION", description="PARTSTAT parameter")
    cutype: str = Field(default="", description="CUTYPE parameter, empty when absent")

    model_config = ConfigDict(use_enum_values=True)


class CalendarSource(BaseModel):
    """Configured calendar feed.

    Only url, name and enabled drive ingestion; color is copied onto the
    occurrences the feed produces.
    """

    url: str = Field(..., description="Remote URL, file:// URI, absolute or vault-relative path")
    name: str = Field(..., description="Display name for this calendar source")
    enabled: bool = Field(default=True, description="Whether the source participates in fetches")
    color: Optional[str] = Field(default=None, description="Display color (CSS value)")
    tags: list[str] = Field(default_factory=list, description="Free-form tags")

    @property
    def key(self) -> str:
        """Stable identifier used to tag occurrences and snapshots."""
        return self.url


class DefinitionDateTime(BaseModel):
    """Wall-clock date-time as written in the feed, with its zone identifier."""

    value: datetime = Field(..., description="Naive wall-clock value")
    tzid: Optional[str] = Field(default=None, description="TZID parameter, None for floating")
    is_date: bool = Field(default=False, description="True for VALUE=DATE values")

    @property
    def day(self) -> date:
        return self.value.date()


class EventDefinition(BaseModel):
    """A VEVENT as parsed from a feed, before recurrence expansion."""

    uid: str = Field(..., description="UID, unique within the feed")
    uid_generated: bool = Field(
        default=False, description="True when the VEVENT had no UID and one was derived"
    )
    summary: str = Field(default="", description="SUMMARY")
    description: Optional[str] = Field(default=None, description="DESCRIPTION")
    location: Optional[str] = Field(default=None, description="LOCATION")
    url: Optional[str] = Field(default=None, description="URL")
    organizer: Optional[str] = Field(default=None, description="ORGANIZER address")

    start: DefinitionDateTime = Field(..., description="DTSTART")
    end: DefinitionDateTime = Field(..., description="DTEND, or DTSTART plus DURATION")
    status: DefinitionStatus = Field(default=DefinitionStatus.NORMAL, description="STATUS")

    rrule: Optional[str] = Field(default=None, description="RRULE value without the name")
    recurrence_id: Optional[DefinitionDateTime] = Field(
        default=None, description="RECURRENCE-ID, set on overrides of a series instance"
    )
    exdates: list[date] = Field(default_factory=list, description="Excluded calendar dates")
    rdates: list[datetime] = Field(
        default_factory=list, description="Extra naive start values in the series zone"
    )
    attendees: list[Attendee] = Field(default_factory=list, description="Filtered attendees")

    model_config = ConfigDict(use_enum_values=True)

    @property
    def is_all_day(self) -> bool:
        return self.start.is_date

    @property
    def is_cancelled(self) -> bool:
        return self.status == DefinitionStatus.CANCELLED

    @property
    def is_override(self) -> bool:
        return self.recurrence_id is not None

    @property
    def is_recurring(self) -> bool:
        return bool(self.rrule) or bool(self.rdates)

    @property
    def duration(self) -> timedelta:
        """Wall-clock length of the event, never negative."""
        span = self.end.value - self.start.value
        return span if span > timedelta(0) else timedelta(0)


class ResolvedOccurrence(BaseModel):
    """One concrete, time-bounded event instance ready for date queries."""

    id: str = Field(..., description="uid for single events, uid_timestamp for series instances")
    title: str = Field(default="", description="Event title")
    start: datetime = Field(..., description="Absolute start, local timezone")
    end: datetime = Field(..., description="Absolute end, local timezone")
    description: Optional[str] = Field(default=None, description="Event description")
    location: Optional[str] = Field(default=None, description="Event location")
    source: str = Field(default="", description="Display name of the originating feed")
    source_id: str = Field(default="", description="Stable key of the originating feed")
    color: Optional[str] = Field(default=None, description="Source color")
    is_all_day: bool = Field(default=False, description="All-day event flag")
    attendees: list[Attendee] = Field(default_factory=list, description="Event attendees")

    is_recurring: bool = Field(default=False, description="Generated from a recurring series")
    recurrence_master_id: Optional[str] = Field(
        default=None, description="UID of the series this instance belongs to"
    )

    @field_serializer("start", "end")
    def serialize_datetime(self, dt: datetime) -> str:
        """Serialize datetime fields to ISO format."""
        return dt.isoformat()


class FetchResponse(BaseModel):
    """Raw text result of reading a feed, remote or local."""

    status: int = Field(..., description="HTTP status, or 200/404 for local reads")
    text: str = Field(default="", description="Response body")

    @property
    def ok(self) -> bool:
        return self.status == 200


class ParsedCalendar(BaseModel):
    """Result of parsing a whole feed document."""

    definitions: list[EventDefinition] = Field(default_factory=list)
    calendar_name: Optional[str] = Field(default=None, description="X-WR-CALNAME")
    calendar_timezone: Optional[str] = Field(default=None, description="X-WR-TIMEZONE")
    custom_zones: dict[str, Any] = Field(
        default_factory=dict, description="tzinfo objects built from embedded VTIMEZONEs"
    )
    raw_event_count: int = Field(default=0, description="VEVENT blocks seen, dropped ones included")

    model_config = ConfigDict(arbitrary_types_allowed=True)


class SnapshotSource(BaseModel):
    """Source entry recorded in a cache snapshot."""

    url: str
    name: str


class CacheSnapshot(BaseModel):
    """Persisted copy of the last successful merged event list."""

    timestamp: int = Field(..., description="Epoch milliseconds of the fetch")
    sources: list[SnapshotSource] = Field(default_factory=list)
    events: list[ResolvedOccurrence] = Field(default_factory=list)

    @property
    def source_keys(self) -> set[str]:
        return {source.url for source in self.sources}
