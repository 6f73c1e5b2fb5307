"""Exception hierarchy for memochron.

Every error raised by the ingestion pipeline derives from MemochronError so
callers can draw a single boundary around a feed. Only ImportValidationError
is meant to reach end users; the rest are recovered per source.
"""

from typing import Any, Optional


class MemochronError(Exception):
    """Base exception for all memochron errors."""


class ParseError(MemochronError):
    """Raw text is not syntactically valid iCalendar data.

    Raised when:
    - The BEGIN:VCALENDAR envelope is missing
    - icalendar rejects the content lines

    Recovered by the normalizer as "zero events for this source".
    """


class FetchError(MemochronError):
    """A feed could not be retrieved.

    Raised when:
    - The remote server answers with a non-200 status
    - The request fails at the network level or times out
    - A local file is missing or unreadable
    """

    def __init__(
        self,
        message: str,
        source: str = "",
        status_code: Optional[int] = None,
        diagnostics: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.source = source
        self.status_code = status_code
        self.diagnostics = diagnostics or {}


class TimezoneResolutionError(MemochronError):
    """A timezone identifier could not be resolved to a zone.

    Never propagated out of the resolver; the components are read as local time.
    """

    def __init__(self, tzid: str, reason: str = ""):
        super().__init__(f"Cannot resolve timezone {tzid!r}" + (f": {reason}" if reason else ""))
        self.tzid = tzid


class RecurrenceParseError(MemochronError):
    """An RRULE value could not be parsed into a rule generator."""


class CacheCorruptionError(MemochronError):
    """The persisted snapshot is missing or structurally invalid."""


class ImportValidationError(MemochronError):
    """A single-event import file does not contain exactly one event."""
