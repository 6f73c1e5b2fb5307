"""Shared fixtures for memochron tests."""

from collections.abc import Generator
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from memochron.models import CalendarSource
from memochron.timezone_utils import TimezoneResolver

UTC = ZoneInfo("UTC")

# Reference "now" used by expansion-window tests: Monday 2024-01-15 12:00 UTC
FIXED_NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config: Any) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "fast: Tests that complete in under a second")
    config.addinivalue_line("markers", "integration: Tests spanning several modules")


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear memochron environment overrides before and after each test.

    MEMOCHRON_TEST_TIME freezes the clock used for the expansion window and
    MEMOCHRON_TIMEZONE changes the default local zone; leaking either between
    tests makes date assertions depend on test order.
    """
    for name in ("MEMOCHRON_TEST_TIME", "MEMOCHRON_TIMEZONE", "MEMOCHRON_DEBUG"):
        monkeypatch.delenv(name, raising=False)
    yield
    for name in ("MEMOCHRON_TEST_TIME", "MEMOCHRON_TIMEZONE", "MEMOCHRON_DEBUG"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def frozen_now(monkeypatch: Any) -> datetime:
    """Freeze the memochron clock at FIXED_NOW."""
    monkeypatch.setenv("MEMOCHRON_TEST_TIME", FIXED_NOW.isoformat())
    return FIXED_NOW


@pytest.fixture
def utc_resolver() -> TimezoneResolver:
    """Resolver whose local zone is UTC, independent of the host."""
    return TimezoneResolver(UTC)


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight settings object for fetcher and cache tests.

    Fields:
      - request_timeout: HTTP read timeout in seconds
      - max_retries: retry attempts for HTTP fetches
      - retry_backoff_factor: zero so retries do not sleep
      - vault_root: root for relative feed paths
    """
    return SimpleNamespace(
        request_timeout=5,
        max_retries=2,
        retry_backoff_factor=0.0,
        vault_root=None,
    )


@pytest.fixture
def work_source() -> CalendarSource:
    return CalendarSource(url="https://example.com/work.ics", name="Work", color="#ff0000")


@pytest.fixture
def home_source() -> CalendarSource:
    return CalendarSource(url="https://example.com/home.ics", name="Home")


# ==================== ICS Test Data Fixtures ====================


@pytest.fixture
def sample_ics_simple() -> str:
    """
    Return a calendar with a single timed event.

    - "Team Meeting" on 2024-01-15 10:00-11:00 UTC in Conference Room A
    """
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//MemoChron Test//EN
X-WR-CALNAME:Work
X-WR-TIMEZONE:Europe/London
BEGIN:VEVENT
UID:single-001@memochron.test
DTSTAMP:20240101T000000Z
DTSTART:20240115T100000Z
DTEND:20240115T110000Z
SUMMARY:Team Meeting
LOCATION:Conference Room A
DESCRIPTION:Weekly team sync meeting
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def sample_ics_weekly() -> str:
    """
    Return a weekly Monday series with recurrence exceptions.

    - Master: "Standup" every Monday 10:00-11:00 UTC from 2024-01-01
    - EXDATE on 2024-01-22
    - Override on 2024-01-29 moved to 15:00 in Room B
    - Cancelled instance on 2024-02-05
    """
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//MemoChron Test//EN
BEGIN:VEVENT
UID:weekly-001@memochron.test
DTSTAMP:20240101T000000Z
DTSTART:20240101T100000Z
DTEND:20240101T110000Z
SUMMARY:Standup
LOCATION:Room A
RRULE:FREQ=WEEKLY;BYDAY=MO
EXDATE:20240122T100000Z
END:VEVENT
BEGIN:VEVENT
UID:weekly-001@memochron.test
DTSTAMP:20240101T000000Z
RECURRENCE-ID:20240129T100000Z
DTSTART:20240129T150000Z
DTEND:20240129T160000Z
SUMMARY:Standup (moved)
LOCATION:Room B
END:VEVENT
BEGIN:VEVENT
UID:weekly-001@memochron.test
DTSTAMP:20240101T000000Z
RECURRENCE-ID:20240205T100000Z
DTSTART:20240205T100000Z
DTEND:20240205T110000Z
SUMMARY:Standup
STATUS:CANCELLED
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def sample_ics_all_day() -> str:
    """Return a calendar with a one-day all-day event on 2024-01-16."""
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//MemoChron Test//EN
BEGIN:VEVENT
UID:allday-001@memochron.test
DTSTAMP:20240101T000000Z
DTSTART;VALUE=DATE:20240116
DTEND;VALUE=DATE:20240117
SUMMARY:Company Holiday
END:VEVENT
END:VCALENDAR
"""


def make_calendar(*vevents: str) -> str:
    """Wrap VEVENT bodies (without BEGIN/END lines) in a VCALENDAR envelope.

    Leading indentation is stripped from every line, so bodies can be written
    as indented triple-quoted strings. Folded lines are not supported.
    """
    blocks = "".join(
        "BEGIN:VEVENT\n"
        + "".join(f"{line.strip()}\n" for line in body.strip().splitlines() if line.strip())
        + "END:VEVENT\n"
        for body in vevents
    )
    return f"BEGIN:VCALENDAR\nVERSION:2.0\nPRODID:-//MemoChron Test//EN\n{blocks}END:VCALENDAR\n"


@pytest.fixture
def calendar_text() -> Any:
    """Return the make_calendar helper for tests that build feeds inline."""
    return make_calendar
