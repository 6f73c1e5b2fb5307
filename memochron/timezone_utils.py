"""Timezone resolution for calendar feeds.

Feeds written by Outlook and Exchange use Windows display names ("Pacific
Standard Time") instead of IANA identifiers, and some embed their own
VTIMEZONE definitions under made-up names. TimezoneResolver turns a naive
wall-clock value plus whatever TZID a feed supplied into an aware instant in
the caller's local zone.
"""

from __future__ import annotations

import datetime
import logging
import os
from collections.abc import Mapping
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser
from dateutil import tz

from .exceptions import TimezoneResolutionError

logger = logging.getLogger(__name__)

MICROSOFT_TZ_PREFIX = "tzone://Microsoft/"
CUSTOMIZED_TIME_ZONE = "Customized Time Zone"

# Windows/Exchange timezone display names to IANA identifiers.
# "Customized Time Zone" is deliberately absent so embedded VTIMEZONE rules win.
TIMEZONE_MAP: dict[str, str] = {
    # North America
    "Pacific Standard Time": "America/Los_Angeles",
    "Mountain Standard Time": "America/Denver",
    "Central Standard Time": "America/Chicago",
    "Eastern Standard Time": "America/New_York",
    "US Eastern Standard Time": "America/Indiana/Indianapolis",
    "US Mountain Standard Time": "America/Phoenix",
    "Hawaii-Aleutian Standard Time": "Pacific/Honolulu",
    "Hawaiian Standard Time": "Pacific/Honolulu",
    "Alaskan Standard Time": "America/Anchorage",
    "Atlantic Standard Time": "America/Halifax",
    "Canada Central Standard Time": "America/Regina",
    "Central America Standard Time": "America/Guatemala",
    "Mexico Standard Time": "America/Mexico_City",
    "US Central Standard Time": "America/Chicago",
    # South America
    "SA Eastern Standard Time": "America/Cayenne",
    "SA Pacific Standard Time": "America/Bogota",
    "SA Western Standard Time": "America/La_Paz",
    "E. South America Standard Time": "America/Sao_Paulo",
    "Central Brazilian Standard Time": "America/Cuiaba",
    "Argentina Standard Time": "America/Argentina/Buenos_Aires",
    "Venezuela Standard Time": "America/Caracas",
    "Pacific SA Standard Time": "America/Santiago",
    # Europe
    "GMT Standard Time": "Europe/London",
    "Greenwich Standard Time": "Atlantic/Reykjavik",
    "W. Europe Standard Time": "Europe/Berlin",
    "Central Europe Standard Time": "Europe/Warsaw",
    "Romance Standard Time": "Europe/Paris",
    "Central European Standard Time": "Europe/Budapest",
    "E. Europe Standard Time": "Europe/Chisinau",
    "GTB Standard Time": "Europe/Athens",
    "FLE Standard Time": "Europe/Helsinki",
    "Russian Standard Time": "Europe/Moscow",
    "Belarus Standard Time": "Europe/Minsk",
    "Turkey Standard Time": "Europe/Istanbul",
    "Kaliningrad Standard Time": "Europe/Kaliningrad",
    # Africa
    "South Africa Standard Time": "Africa/Johannesburg",
    "W. Central Africa Standard Time": "Africa/Lagos",
    "Egypt Standard Time": "Africa/Cairo",
    "Libya Standard Time": "Africa/Tripoli",
    "Morocco Standard Time": "Africa/Casablanca",
    # Asia
    "Middle East Standard Time": "Asia/Beirut",
    "Iran Standard Time": "Asia/Tehran",
    "Arabian Standard Time": "Asia/Dubai",
    "Afghanistan Standard Time": "Asia/Kabul",
    "West Asia Standard Time": "Asia/Tashkent",
    "India Standard Time": "Asia/Kolkata",
    "Sri Lanka Standard Time": "Asia/Colombo",
    "Nepal Standard Time": "Asia/Kathmandu",
    "Central Asia Standard Time": "Asia/Almaty",
    "Bangladesh Standard Time": "Asia/Dhaka",
    "Myanmar Standard Time": "Asia/Yangon",
    "SE Asia Standard Time": "Asia/Bangkok",
    "N. Central Asia Standard Time": "Asia/Novosibirsk",
    "China Standard Time": "Asia/Shanghai",
    "North Asia Standard Time": "Asia/Krasnoyarsk",
    "Singapore Standard Time": "Asia/Singapore",
    "W. Australia Standard Time": "Australia/Perth",
    "Taipei Standard Time": "Asia/Taipei",
    "Ulaanbaatar Standard Time": "Asia/Ulaanbaatar",
    "North Asia East Standard Time": "Asia/Irkutsk",
    "Tokyo Standard Time": "Asia/Tokyo",
    "Korea Standard Time": "Asia/Seoul",
    "Cen. Australia Standard Time": "Australia/Adelaide",
    "AUS Central Standard Time": "Australia/Darwin",
    "E. Australia Standard Time": "Australia/Brisbane",
    "AUS Eastern Standard Time": "Australia/Sydney",
    "West Pacific Standard Time": "Pacific/Port_Moresby",
    "Tasmania Standard Time": "Australia/Hobart",
    "Vladivostok Standard Time": "Asia/Vladivostok",
    # Pacific
    "Central Pacific Standard Time": "Pacific/Guadalcanal",
    "New Zealand Standard Time": "Pacific/Auckland",
    "Fiji Standard Time": "Pacific/Fiji",
    "Tonga Standard Time": "Pacific/Tongatapu",
    # UTC
    "UTC": "UTC",
    "Coordinated Universal Time": "UTC",
    "tzone://Microsoft/Utc": "UTC",
    # Outlook "(UTC+hh:mm) City" labels
    "(UTC+02:00) Athens, Bucharest": "Europe/Athens",
    "(UTC+01:00) Amsterdam, Berlin, Bern, Rome, Stockholm, Vienna": "Europe/Berlin",
    "(UTC+00:00) Dublin, Edinburgh, Lisbon, London": "Europe/London",
    "(UTC-05:00) Eastern Time (US & Canada)": "America/New_York",
    "(UTC-06:00) Central Time (US & Canada)": "America/Chicago",
    "(UTC-07:00) Mountain Time (US & Canada)": "America/Denver",
    "(UTC-08:00) Pacific Time (US & Canada)": "America/Los_Angeles",
}


def normalize_tzid(tzid: Optional[str]) -> Optional[str]:
    """Clean up a TZID value before table lookup.

    Args:
        tzid: Raw TZID parameter value

    Returns:
        Trimmed identifier, "UTC" for Microsoft's UTC alias, None when empty
    """
    if tzid is None:
        return None
    cleaned = str(tzid).strip().strip('"')
    if not cleaned:
        return None

    if cleaned.startswith(MICROSOFT_TZ_PREFIX):
        extracted = cleaned[len(MICROSOFT_TZ_PREFIX):]
        if extracted.lower() == "utc":
            return "UTC"

    if cleaned.lower() == CUSTOMIZED_TIME_ZONE.lower():
        return CUSTOMIZED_TIME_ZONE

    return cleaned


def windows_tz_to_iana(tzid: Optional[str]) -> Optional[str]:
    """Map a Windows display name to its IANA identifier, None when unmapped."""
    normalized = normalize_tzid(tzid)
    if normalized is None:
        return None
    return TIMEZONE_MAP.get(normalized)


@lru_cache(maxsize=256)
def get_zoneinfo(name: str) -> ZoneInfo:
    """Return the ZoneInfo for an IANA identifier.

    Raises:
        TimezoneResolutionError: If the identifier is not in the tz database
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise TimezoneResolutionError(name, str(e)) from e


def lookup_zone(
    tzid: Optional[str], custom_zones: Optional[Mapping[str, datetime.tzinfo]] = None
) -> Optional[datetime.tzinfo]:
    """Find the tzinfo for a feed TZID.

    Order: legacy table, embedded VTIMEZONE definition, verbatim IANA lookup.

    Returns:
        tzinfo, or None when tzid is empty (floating time)

    Raises:
        TimezoneResolutionError: If none of the strategies yields a zone
    """
    normalized = normalize_tzid(tzid)
    if normalized is None:
        return None

    mapped = TIMEZONE_MAP.get(normalized)
    if mapped:
        return get_zoneinfo(mapped)

    if custom_zones:
        custom = custom_zones.get(normalized) or custom_zones.get(str(tzid))
        if custom is not None:
            return custom

    return get_zoneinfo(normalized)


def get_local_timezone() -> datetime.tzinfo:
    """Return the configured local timezone.

    MEMOCHRON_TIMEZONE selects an IANA zone; otherwise the host zone is used.
    """
    configured = os.environ.get("MEMOCHRON_TIMEZONE", "").strip()
    if configured:
        try:
            return get_zoneinfo(configured)
        except TimezoneResolutionError:
            logger.warning("Invalid MEMOCHRON_TIMEZONE=%r, using host timezone", configured)
    return tz.tzlocal()


class TimeProvider:
    """Provides current time with test time override support."""

    ENV_VAR = "MEMOCHRON_TEST_TIME"

    def now_utc(self) -> datetime.datetime:
        """Return current UTC time with tzinfo.

        Can be overridden for testing via MEMOCHRON_TEST_TIME, an ISO 8601
        datetime string (e.g. "2025-10-27T08:20:00-07:00"). Naive values are
        read as UTC.
        """
        test_time = os.environ.get(self.ENV_VAR)
        if test_time:
            try:
                dt = date_parser.isoparse(test_time)
                if dt.tzinfo is not None:
                    return dt.astimezone(datetime.timezone.utc)
                return dt.replace(tzinfo=datetime.timezone.utc)
            except ValueError as e:
                logger.warning("Failed to parse %s=%r: %s", self.ENV_VAR, test_time, e)

        return datetime.datetime.now(datetime.timezone.utc)

    def now(self, local_tz: Optional[datetime.tzinfo] = None) -> datetime.datetime:
        """Return the current instant in local_tz (default: configured local zone)."""
        return self.now_utc().astimezone(local_tz or get_local_timezone())


_time_provider = TimeProvider()


def now_utc() -> datetime.datetime:
    """Get current UTC time (convenience function)."""
    return _time_provider.now_utc()


def now_local(local_tz: Optional[datetime.tzinfo] = None) -> datetime.datetime:
    """Get current local time (convenience function)."""
    return _time_provider.now(local_tz)


class TimezoneResolver:
    """Resolve feed wall-clock values to absolute instants in a local zone.

    Unresolvable identifiers never raise: the value is read as local wall-clock
    time and a warning is logged once per identifier.
    """

    def __init__(
        self,
        local_tz: Optional[datetime.tzinfo] = None,
        custom_zones: Optional[Mapping[str, datetime.tzinfo]] = None,
    ):
        """Initialize resolver.

        Args:
            local_tz: Output zone (default: configured local zone)
            custom_zones: tzinfo objects built from a feed's VTIMEZONE blocks
        """
        self.local_tz = local_tz or get_local_timezone()
        self.custom_zones: dict[str, datetime.tzinfo] = dict(custom_zones or {})
        self._warned: set[str] = set()

    def with_custom_zones(
        self, custom_zones: Mapping[str, datetime.tzinfo]
    ) -> TimezoneResolver:
        """Return a resolver sharing the local zone but using a feed's own zones."""
        return TimezoneResolver(self.local_tz, custom_zones)

    def zone_for(self, tzid: Optional[str]) -> Optional[datetime.tzinfo]:
        """Return the zone for tzid, None for floating or unresolvable values."""
        try:
            return lookup_zone(tzid, self.custom_zones)
        except TimezoneResolutionError as e:
            if e.tzid not in self._warned:
                self._warned.add(e.tzid)
                logger.warning("%s, treating times as local", e)
            return None

    def resolve(
        self,
        value: datetime.datetime,
        tzid: Optional[str] = None,
        is_date: bool = False,
    ) -> datetime.datetime:
        """Convert a wall-clock value to an aware datetime in the local zone.

        Args:
            value: Date-time components as written in the feed (tzinfo ignored)
            tzid: Zone the components are expressed in, None for local time
            is_date: All-day values resolve to local midnight of the same date

        Returns:
            Aware datetime in self.local_tz
        """
        wall = value.replace(tzinfo=None)
        if is_date:
            midnight = datetime.datetime.combine(wall.date(), datetime.time())
            return midnight.replace(tzinfo=self.local_tz)

        zone = self.zone_for(tzid)
        if zone is None:
            return wall.replace(tzinfo=self.local_tz)
        return wall.replace(tzinfo=zone).astimezone(self.local_tz)

    def local_midnight(self, day: datetime.date) -> datetime.datetime:
        """Return the start of a calendar day in the local zone."""
        return datetime.datetime.combine(day, datetime.time()).replace(tzinfo=self.local_tz)
