"""ATTENDEE property parsing for VEVENT components."""

import logging
from collections.abc import Iterable
from typing import Any, Optional

from .models import Attendee, AttendeeRole

logger = logging.getLogger(__name__)

# CUTYPE values kept by default: individuals and attendees without a CUTYPE
DEFAULT_CUTYPE_FILTER: tuple[str, ...] = ("INDIVIDUAL", "")

_ROLE_MAP = {role.value: role for role in AttendeeRole}


class AttendeeParser:
    """Parser for iCalendar ATTENDEE properties.

    Rooms and resources are dropped by CUTYPE, and attendees whose display
    name appears in excluded_names (case-insensitive) are skipped.
    """

    def __init__(
        self,
        cutype_filter: Optional[Iterable[str]] = None,
        excluded_names: Optional[Iterable[str]] = None,
    ):
        self.cutype_filter = {
            c.upper() for c in (cutype_filter if cutype_filter is not None else DEFAULT_CUTYPE_FILTER)
        }
        self.excluded_names = {n.strip().lower() for n in (excluded_names or [])}

    def parse_attendee(self, attendee_prop: Any) -> Optional[Attendee]:
        """Parse one ATTENDEE value, None when filtered out or unusable."""
        params = getattr(attendee_prop, "params", {}) or {}

        cutype = str(params.get("CUTYPE", "") or "").upper()
        if cutype not in self.cutype_filter:
            return None

        value = str(attendee_prop).strip()
        email = value[len("mailto:"):] if value.lower().startswith("mailto:") else value
        email = email or None

        cn = str(params.get("CN", "") or "").strip()
        if cn and cn.lower() in self.excluded_names:
            return None
        name = cn or email
        if not name:
            logger.debug("Skipping ATTENDEE without CN or address")
            return None

        role = _ROLE_MAP.get(str(params.get("ROLE", "")).upper(), AttendeeRole.REQUIRED)
        status = str(params.get("PARTSTAT", "NEEDS-ACTION")).upper()

        return Attendee(name=name, email=email, role=role, status=status, cutype=cutype)

    def parse_attendees(self, component: Any) -> list[Attendee]:
        """Parse all attendees from an iCalendar component.

        Args:
            component: iCalendar component (e.g., VEVENT)

        Returns:
            Attendees that passed the filters, in feed order
        """
        attendee_props = component.get("ATTENDEE", [])
        if not isinstance(attendee_props, list):
            attendee_props = [attendee_props] if attendee_props else []

        attendees = []
        for attendee_prop in attendee_props:
            attendee = self.parse_attendee(attendee_prop)
            if attendee:
                attendees.append(attendee)
        return attendees
