"""Parser for iCalendar feeds of course events."""
import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from processor.models import (
    CalendarEvent,
    LECTURERS_NOT_SPECIFIED,
    UNKNOWN_EVENT_TYPE,
)

logger = logging.getLogger(__name__)

SUMMARY_PATTERN = re.compile(r'^(.+?)\s*\[(.+?)\]$')
LECTURERS_PATTERN = re.compile(r'Lecturers:\s*([^,]+(?:,\s*[^,]+)*)')
EVENT_TYPE_MARKER = 'Event type:'

BEGIN_EVENT = 'BEGIN:VEVENT'
END_EVENT = 'END:VEVENT'


class PropertyKind(Enum):
    """Properties the event parser understands."""
    SUMMARY = 'SUMMARY'
    DTSTART = 'DTSTART'
    DTEND = 'DTEND'
    LOCATION = 'LOCATION'
    DESCRIPTION = 'DESCRIPTION'
    CATEGORIES = 'CATEGORIES'
    UID = 'UID'
    UNKNOWN = None

    @classmethod
    def from_name(cls, name: str) -> 'PropertyKind':
        try:
            return cls(name.upper())
        except ValueError:
            return cls.UNKNOWN


def unfold_lines(text: str) -> List[str]:
    """
    Reassemble folded lines.

    A physical line starting with a single space or tab continues the
    previous logical line; that one character is dropped.

    Args:
        text: Raw feed text with LF or CRLF line endings

    Returns:
        List of logical lines
    """
    lines = []
    current = None

    for physical in text.split('\n'):
        if physical.endswith('\r'):
            physical = physical[:-1]

        if physical[:1] in (' ', '\t') and current is not None:
            current += physical[1:]
            continue

        if current:
            lines.append(current)
        current = physical

    if current:
        lines.append(current)

    return lines


def parse_property(line: str) -> Optional[Tuple[PropertyKind, str]]:
    """
    Split a logical line into its property kind and value.

    Args:
        line: Logical line such as "DTSTART;TZID=Europe/Berlin:20240115T110000"

    Returns:
        (PropertyKind, value) tuple, or None if the line has no ':'
    """
    key, separator, value = line.partition(':')
    if not separator:
        return None

    name = key.split(';', 1)[0].strip()
    return PropertyKind.from_name(name), value


def decode_date(value: str) -> Optional[datetime]:
    """
    Decode a basic-format date-time (YYYYMMDDTHHMMSS[Z]) as UTC.

    Any timezone designator or TZID context is ignored.

    Args:
        value: Property value

    Returns:
        Timezone-aware UTC datetime, or None if the value cannot be decoded
    """
    if value is None or len(value) < 15:
        return None

    try:
        return datetime(
            int(value[0:4]),
            int(value[4:6]),
            int(value[6:8]),
            int(value[9:11]),
            int(value[11:13]),
            int(value[13:15]),
            tzinfo=timezone.utc
        )
    except ValueError:
        logger.debug(f"Could not decode date value: {value!r}")
        return None


def split_summary(summary: str) -> Tuple[str, str]:
    """
    Split "<name> [<type>]" into course name and event type.

    Returns:
        Tuple of (course_name, event_type); falls back to
        (summary, "Unknown") when there is no bracketed suffix
    """
    match = SUMMARY_PATTERN.match(summary)
    if not match:
        return summary, UNKNOWN_EVENT_TYPE
    return match.group(1).strip(), match.group(2).strip()


def extract_lecturers(description: Optional[str]) -> str:
    """
    Pull the lecturer list out of an event description.

    Args:
        description: Free-text description, e.g.
            "Lecturers: Dr A, Dr B Event type: Lecture"

    Returns:
        Lecturer list ("Dr A, Dr B"), or "Not specified"
    """
    if not description:
        return LECTURERS_NOT_SPECIFIED

    match = LECTURERS_PATTERN.search(description)
    if not match:
        return LECTURERS_NOT_SPECIFIED

    lecturers = match.group(1).split(EVENT_TYPE_MARKER, 1)[0].strip()
    if lecturers.endswith(','):
        lecturers = lecturers[:-1]
    return lecturers


class IcsEventParser:
    """Parser turning feed text into sorted CalendarEvent records."""

    def __init__(self):
        self._handlers: Dict[PropertyKind, Callable[[CalendarEvent, str], None]] = {
            PropertyKind.SUMMARY: self._apply_summary,
            PropertyKind.DTSTART: self._apply_start,
            PropertyKind.DTEND: self._apply_end,
            PropertyKind.LOCATION: self._apply_location,
            PropertyKind.DESCRIPTION: self._apply_description,
            PropertyKind.CATEGORIES: self._apply_category,
            PropertyKind.UID: self._apply_uid,
            PropertyKind.UNKNOWN: self._ignore,
        }

    def parse(self, text: str) -> List[CalendarEvent]:
        """
        Parse all VEVENT blocks in a feed.

        Events without a decodable start date are dropped. The result is
        sorted by start date; events sharing a start keep feed order.

        Args:
            text: Raw feed text

        Returns:
            List of CalendarEvent objects
        """
        events = []
        skipped = 0

        for event in self._iter_events(unfold_lines(text)):
            if event.start_date is None:
                logger.warning(
                    f"Skipping event '{event.summary}' (uid={event.uid!r}): "
                    f"missing or invalid DTSTART"
                )
                skipped += 1
                continue
            events.append(event)

        events.sort(key=lambda e: e.start_date)

        logger.info(
            f"Parsed {len(events)} events from feed ({skipped} skipped)"
        )
        return events

    def apply_line(self, event: CalendarEvent, line: str) -> None:
        """Fold one logical line into the event being built."""
        parsed = parse_property(line)
        if parsed is None:
            return
        kind, value = parsed
        self._handlers[kind](event, value)

    def _iter_events(self, lines: List[str]):
        current = None
        nested_depth = 0

        for line in lines:
            marker = line.rstrip()

            if current is None:
                if marker == BEGIN_EVENT:
                    current = CalendarEvent()
                    nested_depth = 0
                continue

            if marker == END_EVENT:
                # An unclosed sub-component must not swallow the rest of the feed
                yield current
                current = None
            elif marker.startswith('BEGIN:'):
                # Sub-components such as VALARM carry their own DESCRIPTION
                nested_depth += 1
            elif marker.startswith('END:') and nested_depth > 0:
                nested_depth -= 1
            elif nested_depth == 0:
                self.apply_line(current, line)

        if current is not None:
            logger.warning("Feed ended inside an unterminated VEVENT; discarding it")

    def _apply_summary(self, event: CalendarEvent, value: str) -> None:
        event.summary = value
        event.course_name, event.event_type = split_summary(value)

    def _apply_start(self, event: CalendarEvent, value: str) -> None:
        event.start_date = decode_date(value)

    def _apply_end(self, event: CalendarEvent, value: str) -> None:
        event.end_date = decode_date(value)

    def _apply_location(self, event: CalendarEvent, value: str) -> None:
        event.location = value

    def _apply_description(self, event: CalendarEvent, value: str) -> None:
        event.description = value
        event.lecturers = extract_lecturers(value)

    def _apply_category(self, event: CalendarEvent, value: str) -> None:
        event.category = value

    def _apply_uid(self, event: CalendarEvent, value: str) -> None:
        event.uid = value

    def _ignore(self, event: CalendarEvent, value: str) -> None:
        pass
