"""Data models for attendance tracking."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

UNKNOWN_EVENT_TYPE = 'Unknown'
LECTURERS_NOT_SPECIFIED = 'Not specified'


@dataclass
class CalendarEvent:
    """Event extracted from the calendar feed."""
    uid: str = ''
    summary: str = ''
    course_name: str = ''
    event_type: str = UNKNOWN_EVENT_TYPE
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    description: Optional[str] = None
    lecturers: str = LECTURERS_NOT_SPECIFIED
    category: Optional[str] = None
    attended: bool = False


class TargetStatus(str, Enum):
    """Whether the target ratio can still be reached."""
    MET = 'met'
    REACHABLE = 'reachable'
    UNREACHABLE = 'unreachable'


@dataclass(frozen=True)
class AttendanceStatistics:
    """Snapshot of attendance counts and ratios at a given instant."""
    total_events: int
    total_required: int
    attended: int
    attended_required: int
    past_events: int
    past_required: int
    future_required: int
    attendance_rate: float
    attendance_rate_all: float
    needed_for_target: int
    can_still_miss: int
    target_gap: int
    target: float
    target_status: TargetStatus

    @property
    def reachable(self) -> bool:
        return self.target_status != TargetStatus.UNREACHABLE

    def to_dict(self) -> dict:
        """Serialize for JSON responses."""
        return {
            'total_events': self.total_events,
            'total_required': self.total_required,
            'attended': self.attended,
            'attended_required': self.attended_required,
            'past_events': self.past_events,
            'past_required': self.past_required,
            'future_required': self.future_required,
            'attendance_rate': self.attendance_rate,
            'attendance_rate_all': self.attendance_rate_all,
            'needed_for_target': self.needed_for_target,
            'can_still_miss': self.can_still_miss,
            'target_gap': self.target_gap,
            'target': self.target,
            'target_status': self.target_status.value,
            'reachable': self.reachable
        }


@dataclass
class SaveResult:
    """Result of writing the attendance table."""
    written: int
    deleted: int
