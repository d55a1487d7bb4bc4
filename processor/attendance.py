"""Attendance reconciliation and statistics."""
import logging
import math
from dataclasses import replace
from datetime import datetime
from typing import AbstractSet, List, Mapping

from processor.models import AttendanceStatistics, CalendarEvent, TargetStatus

logger = logging.getLogger(__name__)


def reconcile_attendance(
    events: List[CalendarEvent],
    stored: Mapping[str, bool]
) -> List[CalendarEvent]:
    """
    Apply previously recorded attendance flags to freshly parsed events.

    Each event gets the stored flag for its uid, or False when the uid is
    empty or unknown. Stored uids that are no longer in the feed are
    dropped. Neither the input events nor the mapping are modified.

    Args:
        events: Parsed events in display order
        stored: Mapping of uid to attended flag from the previous run

    Returns:
        New list of CalendarEvent copies with attended set
    """
    reconciled = []
    matched = 0

    for event in events:
        attended = bool(stored.get(event.uid, False)) if event.uid else False
        if event.uid and event.uid in stored:
            matched += 1
        reconciled.append(replace(event, attended=attended))

    dropped = len(set(stored) - {event.uid for event in events if event.uid})
    logger.info(
        f"Reconciled {len(reconciled)} events: {matched} with stored state, "
        f"{dropped} stored entries no longer in feed"
    )
    return reconciled


def required_attendances(total_required: int, target: float) -> int:
    """Number of required events that must be attended to meet the target."""
    # Rounding keeps 10 * 0.7 from becoming 7.000000000000001 and ceiling to 8
    return math.ceil(round(total_required * target, 9))


def compute_statistics(
    events: List[CalendarEvent],
    now: datetime,
    optional_types: AbstractSet[str],
    target: float
) -> AttendanceStatistics:
    """
    Compute attendance counts, ratios and the gap to the target.

    Args:
        events: Reconciled events
        now: Instant separating past from future events
        optional_types: Event types excluded from the required counts
        target: Target attendance ratio for required events, e.g. 0.75

    Returns:
        AttendanceStatistics snapshot
    """
    total_events = 0
    total_required = 0
    attended = 0
    attended_required = 0
    past_events = 0
    past_required = 0
    future_required = 0

    for event in events:
        is_past = event.start_date is not None and event.start_date < now
        is_required = event.event_type not in optional_types

        total_events += 1
        if is_required:
            total_required += 1

        if is_past:
            past_events += 1
            if is_required:
                past_required += 1
        elif is_required:
            future_required += 1

        if event.attended:
            attended += 1
            if is_required:
                attended_required += 1

    # Events checked off ahead of time must not push a rate above 1
    attendance_rate = min(1.0, attended_required / past_required) if past_required > 0 else 0
    attendance_rate_all = min(1.0, attended / past_events) if past_events > 0 else 0

    target_gap = required_attendances(total_required, target) - attended_required
    needed_for_target = max(0, target_gap)
    can_still_miss = max(0, future_required - needed_for_target)

    if needed_for_target == 0:
        status = TargetStatus.MET
    elif needed_for_target > future_required:
        status = TargetStatus.UNREACHABLE
    else:
        status = TargetStatus.REACHABLE

    return AttendanceStatistics(
        total_events=total_events,
        total_required=total_required,
        attended=attended,
        attended_required=attended_required,
        past_events=past_events,
        past_required=past_required,
        future_required=future_required,
        attendance_rate=attendance_rate,
        attendance_rate_all=attendance_rate_all,
        needed_for_target=needed_for_target,
        can_still_miss=can_still_miss,
        target_gap=target_gap,
        target=target,
        target_status=status
    )
