"""Pure attendance calculations.

Nothing in here touches the database or reads the clock. Session timestamps
are compared as aware datetimes; naive values (SQLite hands them back that
way) are taken to be UTC. Orbat start/end times are wall-clock values on the
orbat's date in the supplied zone.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, Optional, Sequence

from muster.models.enums import AttendanceStatus

GRACE_PERIOD = timedelta(hours=1)
MAX_MINUTES_PER_SIDE = 60


def as_aware(value: datetime, tz: tzinfo = timezone.utc) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def to_utc(value: datetime) -> datetime:
    return as_aware(value).astimezone(timezone.utc)


def ceil_minutes(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / 60)


def event_window(
    event_date: Optional[date],
    start_time: Optional[time],
    end_time: Optional[time],
    tz: tzinfo = timezone.utc,
) -> Optional[tuple[datetime, datetime]]:
    """Absolute ``(start, end)`` of an orbat, or ``None`` if it has no schedule."""
    if event_date is None or start_time is None or end_time is None:
        return None
    return (
        datetime.combine(event_date, start_time, tzinfo=tz),
        datetime.combine(event_date, end_time, tzinfo=tz),
    )


@dataclass(frozen=True)
class SessionOverlap:
    counted_checkin_at: Optional[datetime]
    counted_checkout_at: Optional[datetime]
    is_within_window: bool


@dataclass(frozen=True)
class CountedInterval:
    counted_checkin_at: datetime
    counted_checkout_at: Optional[datetime]


@dataclass(frozen=True)
class TimeDifferences:
    minutes_late: int = 0
    minutes_gone_early: int = 0
    total_minutes_missed: int = 0


def calculate_session_overlap(
    checkin_at: datetime,
    checkout_at: Optional[datetime],
    start_time: time,
    end_time: time,
    event_date: date,
    tz: tzinfo = timezone.utc,
) -> SessionOverlap:
    """Clip one session to the orbat window.

    Sessions that end before the window opens, or begin after it closes,
    contribute nothing. An open session keeps a ``None`` counted checkout.
    """
    window_start, window_end = event_window(event_date, start_time, end_time, tz)
    checkin_at = as_aware(checkin_at)
    checkout_at = as_aware(checkout_at) if checkout_at is not None else None

    if checkout_at is not None and checkout_at < window_start:
        return SessionOverlap(None, None, False)
    if checkin_at > window_end:
        return SessionOverlap(None, None, False)

    counted_checkin = max(checkin_at, window_start)
    counted_checkout = None if checkout_at is None else min(checkout_at, window_end)
    return SessionOverlap(counted_checkin, counted_checkout, True)


def calculate_time_differences(
    start_time: Optional[time],
    end_time: Optional[time],
    first_counted_checkin_at: Optional[datetime],
    last_counted_checkout_at: Optional[datetime],
    event_date: Optional[date],
    tz: tzinfo = timezone.utc,
) -> TimeDifferences:
    """Minutes late / gone early measured against the one-hour grace boundaries."""
    window = event_window(event_date, start_time, end_time, tz)
    if window is None:
        return TimeDifferences()

    window_start, window_end = window
    first_hour_end = window_start + GRACE_PERIOD
    last_hour_start = window_end - GRACE_PERIOD

    minutes_late = 0
    if first_counted_checkin_at is not None:
        checkin = as_aware(first_counted_checkin_at)
        if checkin > first_hour_end:
            minutes_late = min(ceil_minutes(checkin - first_hour_end), MAX_MINUTES_PER_SIDE)

    minutes_gone_early = 0
    if last_counted_checkout_at is not None:
        checkout = as_aware(last_counted_checkout_at)
        if checkout < last_hour_start:
            minutes_gone_early = min(ceil_minutes(last_hour_start - checkout), MAX_MINUTES_PER_SIDE)

    return TimeDifferences(
        minutes_late=minutes_late,
        minutes_gone_early=minutes_gone_early,
        total_minutes_missed=minutes_late + minutes_gone_early,
    )


def calculate_total_minutes_present(intervals: Iterable[CountedInterval]) -> int:
    total = 0
    for interval in intervals:
        if interval.counted_checkout_at is None:
            continue
        total += ceil_minutes(as_aware(interval.counted_checkout_at) - as_aware(interval.counted_checkin_at))
    return total


def calculate_attendance_status(
    has_checkin: bool,
    minutes_late: int,
    minutes_gone_early: int,
    total_minutes_missed: int,
    manually_absent: bool = False,
) -> AttendanceStatus:
    if manually_absent:
        return AttendanceStatus.ABSENT
    if not has_checkin:
        return AttendanceStatus.NO_SHOW
    if total_minutes_missed >= 60:
        return AttendanceStatus.PARTIAL
    # Late and early together is partial even under an hour combined.
    if minutes_late > 0 and minutes_gone_early > 0:
        return AttendanceStatus.PARTIAL
    if minutes_late > 0:
        return AttendanceStatus.LATE
    if minutes_gone_early > 0:
        return AttendanceStatus.GONE_EARLY
    return AttendanceStatus.PRESENT


@dataclass(frozen=True)
class AttendanceComputation:
    status: AttendanceStatus
    minutes_late: int
    minutes_gone_early: int
    total_minutes_missed: int
    total_minutes_present: int
    has_checkin_within_window: bool
    counted: tuple[CountedInterval, ...] = field(default_factory=tuple)

    def snapshot(self) -> dict:
        return {
            "status": self.status.value,
            "has_checkin_within_window": self.has_checkin_within_window,
            "counted_sessions": len(self.counted),
            "minutes_late": self.minutes_late,
            "minutes_gone_early": self.minutes_gone_early,
            "total_minutes_missed": self.total_minutes_missed,
            "total_minutes_present": self.total_minutes_present,
        }


def compute_attendance(
    sessions: Sequence[tuple[datetime, Optional[datetime]]],
    *,
    event_date: Optional[date],
    start_time: Optional[time],
    end_time: Optional[time],
    tz: tzinfo = timezone.utc,
    manually_absent: bool = False,
) -> AttendanceComputation:
    """Derive status and metrics for one participant/orbat from raw sessions.

    ``sessions`` are ``(checked_in_at, checked_out_at)`` pairs; order does not
    matter. Without a configured window every session counts unclipped and
    the late/early metrics are zero.
    """
    has_window = event_window(event_date, start_time, end_time, tz) is not None
    counted: list[CountedInterval] = []
    for checkin_at, checkout_at in sorted(sessions, key=lambda pair: as_aware(pair[0])):
        if not has_window:
            counted.append(CountedInterval(as_aware(checkin_at), as_aware(checkout_at) if checkout_at else None))
            continue
        overlap = calculate_session_overlap(checkin_at, checkout_at, start_time, end_time, event_date, tz)
        if overlap.is_within_window and overlap.counted_checkin_at is not None:
            counted.append(CountedInterval(overlap.counted_checkin_at, overlap.counted_checkout_at))

    first_checkin = min((c.counted_checkin_at for c in counted), default=None)
    last_checkout = max(
        (c.counted_checkout_at for c in counted if c.counted_checkout_at is not None),
        default=None,
    )
    diffs = calculate_time_differences(start_time, end_time, first_checkin, last_checkout, event_date, tz)
    status = calculate_attendance_status(
        bool(counted),
        diffs.minutes_late,
        diffs.minutes_gone_early,
        diffs.total_minutes_missed,
        manually_absent,
    )
    return AttendanceComputation(
        status=status,
        minutes_late=diffs.minutes_late,
        minutes_gone_early=diffs.minutes_gone_early,
        total_minutes_missed=diffs.total_minutes_missed,
        total_minutes_present=calculate_total_minutes_present(counted),
        has_checkin_within_window=bool(counted),
        counted=tuple(counted),
    )
