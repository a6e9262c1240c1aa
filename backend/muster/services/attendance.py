"""Attendance reconciliation service layer.

Every mutation of ``Attendance`` goes through here so that the
one-record-per-(participant, orbat) rule and the audit log are enforced in a
single place. Functions flush but never commit; the caller owns the
transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from muster.core.errors import InvalidState, ScheduleNotFound, ValidationError
from muster.core.observability import attendance_reconciliations_total
from muster.core.settings import settings
from muster.models.attendance import Attendance, AttendanceSession
from muster.models.enums import AttendanceAction, AttendanceSource, AttendanceStatus
from muster.models.roster import Orbat
from muster.services.attendance_calc import (
    AttendanceComputation,
    as_aware,
    ceil_minutes,
    compute_attendance,
    to_utc,
)
from muster.services.audit import attendance_snapshot, log_attendance_change
from muster.services.identity import get_user, resolve_participant
from muster.services.roster import find_signup, get_orbat, get_signup_for_orbat, signups_for_date

logger = logging.getLogger(__name__)


@dataclass
class SignalResult:
    user_id: int
    session_date: date
    session: Optional[AttendanceSession]
    attendances: list[Attendance] = field(default_factory=list)


def session_date_for(checkin_at: Optional[datetime], checkout_at: Optional[datetime], tz: tzinfo) -> date:
    anchor = checkin_at or checkout_at
    return as_aware(anchor).astimezone(tz).date()


def _sessions_for_day(db: Session, *, user_id: int, session_date: date, lock: bool = False) -> list[AttendanceSession]:
    query = (
        db.query(AttendanceSession)
        .filter(AttendanceSession.user_id == user_id, AttendanceSession.session_date == session_date)
        .order_by(AttendanceSession.checked_in_at.asc(), AttendanceSession.id.asc())
    )
    if lock:
        # Serialises concurrent signals for the same participant/day on Postgres.
        query = query.with_for_update()
    return query.all()


def _latest_open(sessions: list[AttendanceSession], *, not_after: Optional[datetime] = None) -> Optional[AttendanceSession]:
    candidates = [
        s for s in sessions
        if s.checked_out_at is None and (not_after is None or as_aware(s.checked_in_at) <= not_after)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda s: as_aware(s.checked_in_at))


def _covering(sessions: list[AttendanceSession], moment: datetime) -> Optional[AttendanceSession]:
    for s in sessions:
        checked_in = as_aware(s.checked_in_at)
        if checked_in <= moment and (s.checked_out_at is None or moment <= as_aware(s.checked_out_at)):
            return s
    return None


def _close_session(session: AttendanceSession, checkout_at: datetime) -> None:
    if checkout_at < as_aware(session.checked_in_at):
        raise ValidationError(
            "checkoutTime is before the session check-in",
            session_id=session.id,
            checked_in_at=as_aware(session.checked_in_at).isoformat(),
        )
    session.checked_out_at = checkout_at
    session.duration_minutes = ceil_minutes(checkout_at - as_aware(session.checked_in_at))


def upsert_session(
    db: Session,
    *,
    user_id: int,
    session_date: date,
    checkin_at: Optional[datetime] = None,
    checkout_at: Optional[datetime] = None,
) -> Optional[AttendanceSession]:
    """Open, extend or close the participant's session for ``session_date``.

    A check-in that falls inside a recorded session (its own replay, or a
    repeat while the participant is still checked in) resolves to that
    session. An earlier check-in while a session is open moves the open
    session's check-in back instead of opening a second one.
    """
    checkin_at = to_utc(checkin_at) if checkin_at else None
    checkout_at = to_utc(checkout_at) if checkout_at else None
    sessions = _sessions_for_day(db, user_id=user_id, session_date=session_date, lock=True)

    target: Optional[AttendanceSession] = None
    if checkin_at is not None:
        target = _covering(sessions, checkin_at)
        if target is None:
            target = _latest_open(sessions)
            if target is not None:
                # Only reachable when checkin_at precedes the open check-in.
                target.checked_in_at = checkin_at
            else:
                target = _create_session(db, user_id=user_id, session_date=session_date, checkin_at=checkin_at)

    if checkout_at is not None:
        if target is None:
            target = next(
                (s for s in sessions if s.checked_out_at is not None and as_aware(s.checked_out_at) == checkout_at),
                None,
            ) or _latest_open(sessions, not_after=checkout_at)
        if target is None:
            logger.warning(
                "checkout_without_open_session",
                extra={"participant_id": user_id},
            )
        else:
            _close_session(target, checkout_at)

    db.flush()
    return target


def _create_session(db: Session, *, user_id: int, session_date: date, checkin_at: datetime) -> AttendanceSession:
    session = AttendanceSession(user_id=user_id, session_date=session_date, checked_in_at=checkin_at)
    try:
        with db.begin_nested():
            db.add(session)
            db.flush()
    except IntegrityError:
        # A concurrent signal created the same session first.
        existing = (
            db.query(AttendanceSession)
            .filter(AttendanceSession.user_id == user_id, AttendanceSession.checked_in_at == checkin_at)
            .one()
        )
        return existing
    return session


def get_or_create_attendance(
    db: Session,
    *,
    user_id: int,
    orbat_id: int,
    signup_id: Optional[int] = None,
) -> tuple[Attendance, bool]:
    attendance = (
        db.query(Attendance)
        .filter(Attendance.user_id == user_id, Attendance.orbat_id == orbat_id)
        .first()
    )
    if attendance:
        if signup_id and attendance.signup_id is None:
            attendance.signup_id = signup_id
        return attendance, False

    attendance = Attendance(user_id=user_id, orbat_id=orbat_id, signup_id=signup_id)
    try:
        with db.begin_nested():
            db.add(attendance)
            db.flush()
    except IntegrityError:
        attendance = (
            db.query(Attendance)
            .filter(Attendance.user_id == user_id, Attendance.orbat_id == orbat_id)
            .one()
        )
        return attendance, False
    return attendance, True


def _apply_computation(attendance: Attendance, result: AttendanceComputation) -> None:
    attendance.status = result.status
    attendance.minutes_late = result.minutes_late
    attendance.minutes_gone_early = result.minutes_gone_early
    attendance.total_minutes_missed = result.total_minutes_missed
    attendance.total_minutes_present = result.total_minutes_present


def _compute_for_orbat(
    orbat: Orbat,
    sessions: list[tuple[datetime, Optional[datetime]]],
    tz: tzinfo,
    manually_absent: bool = False,
) -> AttendanceComputation:
    return compute_attendance(
        sessions,
        event_date=orbat.event_date,
        start_time=orbat.start_time,
        end_time=orbat.end_time,
        tz=tz,
        manually_absent=manually_absent,
    )


def reconcile_participant_day(
    db: Session,
    *,
    user_id: int,
    session_date: date,
    tz: Optional[tzinfo] = None,
) -> list[Attendance]:
    """Recompute attendance for every orbat ``user_id`` signed up for on ``session_date``.

    Always re-derives from the full set of the day's sessions, so repeated
    calls with unchanged data produce identical records. Records entered
    manually or imported are left as they are.
    """
    tz = tz or settings.event_tz
    sessions = _sessions_for_day(db, user_id=user_id, session_date=session_date)
    pairs = [(s.checked_in_at, s.checked_out_at) for s in sessions]

    updated: list[Attendance] = []
    for signup in signups_for_date(db, user_id=user_id, on_date=session_date):
        attendance, _created = get_or_create_attendance(
            db,
            user_id=user_id,
            orbat_id=signup.orbat_id,
            signup_id=signup.id,
        )
        if attendance.source != AttendanceSource.AUTOMATED_SYSTEM:
            logger.info(
                "attendance_recompute_skipped",
                extra={"participant_id": user_id, "attendance_id": attendance.id},
            )
            continue
        result = _compute_for_orbat(signup.orbat, pairs, tz)
        _apply_computation(attendance, result)
        db.flush()

        log_attendance_change(
            db,
            attendance_id=attendance.id,
            action=AttendanceAction.TIME_UPDATED,
            source=AttendanceSource.AUTOMATED_SYSTEM,
            new_value={**result.snapshot(), "total_sessions_for_day": len(sessions)},
        )
        attendance_reconciliations_total.labels(source=AttendanceSource.AUTOMATED_SYSTEM.value).inc()
        updated.append(attendance)
    return updated


def record_session_signal(
    db: Session,
    *,
    external_id: str,
    checkin_at: Optional[datetime] = None,
    checkout_at: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> SignalResult:
    """Handle one check-in/check-out event from the game server feed."""
    if checkin_at is None and checkout_at is None:
        raise ValidationError("At least one of checkinTime or checkoutTime must be provided")
    if checkin_at is not None and checkout_at is not None and to_utc(checkout_at) < to_utc(checkin_at):
        raise ValidationError("checkoutTime must not be before checkinTime")

    tz = tz or settings.event_tz
    user_id = resolve_participant(db, external_id)
    day = session_date_for(checkin_at, checkout_at, tz)

    session = upsert_session(
        db,
        user_id=user_id,
        session_date=day,
        checkin_at=checkin_at,
        checkout_at=checkout_at,
    )
    attendances = reconcile_participant_day(db, user_id=user_id, session_date=day, tz=tz)
    logger.info(
        "session_signal_reconciled",
        extra={"participant_id": user_id, "attendance_id": [a.id for a in attendances]},
    )
    return SignalResult(user_id=user_id, session_date=day, session=session, attendances=attendances)


def get_attendance(db: Session, attendance_id: int) -> Attendance:
    attendance = db.get(Attendance, attendance_id)
    if not attendance:
        raise ScheduleNotFound("Attendance record not found", attendance_id=attendance_id)
    return attendance


def _apply_manual_times(
    db: Session,
    *,
    attendance: Attendance,
    orbat: Orbat,
    checkin_at: datetime,
    checkout_at: Optional[datetime],
    manually_absent: bool,
    tz: tzinfo,
) -> dict:
    """Compute metrics from admin-entered times without touching the session feed.

    Returns the times for the audit entry, which is where they are kept.
    """
    checkin_at = to_utc(checkin_at)
    checkout_at = to_utc(checkout_at) if checkout_at else None
    if checkout_at is not None and checkout_at < checkin_at:
        raise ValidationError("checkoutTime must not be before checkinTime")
    result = _compute_for_orbat(orbat, [(checkin_at, checkout_at)], tz, manually_absent=manually_absent)
    _apply_computation(attendance, result)
    return {
        "checkin_at": checkin_at.isoformat(),
        "checkout_at": checkout_at.isoformat() if checkout_at else None,
    }


def create_manual_attendance(
    db: Session,
    *,
    orbat_id: int,
    actor_user_id: Optional[int],
    user_id: Optional[int] = None,
    signup_id: Optional[int] = None,
    status: Optional[AttendanceStatus] = None,
    checkin_at: Optional[datetime] = None,
    checkout_at: Optional[datetime] = None,
    notes: Optional[str] = None,
    tz: Optional[tzinfo] = None,
) -> Attendance:
    if not signup_id and not user_id:
        raise ValidationError("Either signupId or userId is required")
    if checkout_at is not None and checkin_at is None:
        raise ValidationError("checkoutTime requires checkinTime")

    tz = tz or settings.event_tz
    orbat = get_orbat(db, orbat_id)
    if signup_id:
        signup = get_signup_for_orbat(db, signup_id=signup_id, orbat_id=orbat_id)
        user_id = signup.user_id
    else:
        get_user(db, user_id)
        signup = find_signup(db, user_id=user_id, orbat_id=orbat_id)

    existing = (
        db.query(Attendance)
        .filter(Attendance.user_id == user_id, Attendance.orbat_id == orbat_id)
        .first()
    )
    if existing:
        raise InvalidState(
            "Attendance already recorded for this participant and orbat",
            attendance_id=existing.id,
            status=existing.status.value,
        )

    attendance = Attendance(
        user_id=user_id,
        orbat_id=orbat_id,
        signup_id=signup.id if signup else None,
        status=status or AttendanceStatus.ABSENT,
        notes=notes,
        source=AttendanceSource.MANUAL,
    )
    try:
        with db.begin_nested():
            db.add(attendance)
            db.flush()
    except IntegrityError as exc:
        raise InvalidState("Attendance already recorded for this participant and orbat", user_id=user_id) from exc

    manual_times: dict = {}
    if checkin_at is not None:
        manual_times = _apply_manual_times(
            db,
            attendance=attendance,
            orbat=orbat,
            checkin_at=checkin_at,
            checkout_at=checkout_at,
            manually_absent=status == AttendanceStatus.ABSENT,
            tz=tz,
        )
    db.flush()

    log_attendance_change(
        db,
        attendance_id=attendance.id,
        action=AttendanceAction.CREATED,
        source=AttendanceSource.MANUAL,
        changed_by_id=actor_user_id,
        new_value={**attendance_snapshot(attendance), **manual_times},
    )
    attendance_reconciliations_total.labels(source=AttendanceSource.MANUAL.value).inc()
    return attendance


def update_attendance(
    db: Session,
    *,
    attendance: Attendance,
    actor_user_id: Optional[int],
    status: Optional[AttendanceStatus] = None,
    notes: Optional[str] = None,
    signup_id: Optional[int] = None,
    unlink_signup: bool = False,
    checkin_at: Optional[datetime] = None,
    checkout_at: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> Attendance:
    tz = tz or settings.event_tz
    previous = attendance_snapshot(attendance)

    if signup_id:
        signup = get_signup_for_orbat(db, signup_id=signup_id, orbat_id=attendance.orbat_id)
        if signup.user_id != attendance.user_id:
            raise ValidationError(
                "Signup belongs to a different participant",
                signup_id=signup_id,
                attendance_id=attendance.id,
            )
        attendance.signup_id = signup.id
    elif unlink_signup:
        attendance.signup_id = None

    manual_times: dict = {}
    if checkin_at is not None:
        manual_times = _apply_manual_times(
            db,
            attendance=attendance,
            orbat=get_orbat(db, attendance.orbat_id),
            checkin_at=checkin_at,
            checkout_at=checkout_at,
            manually_absent=status == AttendanceStatus.ABSENT,
            tz=tz,
        )
    elif checkout_at is not None:
        raise ValidationError("checkoutTime requires checkinTime")
    elif status is not None:
        attendance.status = status

    if notes is not None:
        attendance.notes = notes
    attendance.source = AttendanceSource.MANUAL
    db.flush()

    log_attendance_change(
        db,
        attendance_id=attendance.id,
        action=AttendanceAction.UPDATED,
        source=AttendanceSource.MANUAL,
        changed_by_id=actor_user_id,
        previous_value=previous,
        new_value={**attendance_snapshot(attendance), **manual_times},
    )
    return attendance


def delete_attendance(db: Session, *, attendance: Attendance, actor_user_id: Optional[int]) -> None:
    # The log entry is written while the id is still valid.
    log_attendance_change(
        db,
        attendance_id=attendance.id,
        action=AttendanceAction.DELETED,
        source=AttendanceSource.MANUAL,
        changed_by_id=actor_user_id,
        previous_value={"status": attendance.status.value, "user_id": attendance.user_id, "orbat_id": attendance.orbat_id},
    )
    db.delete(attendance)
    db.flush()
