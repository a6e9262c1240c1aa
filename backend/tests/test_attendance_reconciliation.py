from __future__ import annotations

from datetime import datetime, time, timezone

import pytest

from muster.core.errors import IdentityNotFound, ValidationError
from muster.models.attendance import Attendance, AttendanceLog, AttendanceSession
from muster.models.enums import AttendanceAction, AttendanceSource, AttendanceStatus
from muster.services.attendance import record_session_signal
from muster.services.audit import attendance_snapshot

STEAM_ID = "76561198000000001"


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 3, 7, hour, minute, tzinfo=timezone.utc)


@pytest.fixture()
def participant(factory):
    user = factory.user("miller", steam_id=STEAM_ID)
    orbat = factory.orbat("Operation Nightfall")
    factory.signup(user, orbat)
    return user, orbat


def signal(db, checkin=None, checkout=None, external_id=STEAM_ID):
    return record_session_signal(db, external_id=external_id, checkin_at=checkin, checkout_at=checkout)


def test_checkin_then_checkout_reconciles_attendance(db, participant):
    user, orbat = participant

    first = signal(db, checkin=at(19, 50))
    assert len(first.attendances) == 1
    assert first.attendances[0].status == AttendanceStatus.PRESENT
    assert first.attendances[0].total_minutes_present == 0

    second = signal(db, checkout=at(21, 0))
    attendance = second.attendances[0]
    assert attendance.orbat_id == orbat.id
    assert attendance.user_id == user.id
    assert attendance.status == AttendanceStatus.PRESENT
    assert attendance.minutes_late == 0
    assert attendance.total_minutes_present == 70
    assert second.session.duration_minutes == 70


def test_replayed_signals_are_idempotent(db, participant):
    user, _orbat = participant
    signal(db, checkin=at(20, 50))
    result = signal(db, checkout=at(21, 30))
    before = attendance_snapshot(result.attendances[0])

    signal(db, checkin=at(20, 50))
    replay = signal(db, checkout=at(21, 30))
    signal(db, checkin=at(20, 50), checkout=at(21, 30))

    assert attendance_snapshot(replay.attendances[0]) == before
    assert before["status"] == AttendanceStatus.LATE.value
    assert before["minutes_late"] == 50
    assert db.query(Attendance).filter(Attendance.user_id == user.id).count() == 1
    assert db.query(AttendanceSession).filter(AttendanceSession.user_id == user.id).count() == 1


def test_repeated_checkin_while_present_is_a_replay(db, participant):
    user, _orbat = participant
    signal(db, checkin=at(20, 50))
    signal(db, checkin=at(20, 55))
    result = signal(db, checkout=at(21, 30))
    before = attendance_snapshot(result.attendances[0])
    assert (before["minutes_late"], before["total_minutes_present"]) == (50, 40)

    replay = signal(db, checkin=at(20, 50))
    signal(db, checkin=at(20, 55))

    assert attendance_snapshot(replay.attendances[0]) == before
    [session] = db.query(AttendanceSession).filter(AttendanceSession.user_id == user.id).all()
    assert (session.checked_in_at.replace(tzinfo=timezone.utc), session.checked_out_at.replace(tzinfo=timezone.utc)) == (
        at(20, 50),
        at(21, 30),
    )


def test_earlier_checkin_moves_open_session_back(db, participant):
    user, _orbat = participant
    signal(db, checkin=at(20, 55))
    result = signal(db, checkin=at(20, 50))

    assert result.session.checked_in_at.replace(tzinfo=timezone.utc) == at(20, 50)
    assert db.query(AttendanceSession).filter(AttendanceSession.user_id == user.id).count() == 1
    assert result.attendances[0].minutes_late == 50


def test_reconnects_are_aggregated_across_sessions(db, participant):
    user, _orbat = participant
    signal(db, checkin=at(19, 0))
    signal(db, checkout=at(19, 40))
    signal(db, checkin=at(20, 0))
    result = signal(db, checkout=at(21, 30))

    attendance = result.attendances[0]
    assert attendance.status == AttendanceStatus.PRESENT
    assert attendance.total_minutes_present == 130
    assert db.query(AttendanceSession).filter(AttendanceSession.user_id == user.id).count() == 2


def test_every_orbat_on_the_date_is_recomputed(db, factory, participant):
    user, orbat = participant
    late_op = factory.orbat("Late Op", start=time(22, 0), end=time(23, 30))
    factory.signup(user, late_op)

    result = signal(db, checkin=at(19, 0), checkout=at(21, 30))

    by_orbat = {a.orbat_id: a for a in result.attendances}
    assert by_orbat[orbat.id].status == AttendanceStatus.PRESENT
    assert by_orbat[late_op.id].status == AttendanceStatus.NO_SHOW


def test_recompute_writes_automated_audit_entry(db, participant):
    result = signal(db, checkin=at(19, 0), checkout=at(21, 30))
    attendance_id = result.attendances[0].id

    entries = db.query(AttendanceLog).filter(AttendanceLog.attendance_id == attendance_id).order_by(AttendanceLog.id).all()
    assert entries
    assert all(e.action == AttendanceAction.TIME_UPDATED for e in entries)
    assert all(e.source == AttendanceSource.AUTOMATED_SYSTEM for e in entries)
    assert entries[-1].new_value["total_minutes_present"] == 150
    assert entries[-1].new_value["total_sessions_for_day"] == 1


def test_signal_without_signup_only_records_session(db, factory):
    user = factory.user("walker", steam_id="42")
    result = signal(db, checkin=at(19, 0), external_id="42")
    assert result.attendances == []
    assert result.session.user_id == user.id


def test_checkout_without_open_session_creates_nothing(db, participant):
    user, _orbat = participant
    result = signal(db, checkout=at(21, 0))
    assert result.session is None
    assert db.query(AttendanceSession).filter(AttendanceSession.user_id == user.id).count() == 0
    assert result.attendances[0].status == AttendanceStatus.NO_SHOW


def test_unknown_participant_is_rejected(db, participant):
    with pytest.raises(IdentityNotFound):
        signal(db, checkin=at(19, 0), external_id="unknown")


def test_signal_needs_a_timestamp(db, participant):
    with pytest.raises(ValidationError):
        signal(db)
    assert db.query(AttendanceSession).count() == 0


def test_checkout_before_checkin_is_rejected(db, participant):
    with pytest.raises(ValidationError):
        signal(db, checkin=at(21, 0), checkout=at(20, 0))
