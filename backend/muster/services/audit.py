from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from muster.core.observability import promotions_total
from muster.models.attendance import Attendance, AttendanceLog
from muster.models.enums import AttendanceAction, AttendanceSource, RankOutcome, RankTrigger
from muster.models.rank import RankHistory


def attendance_snapshot(attendance: Attendance) -> dict:
    return {
        "status": attendance.status.value if attendance.status else None,
        "minutes_late": attendance.minutes_late,
        "minutes_gone_early": attendance.minutes_gone_early,
        "total_minutes_missed": attendance.total_minutes_missed,
        "total_minutes_present": attendance.total_minutes_present,
        "signup_id": attendance.signup_id,
        "notes": attendance.notes,
        "source": attendance.source.value if attendance.source else None,
    }


def log_attendance_change(
    db: Session,
    *,
    attendance_id: int,
    action: AttendanceAction,
    source: AttendanceSource,
    changed_by_id: Optional[int] = None,
    previous_value: Optional[dict] = None,
    new_value: Optional[dict] = None,
) -> AttendanceLog:
    entry = AttendanceLog(
        attendance_id=attendance_id,
        action=action,
        source=source,
        changed_by_id=changed_by_id,
        previous_value=previous_value,
        new_value=new_value,
    )
    db.add(entry)
    db.flush()
    return entry


def record_rank_history(
    db: Session,
    *,
    user_id: int,
    previous_rank_name: Optional[str],
    new_rank_name: str,
    attendance_total: int,
    attendance_delta: int,
    triggered_by: RankTrigger,
    outcome: RankOutcome = RankOutcome.APPROVED,
    triggered_by_user_id: Optional[int] = None,
    triggered_by_discord_id: Optional[str] = None,
    decline_reason: Optional[str] = None,
    note: Optional[str] = None,
) -> RankHistory:
    history = RankHistory(
        user_id=user_id,
        previous_rank_name=previous_rank_name,
        new_rank_name=new_rank_name,
        attendance_total_at_change=attendance_total,
        attendance_delta_since_last_rank=attendance_delta,
        triggered_by=triggered_by,
        triggered_by_user_id=triggered_by_user_id,
        triggered_by_discord_id=triggered_by_discord_id,
        outcome=outcome,
        decline_reason=decline_reason,
        note=note,
    )
    db.add(history)
    db.flush()
    promotions_total.labels(trigger=triggered_by.value, outcome=outcome.value).inc()
    return history
