from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from muster.db.base import utcnow
from muster.models.attendance import Attendance
from muster.models.enums import PRESENT_STATUSES, AttendanceStatus
from muster.services.attendance_query import AttendanceFilter, apply_filter, list_attendance
from muster.services.identity import get_user


def get_user_attendance_stats(
    db: Session,
    *,
    user_id: int,
    days_back: int = 30,
    now: Callable[[], datetime] = utcnow,
) -> dict:
    """Per-status counts and averages over the last ``days_back`` days."""
    get_user(db, user_id)
    criteria = AttendanceFilter(user_id=user_id, created_since=now() - timedelta(days=days_back))

    counts = {status.value: 0 for status in AttendanceStatus}
    rows = apply_filter(
        db.query(Attendance.status, func.count(Attendance.id)).select_from(Attendance),
        criteria,
    ).group_by(Attendance.status)
    for status, count in rows.all():
        counts[AttendanceStatus(status).value] = count

    total = sum(counts.values())
    attended = sum(counts[status.value] for status in PRESENT_STATUSES)
    records = list_attendance(db, criteria)
    missed = sum(record.total_minutes_missed for record in records)

    return {
        "user_id": user_id,
        "days_back": days_back,
        "total": total,
        "by_status": counts,
        "attendance_percentage": round(attended / total * 100) if total else 0,
        "average_minutes_missed": round(missed / total) if total else 0,
        "recent": records[:10],
    }
