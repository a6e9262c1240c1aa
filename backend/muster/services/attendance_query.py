"""Explicit attendance filter, translated to a SQLAlchemy query in one place."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from muster.models.attendance import Attendance
from muster.models.enums import PRESENT_STATUSES, AttendanceStatus
from muster.models.roster import Orbat


@dataclass(frozen=True)
class AttendanceFilter:
    user_id: Optional[int] = None
    user_ids: Optional[Sequence[int]] = None
    orbat_id: Optional[int] = None
    statuses: Optional[Sequence[AttendanceStatus]] = None
    main_ops_only: bool = False
    created_since: Optional[datetime] = None

    @classmethod
    def qualifying(cls, user_id: int) -> "AttendanceFilter":
        """Attendance that counts toward rank progression."""
        return cls(user_id=user_id, statuses=PRESENT_STATUSES, main_ops_only=True)


def apply_filter(query: Query, criteria: AttendanceFilter) -> Query:
    if criteria.user_id is not None:
        query = query.filter(Attendance.user_id == criteria.user_id)
    if criteria.user_ids is not None:
        query = query.filter(Attendance.user_id.in_(list(criteria.user_ids)))
    if criteria.orbat_id is not None:
        query = query.filter(Attendance.orbat_id == criteria.orbat_id)
    if criteria.statuses is not None:
        query = query.filter(Attendance.status.in_(list(criteria.statuses)))
    if criteria.main_ops_only:
        query = query.join(Orbat, Attendance.orbat_id == Orbat.id).filter(Orbat.is_main_op.is_(True))
    if criteria.created_since is not None:
        query = query.filter(Attendance.created_at >= criteria.created_since)
    return query


def list_attendance(db: Session, criteria: AttendanceFilter, *, limit: Optional[int] = None) -> list[Attendance]:
    query = apply_filter(db.query(Attendance), criteria).order_by(Attendance.created_at.desc(), Attendance.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def count_attendance(db: Session, criteria: AttendanceFilter) -> int:
    return apply_filter(db.query(func.count(Attendance.id)).select_from(Attendance), criteria).scalar() or 0

