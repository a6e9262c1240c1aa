from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from muster.core.deps import get_current_user
from muster.db.session import get_db
from muster.models.user import User
from muster.schemas.attendance import AttendanceStats
from muster.services.attendance_stats import get_user_attendance_stats

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/{user_id}/attendance/stats", response_model=AttendanceStats)
def attendance_stats(
    user_id: int,
    days_back: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AttendanceStats:
    if current_user.id != user_id and not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorised to view these stats")
    return AttendanceStats.model_validate(get_user_attendance_stats(db, user_id=user_id, days_back=days_back))
