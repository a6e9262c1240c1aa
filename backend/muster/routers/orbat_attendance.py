from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from muster.core.deps import get_current_user, require_admin
from muster.db.session import get_db
from muster.models.enums import AttendanceStatus
from muster.models.user import User
from muster.schemas.attendance import AttendanceCreate, AttendanceRead
from muster.services.attendance import create_manual_attendance
from muster.services.attendance_query import AttendanceFilter, list_attendance
from muster.services.roster import get_orbat

router = APIRouter(prefix="/api/orbats", tags=["attendance"])


@router.get("/{orbat_id}/attendance", response_model=List[AttendanceRead])
def list_orbat_attendance(
    orbat_id: int,
    status_filter: Optional[AttendanceStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[AttendanceRead]:
    get_orbat(db, orbat_id)
    criteria = AttendanceFilter(orbat_id=orbat_id, statuses=[status_filter] if status_filter else None)
    return list_attendance(db, criteria)


@router.post("/{orbat_id}/attendance", response_model=AttendanceRead, status_code=status.HTTP_201_CREATED)
def create_orbat_attendance(
    orbat_id: int,
    payload: AttendanceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> AttendanceRead:
    attendance = create_manual_attendance(
        db,
        orbat_id=orbat_id,
        actor_user_id=current_user.id,
        user_id=payload.user_id,
        signup_id=payload.signup_id,
        status=payload.status,
        checkin_at=payload.checkin_time,
        checkout_at=payload.checkout_time,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(attendance)
    return attendance
