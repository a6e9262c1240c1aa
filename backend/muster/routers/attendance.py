from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from muster.core.deps import get_current_user, require_admin, require_bot
from muster.core.errors import ValidationError
from muster.db.session import get_db
from muster.models.user import User
from muster.schemas.attendance import (
    AttendanceRead,
    AttendanceUpdate,
    LegacyImportRequest,
    LegacyImportResult,
    SessionSignal,
    SessionSignalResult,
)
from muster.services.attendance import (
    delete_attendance,
    get_attendance,
    record_session_signal,
    update_attendance,
)
from muster.services.attendance_import import import_legacy_attendance, parse_legacy_csv

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


@router.post("/automated", response_model=SessionSignalResult, dependencies=[Depends(require_bot)])
def automated_signal(signal: SessionSignal, db: Session = Depends(get_db)) -> SessionSignalResult:
    result = record_session_signal(
        db,
        external_id=signal.participant_external_id,
        checkin_at=signal.checkin_time,
        checkout_at=signal.checkout_time,
    )
    db.commit()
    return SessionSignalResult.model_validate(result)


@router.post("/import", response_model=LegacyImportResult)
def import_attendance(
    payload: LegacyImportRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> LegacyImportResult:
    if payload.csv:
        records = parse_legacy_csv(payload.csv)
    elif payload.records is not None:
        records = [row.model_dump() for row in payload.records]
    else:
        raise ValidationError("Provide either records or csv")

    result = import_legacy_attendance(
        db,
        records,
        orbat_id=payload.orbat_id,
        actor_user_id=current_user.id,
    )
    db.commit()
    return LegacyImportResult(**result.as_dict())


@router.get("/{attendance_id}", response_model=AttendanceRead)
def read_attendance(
    attendance_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AttendanceRead:
    return get_attendance(db, attendance_id)


@router.put("/{attendance_id}", response_model=AttendanceRead)
def edit_attendance(
    attendance_id: int,
    payload: AttendanceUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> AttendanceRead:
    attendance = get_attendance(db, attendance_id)
    update_attendance(
        db,
        attendance=attendance,
        actor_user_id=current_user.id,
        status=payload.status,
        notes=payload.notes,
        signup_id=payload.signup_id,
        unlink_signup="signup_id" in payload.model_fields_set and payload.signup_id is None,
        checkin_at=payload.checkin_time,
        checkout_at=payload.checkout_time,
    )
    db.commit()
    db.refresh(attendance)
    return attendance


@router.delete("/{attendance_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_attendance(
    attendance_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> None:
    attendance = get_attendance(db, attendance_id)
    delete_attendance(db, attendance=attendance, actor_user_id=current_user.id)
    db.commit()
