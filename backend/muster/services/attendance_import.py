"""Bulk import of attendance from the legacy spreadsheet.

Rows are ``{username, date, status}`` using the old sheet codes. Each row is
written in its own SAVEPOINT and committed on success, so one bad row never
loses the rows before it.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from muster.core.errors import ValidationError
from muster.core.observability import attendance_reconciliations_total
from muster.core.settings import settings
from muster.models.enums import AttendanceAction, AttendanceSource, AttendanceStatus
from muster.services.attendance import get_or_create_attendance
from muster.services.audit import log_attendance_change
from muster.services.identity import find_user_by_username
from muster.services.roster import signups_for_date

logger = logging.getLogger(__name__)

LEGACY_STATUS_MAP: dict[str, Optional[AttendanceStatus]] = {
    "P": AttendanceStatus.PRESENT,
    "A": AttendanceStatus.ABSENT,
    "NA": AttendanceStatus.ABSENT,
    "LOA": AttendanceStatus.ABSENT,
    # No-op / event-off rows carry no information.
    "NO": None,
    "EO": None,
}

REQUIRED_COLUMNS = ("username", "date", "status")
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d.%m.%Y")


class RowSkipped(Exception):
    pass


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    total: int = 0
    errors: list[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.skipped += 1
        self.errors.append(message)

    def as_dict(self, error_limit: Optional[int] = None) -> dict[str, Any]:
        limit = settings.import_error_limit if error_limit is None else error_limit
        return {
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": self.errors[:limit],
            "total": self.total,
        }


def parse_legacy_csv(text: str) -> list[dict[str, str]]:
    reader = csv.DictReader(io.StringIO(text.strip()))
    headers = [h.strip().lower() for h in (reader.fieldnames or [])]
    missing = [column for column in REQUIRED_COLUMNS if column not in headers]
    if missing:
        raise ValidationError("CSV is missing required columns", missing=missing)
    rows = []
    for raw in reader:
        rows.append({(k or "").strip().lower(): (v or "").strip() for k, v in raw.items()})
    return rows


def parse_legacy_date(value: str) -> date:
    value = value.strip()
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise RowSkipped(f"Invalid date: {value}")


def _import_row(
    db: Session,
    row: Mapping[str, Any],
    *,
    orbat_id: Optional[int],
    actor_user_id: Optional[int],
) -> bool:
    """Returns ``False`` for rows whose code is ignored on purpose."""
    username = str(row.get("username") or "").strip()
    raw_date = str(row.get("date") or "").strip()
    raw_status = str(row.get("status") or "").strip().upper()
    if not username or not raw_date or not raw_status:
        raise RowSkipped(f"Missing required fields: {dict(row)}")

    if raw_status not in LEGACY_STATUS_MAP:
        raise RowSkipped(f"Unknown status code {raw_status} for {username}")
    status = LEGACY_STATUS_MAP[raw_status]
    if status is None:
        return False

    user = find_user_by_username(db, username)
    if not user:
        raise RowSkipped(f"User not found: {username}")

    on_date = parse_legacy_date(raw_date)
    signups = signups_for_date(db, user_id=user.id, on_date=on_date)
    if orbat_id is not None:
        signups = [s for s in signups if s.orbat_id == orbat_id]
    if not signups:
        raise RowSkipped(f"No signup found for {username} on {on_date.isoformat()}")
    signup = signups[0]

    attendance, created = get_or_create_attendance(
        db,
        user_id=user.id,
        orbat_id=signup.orbat_id,
        signup_id=signup.id,
    )
    previous_status = None if created else attendance.status.value
    attendance.status = status
    attendance.minutes_late = 0
    attendance.minutes_gone_early = 0
    attendance.total_minutes_missed = 0
    attendance.total_minutes_present = 0
    attendance.notes = f"Imported from legacy system (original: {raw_status})"
    attendance.source = AttendanceSource.LEGACY_IMPORT
    db.flush()

    log_attendance_change(
        db,
        attendance_id=attendance.id,
        action=AttendanceAction.IMPORTED,
        source=AttendanceSource.LEGACY_IMPORT,
        changed_by_id=actor_user_id,
        previous_value={"status": previous_status} if previous_status else None,
        new_value={"old_status": raw_status, "mapped_status": status.value},
    )
    attendance_reconciliations_total.labels(source=AttendanceSource.LEGACY_IMPORT.value).inc()
    return True


def import_legacy_attendance(
    db: Session,
    records: Iterable[Mapping[str, Any]],
    *,
    orbat_id: Optional[int] = None,
    actor_user_id: Optional[int] = None,
) -> ImportResult:
    records = list(records)
    result = ImportResult(total=len(records))
    for index, row in enumerate(records, start=1):
        try:
            with db.begin_nested():
                imported = _import_row(db, row, orbat_id=orbat_id, actor_user_id=actor_user_id)
            db.commit()
        except RowSkipped as exc:
            result.add_error(str(exc))
            continue
        except ValidationError as exc:
            result.add_error(f"Row {index}: {exc.message}")
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("legacy_import_row_failed", extra={"orbat_id": orbat_id})
            result.add_error(f"Row {index}: database error ({exc.__class__.__name__})")
            continue
        if imported:
            result.imported += 1
        else:
            result.skipped += 1

    logger.info(
        "legacy_attendance_imported",
        extra={"orbat_id": orbat_id, "user_id": actor_user_id},
    )
    return result
