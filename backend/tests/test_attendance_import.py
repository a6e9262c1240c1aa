from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from muster.core.errors import ValidationError
from muster.models.attendance import Attendance, AttendanceLog
from muster.models.enums import AttendanceAction, AttendanceSource, AttendanceStatus
from muster.services import attendance_import
from muster.services.attendance_import import import_legacy_attendance, parse_legacy_csv

CSV = """username,date,status
hicks,2026-03-07,P
vasquez,03/07/2026,LOA
gorman,2026-03-07,NO
ghost,2026-03-07,P
hicks,2026-03-08,P
vasquez,not-a-date,P
"""


@pytest.fixture()
def roster(factory):
    orbat = factory.orbat(event_date=date(2026, 3, 7))
    for name in ("hicks", "vasquez", "gorman"):
        factory.signup(factory.user(name), orbat)
    return orbat


def test_parse_csv_normalises_headers():
    rows = parse_legacy_csv("Username, Date ,STATUS\nhicks,2026-03-07,P\n")
    assert rows == [{"username": "hicks", "date": "2026-03-07", "status": "P"}]


def test_parse_csv_rejects_missing_columns():
    with pytest.raises(ValidationError):
        parse_legacy_csv("username,date\nhicks,2026-03-07\n")


def test_import_maps_codes_and_collects_errors(db, admin, roster):
    result = import_legacy_attendance(db, parse_legacy_csv(CSV), actor_user_id=admin.id)

    assert result.total == 6
    assert result.imported == 2
    assert result.skipped == 4
    assert len(result.errors) == 3
    assert any("User not found: ghost" in error for error in result.errors)
    assert any("No signup found for hicks on 2026-03-08" in error for error in result.errors)
    assert any("Invalid date" in error for error in result.errors)

    statuses = {a.user_id: a.status for a in db.query(Attendance).all()}
    assert sorted(statuses.values()) == sorted([AttendanceStatus.PRESENT, AttendanceStatus.ABSENT])

    entries = db.query(AttendanceLog).all()
    assert {e.action for e in entries} == {AttendanceAction.IMPORTED}
    assert {e.source for e in entries} == {AttendanceSource.LEGACY_IMPORT}


def test_reimport_updates_existing_row(db, admin, roster):
    import_legacy_attendance(db, [{"username": "hicks", "date": "2026-03-07", "status": "P"}])
    result = import_legacy_attendance(db, [{"username": "hicks", "date": "2026-03-07", "status": "A"}])

    assert result.imported == 1
    [attendance] = db.query(Attendance).all()
    assert attendance.status == AttendanceStatus.ABSENT
    assert attendance.notes == "Imported from legacy system (original: A)"


def test_missing_fields_are_reported(db, roster):
    result = import_legacy_attendance(db, [{"username": "hicks", "date": "", "status": "P"}])
    assert result.imported == 0
    assert result.skipped == 1
    assert result.errors[0].startswith("Missing required fields")


def test_error_list_is_truncated(db, roster):
    rows = [{"username": f"ghost{i}", "date": "2026-03-07", "status": "P"} for i in range(15)]
    result = import_legacy_attendance(db, rows)
    payload = result.as_dict(error_limit=10)
    assert payload["skipped"] == 15
    assert len(payload["errors"]) == 10


def test_database_error_fails_only_that_row(db, admin, roster, monkeypatch):
    calls = []
    log_change = attendance_import.log_attendance_change

    def flaky_log(db, **kwargs):
        calls.append(kwargs["attendance_id"])
        if len(calls) == 2:
            raise OperationalError("INSERT INTO attendance_logs", {}, Exception("database is locked"))
        return log_change(db, **kwargs)

    monkeypatch.setattr(attendance_import, "log_attendance_change", flaky_log)
    records = [
        {"username": "hicks", "date": "2026-03-07", "status": "P"},
        {"username": "vasquez", "date": "2026-03-07", "status": "P"},
        {"username": "gorman", "date": "2026-03-07", "status": "A"},
    ]

    result = import_legacy_attendance(db, records, orbat_id=roster.id, actor_user_id=admin.id)

    assert (result.imported, result.skipped) == (2, 1)
    assert result.errors == ["Row 2: database error (OperationalError)"]
    imported = db.query(Attendance).all()
    assert len(imported) == 2
    assert {a.source for a in imported} == {AttendanceSource.LEGACY_IMPORT}
