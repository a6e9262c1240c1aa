from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import AliasChoices, Field

from muster.models.enums import AttendanceSource, AttendanceStatus
from muster.schemas.base import ORMModel


class SessionSignal(ORMModel):
    participant_external_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("participant_external_id", "participantExternalId", "steamId", "steam_id"),
    )
    checkin_time: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("checkin_time", "checkinTime"))
    checkout_time: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("checkout_time", "checkoutTime"))


class AttendanceSessionRead(ORMModel):
    id: int
    user_id: int
    session_date: date
    checked_in_at: datetime
    checked_out_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None


class AttendanceRead(ORMModel):
    id: int
    user_id: int
    orbat_id: int
    signup_id: Optional[int] = None
    status: AttendanceStatus
    minutes_late: int
    minutes_gone_early: int
    total_minutes_missed: int
    total_minutes_present: int
    notes: Optional[str] = None
    source: AttendanceSource
    created_at: datetime
    updated_at: datetime


class SessionSignalResult(ORMModel):
    user_id: int
    session_date: date
    session: Optional[AttendanceSessionRead] = None
    attendances: List[AttendanceRead] = Field(default_factory=list)


class AttendanceCreate(ORMModel):
    user_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("user_id", "userId", "participantId"))
    signup_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("signup_id", "signupId"))
    status: Optional[AttendanceStatus] = None
    checkin_time: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("checkin_time", "checkinTime"))
    checkout_time: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("checkout_time", "checkoutTime"))
    notes: Optional[str] = Field(default=None, max_length=2000)


class AttendanceUpdate(ORMModel):
    status: Optional[AttendanceStatus] = None
    signup_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("signup_id", "signupId"))
    checkin_time: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("checkin_time", "checkinTime"))
    checkout_time: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("checkout_time", "checkoutTime"))
    notes: Optional[str] = Field(default=None, max_length=2000)


class LegacyImportRow(ORMModel):
    username: Optional[str] = None
    date: Optional[str] = None
    status: Optional[str] = None


class LegacyImportRequest(ORMModel):
    orbat_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("orbat_id", "orbatId"))
    records: Optional[List[LegacyImportRow]] = None
    csv: Optional[str] = None


class LegacyImportResult(ORMModel):
    imported: int
    skipped: int
    errors: List[str]
    total: int


class AttendanceStats(ORMModel):
    user_id: int
    days_back: int
    total: int
    by_status: Dict[str, int]
    attendance_percentage: int
    average_minutes_missed: int
    recent: List[AttendanceRead] = Field(default_factory=list)
