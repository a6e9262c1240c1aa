from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import JSON, Date, DateTime, Enum, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from muster.db.base import Base, IDMixin, TimestampMixin, utcnow
from muster.models.enums import AttendanceAction, AttendanceSource, AttendanceStatus, enum_values


class AttendanceSession(IDMixin, TimestampMixin, Base):
    """One continuous check-in/check-out interval, independent of any orbat."""

    __tablename__ = "attendance_sessions"
    __table_args__ = (UniqueConstraint("user_id", "checked_in_at", name="uq_attendance_sessions_user_checkin"),)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    session_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    checked_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    checked_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class Attendance(IDMixin, TimestampMixin, Base):
    __tablename__ = "attendances"
    __table_args__ = (UniqueConstraint("user_id", "orbat_id", name="uq_attendances_user_orbat"),)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    orbat_id: Mapped[int] = mapped_column(ForeignKey("orbats.id", ondelete="CASCADE"), nullable=False, index=True)
    signup_id: Mapped[Optional[int]] = mapped_column(ForeignKey("signups.id", ondelete="SET NULL"), nullable=True, index=True)
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus, name="attendance_status", values_callable=enum_values),
        default=AttendanceStatus.NO_SHOW,
        nullable=False,
        index=True,
    )
    minutes_late: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    minutes_gone_early: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_minutes_missed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_minutes_present: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Only automated_system records are recomputed from the session feed.
    source: Mapped[AttendanceSource] = mapped_column(
        Enum(AttendanceSource, name="attendance_record_source", values_callable=enum_values),
        default=AttendanceSource.AUTOMATED_SYSTEM,
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    orbat: Mapped["Orbat"] = relationship()
    signup: Mapped[Optional["Signup"]] = relationship()


class AttendanceLog(IDMixin, Base):
    """Append-only audit entry for attendance changes.

    ``attendance_id`` is deliberately not a foreign key: entries outlive the
    attendance row they describe.
    """

    __tablename__ = "attendance_logs"

    attendance_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action: Mapped[AttendanceAction] = mapped_column(
        Enum(AttendanceAction, name="attendance_action", values_callable=enum_values),
        nullable=False,
    )
    source: Mapped[AttendanceSource] = mapped_column(
        Enum(AttendanceSource, name="attendance_source", values_callable=enum_values),
        nullable=False,
    )
    changed_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    previous_value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    new_value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
