from __future__ import annotations

from datetime import date, time
from typing import Optional

from sqlalchemy import Boolean, Date, ForeignKey, String, Time, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from muster.db.base import Base, IDMixin, TimestampMixin


class Orbat(IDMixin, TimestampMixin, Base):
    """One scheduled occurrence of the recurring operation."""

    __tablename__ = "orbats"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    event_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    # Wall-clock times on event_date, interpreted in settings.event_timezone.
    start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    is_main_op: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Signup(IDMixin, TimestampMixin, Base):
    __tablename__ = "signups"
    __table_args__ = (UniqueConstraint("orbat_id", "user_id", name="uq_signups_orbat_user"),)

    orbat_id: Mapped[int] = mapped_column(ForeignKey("orbats.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    slot_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    orbat: Mapped["Orbat"] = relationship()
    user: Mapped["User"] = relationship()
