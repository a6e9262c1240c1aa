from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from muster.db.base import Base, IDMixin, TimestampMixin
from muster.models.enums import AudienceType, MessageCategory, enum_values


class Message(IDMixin, TimestampMixin, Base):
    __tablename__ = "messages"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[MessageCategory] = mapped_column(
        Enum(MessageCategory, name="message_category", values_callable=enum_values),
        nullable=False,
        index=True,
    )
    action_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    recipients: Mapped[List["MessageRecipient"]] = relationship(back_populates="message", cascade="all, delete-orphan")


class MessageRecipient(IDMixin, TimestampMixin, Base):
    __tablename__ = "message_recipients"

    message_id: Mapped[int] = mapped_column(ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    audience_type: Mapped[AudienceType] = mapped_column(
        Enum(AudienceType, name="audience_type", values_callable=enum_values),
        nullable=False,
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False, default="web")
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    message: Mapped["Message"] = relationship(back_populates="recipients")
