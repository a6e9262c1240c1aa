from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from muster.db.base import Base, IDMixin, TimestampMixin


class Training(IDMixin, TimestampMixin, Base):
    __tablename__ = "trainings"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    minimum_rank_id: Mapped[Optional[int]] = mapped_column(ForeignKey("ranks.id", ondelete="SET NULL"), nullable=True)


class TrainingPrerequisite(IDMixin, TimestampMixin, Base):
    """Edge ``training`` requires ``required_training``."""

    __tablename__ = "training_prerequisites"
    __table_args__ = (UniqueConstraint("training_id", "required_training_id", name="uq_training_prerequisites_pair"),)

    training_id: Mapped[int] = mapped_column(ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False, index=True)
    required_training_id: Mapped[int] = mapped_column(ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False, index=True)

    required_training: Mapped["Training"] = relationship(foreign_keys=[required_training_id])


class UserTraining(IDMixin, TimestampMixin, Base):
    __tablename__ = "user_trainings"
    __table_args__ = (UniqueConstraint("user_id", "training_id", name="uq_user_trainings_user_training"),)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    training_id: Mapped[int] = mapped_column(ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False, index=True)
    needs_retraining: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
