from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from muster.db.base import Base, IDMixin, TimestampMixin
from muster.models.enums import ProposalStatus, RankOutcome, RankTrigger, enum_values


class Rank(IDMixin, TimestampMixin, Base):
    __tablename__ = "ranks"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    abbreviation: Mapped[str] = mapped_column(String(20), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, unique=True, nullable=False, index=True)
    attendance_required_since_last_rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    auto_rankup_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class UserRank(IDMixin, TimestampMixin, Base):
    __tablename__ = "user_ranks"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    current_rank_id: Mapped[Optional[int]] = mapped_column(ForeignKey("ranks.id", ondelete="SET NULL"), nullable=True, index=True)
    # Qualifying attendance count at the last rank change (the delta baseline).
    attendance_since_last_rank: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    retired: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    interview_done: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_ranked_up_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped["User"] = relationship()
    current_rank: Mapped[Optional["Rank"]] = relationship()


class PromotionProposal(IDMixin, TimestampMixin, Base):
    __tablename__ = "promotion_proposals"
    __table_args__ = (
        # At most one pending proposal per (user, target rank).
        Index(
            "uq_promotion_proposals_pending",
            "user_id",
            "next_rank_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    current_rank_id: Mapped[int] = mapped_column(ForeignKey("ranks.id"), nullable=False)
    next_rank_id: Mapped[int] = mapped_column(ForeignKey("ranks.id"), nullable=False)
    attendance_total_at_proposal: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attendance_delta_since_last_rank: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[ProposalStatus] = mapped_column(
        Enum(ProposalStatus, name="proposal_status", values_callable=enum_values),
        default=ProposalStatus.PENDING,
        nullable=False,
        index=True,
    )
    decline_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decided_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped["User"] = relationship(foreign_keys=[user_id])
    current_rank: Mapped["Rank"] = relationship(foreign_keys=[current_rank_id])
    next_rank: Mapped["Rank"] = relationship(foreign_keys=[next_rank_id])


class RankHistory(IDMixin, TimestampMixin, Base):
    """Append-only record of rank changes; rank names are copied, not referenced."""

    __tablename__ = "rank_history"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    previous_rank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    new_rank_name: Mapped[str] = mapped_column(String(100), nullable=False)
    attendance_total_at_change: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attendance_delta_since_last_rank: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    triggered_by: Mapped[RankTrigger] = mapped_column(
        Enum(RankTrigger, name="rank_trigger", values_callable=enum_values),
        nullable=False,
    )
    triggered_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    triggered_by_discord_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    outcome: Mapped[RankOutcome] = mapped_column(
        Enum(RankOutcome, name="rank_outcome", values_callable=enum_values),
        nullable=False,
    )
    decline_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


rank_transition_required_trainings = Table(
    "rank_transition_required_trainings",
    Base.metadata,
    Column("requirement_id", ForeignKey("rank_transition_requirements.id", ondelete="CASCADE"), primary_key=True),
    Column("training_id", ForeignKey("trainings.id", ondelete="CASCADE"), primary_key=True),
)


class RankTransitionRequirement(IDMixin, TimestampMixin, Base):
    """Trainings that must be completed before promotion into ``target_rank``."""

    __tablename__ = "rank_transition_requirements"

    target_rank_id: Mapped[int] = mapped_column(ForeignKey("ranks.id", ondelete="CASCADE"), unique=True, nullable=False)

    required_trainings: Mapped[List["Training"]] = relationship(secondary=rank_transition_required_trainings)
