"""Bulk re-ranking after the rank ladder changes.

Preview and apply share ``plan_migration`` so the classification shown in a
preview is exactly what apply will write for the same data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session, joinedload

from muster.core.errors import ValidationError
from muster.db.base import utcnow
from muster.models.enums import ChangeType, MigrationStrategy, RankOutcome, RankTrigger
from muster.models.rank import Rank, UserRank
from muster.services.audit import record_rank_history

logger = logging.getLogger(__name__)


@dataclass
class PlannedChange:
    user_rank_id: int
    user_id: int
    username: Optional[str]
    current_rank_id: int
    current_rank_name: str
    new_rank_id: int
    new_rank_name: str
    attendance_since_last_rank: int
    change_type: ChangeType


@dataclass
class MigrationSummary:
    total: int = 0
    promotions: int = 0
    demotions: int = 0
    unchanged: int = 0


@dataclass
class MigrationPreview:
    strategy: MigrationStrategy
    changes: list[PlannedChange]
    summary: MigrationSummary


@dataclass
class MigrationFailure:
    user_id: int
    reason: str


@dataclass
class MigrationApplyResult:
    strategy: MigrationStrategy
    applied: int = 0
    unchanged: int = 0
    failed: list[MigrationFailure] = field(default_factory=list)


def _highest_qualifying_rank(ranks: list[Rank], attendance: int) -> Optional[Rank]:
    qualifying = [
        rank for rank in ranks
        if not rank.attendance_required_since_last_rank or attendance >= rank.attendance_required_since_last_rank
    ]
    return max(qualifying, key=lambda rank: rank.order_index, default=None)


def _change_type(current: Rank, new: Rank) -> ChangeType:
    if new.order_index > current.order_index:
        return ChangeType.PROMOTION
    if new.order_index < current.order_index:
        return ChangeType.DEMOTION
    return ChangeType.UNCHANGED


def _mapping_table(ranks_by_id: dict[int, Rank], mappings: Optional[Iterable]) -> dict[int, Rank]:
    mappings = list(mappings or [])
    if not mappings:
        raise ValidationError("Rank mappings are required for map strategy")
    table: dict[int, Rank] = {}
    for mapping in mappings:
        new_rank = ranks_by_id.get(mapping.new_rank_id)
        if new_rank is None:
            raise ValidationError("Mapping targets an unknown rank", new_rank_id=mapping.new_rank_id)
        table[mapping.old_rank_id] = new_rank
    return table


def plan_migration(
    db: Session,
    *,
    strategy: MigrationStrategy,
    mappings: Optional[Iterable] = None,
) -> list[PlannedChange]:
    """Classify every ranked participant under ``strategy``. Writes nothing.

    ``mappings`` items need ``old_rank_id`` and ``new_rank_id`` attributes.
    Participants without a current rank are left out.
    """
    ranks = db.query(Rank).order_by(Rank.order_index.asc()).all()
    ranks_by_id = {rank.id: rank for rank in ranks}
    table = _mapping_table(ranks_by_id, mappings) if strategy == MigrationStrategy.MAP else {}

    user_ranks = (
        db.query(UserRank)
        .options(joinedload(UserRank.user), joinedload(UserRank.current_rank))
        .filter(UserRank.current_rank_id.is_not(None))
        .order_by(UserRank.id.asc())
        .all()
    )
    planned: list[PlannedChange] = []
    for user_rank in user_ranks:
        current = user_rank.current_rank
        if strategy == MigrationStrategy.RECALCULATE:
            new = _highest_qualifying_rank(ranks, user_rank.attendance_since_last_rank) or current
        elif strategy == MigrationStrategy.MAP:
            new = table.get(current.id, current)
        else:
            new = current
        planned.append(
            PlannedChange(
                user_rank_id=user_rank.id,
                user_id=user_rank.user_id,
                username=user_rank.user.username if user_rank.user else None,
                current_rank_id=current.id,
                current_rank_name=current.name,
                new_rank_id=new.id,
                new_rank_name=new.name,
                attendance_since_last_rank=user_rank.attendance_since_last_rank,
                change_type=_change_type(current, new),
            )
        )
    return planned


def preview_migration(
    db: Session,
    *,
    strategy: MigrationStrategy,
    mappings: Optional[Iterable] = None,
) -> MigrationPreview:
    changes = plan_migration(db, strategy=strategy, mappings=mappings)
    summary = MigrationSummary(total=len(changes))
    for change in changes:
        if change.change_type == ChangeType.PROMOTION:
            summary.promotions += 1
        elif change.change_type == ChangeType.DEMOTION:
            summary.demotions += 1
        else:
            summary.unchanged += 1
    return MigrationPreview(strategy=strategy, changes=changes, summary=summary)


def _apply_change(
    db: Session,
    change: PlannedChange,
    *,
    strategy: MigrationStrategy,
    actor_user_id: Optional[int],
    now: Callable[[], datetime],
) -> None:
    user_rank = db.get(UserRank, change.user_rank_id)
    user_rank.current_rank_id = change.new_rank_id
    user_rank.current_rank = db.get(Rank, change.new_rank_id)
    # The baseline restarts on the new rung.
    user_rank.attendance_since_last_rank = 0
    user_rank.last_ranked_up_at = now()
    db.flush()
    record_rank_history(
        db,
        user_id=change.user_id,
        previous_rank_name=change.current_rank_name,
        new_rank_name=change.new_rank_name,
        attendance_total=0,
        attendance_delta=change.attendance_since_last_rank,
        triggered_by=RankTrigger.SYSTEM_MIGRATION,
        outcome=RankOutcome.APPROVED,
        triggered_by_user_id=actor_user_id,
        note=f"Migration: {strategy.value} strategy applied",
    )


def apply_migration(
    db: Session,
    *,
    strategy: MigrationStrategy,
    mappings: Optional[Iterable] = None,
    actor_user_id: Optional[int] = None,
    now: Callable[[], datetime] = utcnow,
) -> MigrationApplyResult:
    changes = plan_migration(db, strategy=strategy, mappings=mappings)
    result = MigrationApplyResult(strategy=strategy)

    for change in changes:
        if change.change_type == ChangeType.UNCHANGED:
            result.unchanged += 1
            continue
        try:
            with db.begin_nested():
                _apply_change(db, change, strategy=strategy, actor_user_id=actor_user_id, now=now)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.exception("rank_migration_participant_failed", extra={"participant_id": change.user_id})
            result.failed.append(MigrationFailure(change.user_id, str(exc) or exc.__class__.__name__))
            continue
        result.applied += 1

    logger.info("rank_migration_applied", extra={"user_id": actor_user_id})
    return result
