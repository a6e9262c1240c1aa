from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from muster.core.errors import NotFound
from muster.db.base import utcnow
from muster.models.enums import RankOutcome, RankTrigger
from muster.models.rank import Rank, UserRank
from muster.services.audit import record_rank_history
from muster.services.eligibility import get_current_attendance
from muster.services.identity import get_user


def _get_rank(db: Session, rank_id: int) -> Rank:
    rank = db.get(Rank, rank_id)
    if not rank:
        raise NotFound("Rank not found", rank_id=rank_id)
    return rank


def _get_or_create_user_rank(db: Session, user_id: int) -> UserRank:
    user_rank = db.query(UserRank).filter(UserRank.user_id == user_id).first()
    if user_rank is None:
        user_rank = UserRank(user_id=user_id, attendance_since_last_rank=0)
        db.add(user_rank)
        db.flush()
    return user_rank


def bulk_rank_assign(
    db: Session,
    *,
    user_ids: Sequence[int],
    rank_id: int,
    actor_user_id: Optional[int] = None,
    now: Callable[[], datetime] = utcnow,
) -> list[int]:
    """Set ``rank_id`` as the current rank of every user, baselining their attendance.

    Unknown user ids fail the whole request before anything is written.
    """
    rank = _get_rank(db, rank_id)
    user_ids = list(dict.fromkeys(user_ids))
    for user_id in user_ids:
        get_user(db, user_id)

    for user_id in user_ids:
        user_rank = _get_or_create_user_rank(db, user_id)
        previous_name = user_rank.current_rank.name if user_rank.current_rank else None
        attendance = get_current_attendance(db, user_id)
        delta = attendance - user_rank.attendance_since_last_rank

        user_rank.current_rank_id = rank.id
        user_rank.current_rank = rank
        user_rank.attendance_since_last_rank = attendance
        user_rank.last_ranked_up_at = now()
        db.flush()

        record_rank_history(
            db,
            user_id=user_id,
            previous_rank_name=previous_name,
            new_rank_name=rank.name,
            attendance_total=attendance,
            attendance_delta=delta,
            triggered_by=RankTrigger.ADMIN,
            outcome=RankOutcome.APPROVED,
            triggered_by_user_id=actor_user_id,
            note="Bulk rank assignment",
        )
    return user_ids


def bulk_retire_toggle(
    db: Session,
    *,
    user_ids: Sequence[int],
    retired: Optional[bool] = None,
) -> list[int]:
    """Set (or flip, when ``retired`` is None) the retired flag on each user's rank record."""
    user_ids = list(dict.fromkeys(user_ids))
    for user_id in user_ids:
        get_user(db, user_id)

    for user_id in user_ids:
        user_rank = _get_or_create_user_rank(db, user_id)
        user_rank.retired = (not user_rank.retired) if retired is None else retired
    db.flush()
    return user_ids
