"""Rank eligibility evaluation.

Reads persisted state and writes nothing. Every result carries the resolved
rank summaries and attendance figures, whichever branch decided it.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from muster.models.enums import EligibilityReason, ProposalStatus
from muster.models.rank import PromotionProposal, Rank, UserRank
from muster.schemas.rank import EligibilityResult, RankSummary
from muster.services.attendance_query import AttendanceFilter, count_attendance
from muster.services.identity import get_user
from muster.services.training import missing_trainings_for_rank


def get_current_attendance(db: Session, user_id: int) -> int:
    """Present-equivalent attendance on main operations."""
    return count_attendance(db, AttendanceFilter.qualifying(user_id))


def get_user_rank(db: Session, user_id: int, *, lock: bool = False) -> Optional[UserRank]:
    query = db.query(UserRank).filter(UserRank.user_id == user_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def get_next_rank(db: Session, current: Rank) -> Optional[Rank]:
    return (
        db.query(Rank)
        .filter(Rank.order_index > current.order_index)
        .order_by(Rank.order_index.asc())
        .first()
    )


def find_pending_proposal(db: Session, *, user_id: int, next_rank_id: int) -> Optional[PromotionProposal]:
    return (
        db.query(PromotionProposal)
        .filter(
            PromotionProposal.user_id == user_id,
            PromotionProposal.next_rank_id == next_rank_id,
            PromotionProposal.status == ProposalStatus.PENDING,
        )
        .first()
    )


def _summary(rank: Optional[Rank]) -> Optional[RankSummary]:
    return RankSummary.model_validate(rank) if rank else None


def check_rankup_eligibility(db: Session, user_id: int) -> EligibilityResult:
    get_user(db, user_id)
    user_rank = get_user_rank(db, user_id)
    current_rank = user_rank.current_rank if user_rank else None
    next_rank = get_next_rank(db, current_rank) if current_rank else None

    current_attendance = get_current_attendance(db, user_id)
    baseline = user_rank.attendance_since_last_rank if user_rank else 0
    delta = current_attendance - baseline
    required = next_rank.attendance_required_since_last_rank if next_rank else None

    def result(reason: EligibilityReason, message: str, **extra) -> EligibilityResult:
        return EligibilityResult(
            user_id=user_id,
            eligible=reason in (EligibilityReason.ELIGIBLE_AUTO, EligibilityReason.ELIGIBLE_MANUAL),
            reason=reason,
            message=message,
            current_rank=_summary(current_rank),
            next_rank=_summary(next_rank),
            current_attendance=current_attendance,
            attendance_since_last_rank=baseline,
            attendance_delta=delta,
            attendance_required=required,
            attendance_remaining=max((required or 0) - delta, 0),
            **extra,
        )

    if current_rank is None:
        return result(EligibilityReason.INELIGIBLE_NO_CURRENT_RANK, "No current rank assigned")
    if user_rank.retired:
        return result(EligibilityReason.INELIGIBLE_RETIRED, "User is retired")
    if not user_rank.interview_done:
        return result(EligibilityReason.INELIGIBLE_INTERVIEW, "Interview not completed")
    if next_rank is None:
        return result(EligibilityReason.INELIGIBLE_NO_NEXT_RANK, "Already at the highest rank")

    if required and delta < required:
        return result(
            EligibilityReason.INELIGIBLE_ATTENDANCE,
            f"Need {required - delta} more attendance ops",
        )

    missing = missing_trainings_for_rank(db, user_id=user_id, target_rank_id=next_rank.id)
    if missing:
        return result(
            EligibilityReason.INELIGIBLE_TRAINING,
            f"Missing {len(missing)} required training(s)",
            missing_training_ids=missing,
        )

    pending = find_pending_proposal(db, user_id=user_id, next_rank_id=next_rank.id)
    pending_id = pending.id if pending else None
    if next_rank.auto_rankup_enabled:
        return result(
            EligibilityReason.ELIGIBLE_AUTO,
            f"Eligible for automatic promotion to {next_rank.name}",
            pending_proposal_id=pending_id,
        )
    return result(
        EligibilityReason.ELIGIBLE_MANUAL,
        f"Eligible for promotion to {next_rank.name}, pending admin approval",
        pending_proposal_id=pending_id,
    )
