"""Promotion workflow: propose, approve, decline and the bulk auto-rankup sweep.

A proposal moves ``pending -> approved`` or ``pending -> declined`` and never
leaves a terminal state. Approve/decline flip the status with a conditional
UPDATE so that two concurrent decisions on one proposal cannot both win.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Literal, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from muster.core.errors import InvalidState, NotFound
from muster.core.settings import settings
from muster.db.base import utcnow
from muster.models.enums import (
    EligibilityReason,
    MessageCategory,
    ProposalStatus,
    RankOutcome,
    RankTrigger,
)
from muster.models.rank import PromotionProposal, Rank, RankHistory, UserRank
from muster.schemas.rank import EligibilityResult
from muster.services.audit import record_rank_history
from muster.services.eligibility import (
    check_rankup_eligibility,
    find_pending_proposal,
    get_current_attendance,
    get_next_rank,
    get_user_rank,
)
from muster.services.notifications import Audience, dispatch_notification

logger = logging.getLogger(__name__)


@dataclass
class ProposeOutcome:
    action: Literal["promoted", "proposed", "existing"]
    eligibility: EligibilityResult
    proposal: Optional[PromotionProposal] = None
    history: Optional[RankHistory] = None


@dataclass
class SweepEntry:
    user_id: int
    username: Optional[str] = None
    from_rank: Optional[str] = None
    to_rank: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class SweepOutcome:
    promoted: list[SweepEntry] = field(default_factory=list)
    failed: list[SweepEntry] = field(default_factory=list)
    total: int = 0
    aborted: bool = False


def apply_promotion(
    db: Session,
    *,
    user_rank: UserRank,
    next_rank: Rank,
    current_attendance: int,
    triggered_by: RankTrigger,
    actor_user_id: Optional[int] = None,
    discord_actor_id: Optional[str] = None,
    now: Callable[[], datetime] = utcnow,
) -> RankHistory:
    """Move ``user_rank`` to ``next_rank`` and reset the attendance baseline."""
    previous_name = user_rank.current_rank.name if user_rank.current_rank else None
    delta = current_attendance - user_rank.attendance_since_last_rank

    user_rank.current_rank_id = next_rank.id
    user_rank.current_rank = next_rank
    user_rank.attendance_since_last_rank = current_attendance
    user_rank.last_ranked_up_at = now()
    db.flush()

    return record_rank_history(
        db,
        user_id=user_rank.user_id,
        previous_rank_name=previous_name,
        new_rank_name=next_rank.name,
        attendance_total=current_attendance,
        attendance_delta=delta,
        triggered_by=triggered_by,
        outcome=RankOutcome.APPROVED,
        triggered_by_user_id=actor_user_id,
        triggered_by_discord_id=discord_actor_id,
    )


def get_proposal(db: Session, proposal_id: int) -> PromotionProposal:
    proposal = db.get(PromotionProposal, proposal_id)
    if not proposal:
        raise NotFound("Promotion proposal not found", proposal_id=proposal_id)
    return proposal


def list_pending_proposals(db: Session) -> list[PromotionProposal]:
    return (
        db.query(PromotionProposal)
        .filter(PromotionProposal.status == ProposalStatus.PENDING)
        .order_by(PromotionProposal.created_at.asc(), PromotionProposal.id.asc())
        .all()
    )


def _require_pending(proposal: PromotionProposal) -> None:
    if proposal.status != ProposalStatus.PENDING:
        raise InvalidState(
            "Proposal is not pending",
            proposal_id=proposal.id,
            status=proposal.status.value,
        )


def _claim_decision(
    db: Session,
    proposal: PromotionProposal,
    *,
    status: ProposalStatus,
    actor_user_id: Optional[int],
    decided_at: datetime,
    decline_reason: Optional[str] = None,
) -> None:
    _require_pending(proposal)
    values = {
        PromotionProposal.status: status,
        PromotionProposal.decided_by_user_id: actor_user_id,
        PromotionProposal.decided_at: decided_at,
    }
    if decline_reason is not None:
        values[PromotionProposal.decline_reason] = decline_reason
    claimed = (
        db.query(PromotionProposal)
        .filter(PromotionProposal.id == proposal.id, PromotionProposal.status == ProposalStatus.PENDING)
        .update(values, synchronize_session=False)
    )
    if not claimed:
        db.refresh(proposal)
        raise InvalidState(
            "Proposal is not pending",
            proposal_id=proposal.id,
            status=proposal.status.value,
        )
    db.refresh(proposal)


def propose_promotion(
    db: Session,
    *,
    user_id: int,
    actor_user_id: Optional[int] = None,
    now: Callable[[], datetime] = utcnow,
) -> ProposeOutcome:
    user_rank = get_user_rank(db, user_id, lock=True)
    eligibility = check_rankup_eligibility(db, user_id)
    if not eligibility.eligible:
        raise InvalidState(
            eligibility.message,
            reason=eligibility.reason.value,
            eligibility=eligibility.model_dump(mode="json"),
        )

    next_rank = db.get(Rank, eligibility.next_rank.id)
    if eligibility.reason == EligibilityReason.ELIGIBLE_AUTO:
        history = apply_promotion(
            db,
            user_rank=user_rank,
            next_rank=next_rank,
            current_attendance=eligibility.current_attendance,
            triggered_by=RankTrigger.AUTO,
            actor_user_id=actor_user_id,
            now=now,
        )
        dispatch_notification(
            db,
            audience=Audience.users(user_id),
            title=f"Promoted to {next_rank.name}",
            body=f"You have been promoted from {history.previous_rank_name} to {next_rank.name}!",
            category=MessageCategory.RANKUP,
        )
        logger.info("promotion_applied", extra={"participant_id": user_id, "user_id": actor_user_id})
        return ProposeOutcome(action="promoted", eligibility=eligibility, history=history)

    if eligibility.pending_proposal_id:
        existing = db.get(PromotionProposal, eligibility.pending_proposal_id)
        return ProposeOutcome(action="existing", eligibility=eligibility, proposal=existing)

    proposal = PromotionProposal(
        user_id=user_id,
        current_rank_id=eligibility.current_rank.id,
        next_rank_id=next_rank.id,
        attendance_total_at_proposal=eligibility.current_attendance,
        attendance_delta_since_last_rank=eligibility.attendance_delta,
        status=ProposalStatus.PENDING,
    )
    try:
        with db.begin_nested():
            db.add(proposal)
            db.flush()
    except IntegrityError:
        # Lost the race against a concurrent proposal for the same rank.
        existing = find_pending_proposal(db, user_id=user_id, next_rank_id=next_rank.id)
        if existing is None:
            raise
        return ProposeOutcome(action="existing", eligibility=eligibility, proposal=existing)

    username = user_rank.user.display_name or user_rank.user.username
    dispatch_notification(
        db,
        audience=Audience.admins(),
        title="New Rankup Proposal",
        body=f"{username} is eligible for {next_rank.name}",
        category=MessageCategory.RANKUP,
        action_url=settings.admin_promotions_url,
        created_by_id=actor_user_id,
    )
    logger.info("promotion_proposed", extra={"participant_id": user_id, "proposal_id": proposal.id})
    return ProposeOutcome(action="proposed", eligibility=eligibility, proposal=proposal)


def _user_rank_for_proposal(db: Session, proposal: PromotionProposal) -> UserRank:
    user_rank = get_user_rank(db, proposal.user_id, lock=True)
    if not user_rank:
        raise InvalidState("User has no rank record", proposal_id=proposal.id, user_id=proposal.user_id)
    return user_rank


def approve_proposal(
    db: Session,
    *,
    proposal_id: int,
    actor_user_id: Optional[int] = None,
    discord_actor_id: Optional[str] = None,
    triggered_by: RankTrigger = RankTrigger.ADMIN_MANUAL,
    now: Callable[[], datetime] = utcnow,
) -> tuple[PromotionProposal, RankHistory]:
    proposal = get_proposal(db, proposal_id)
    _require_pending(proposal)
    user_rank = _user_rank_for_proposal(db, proposal)
    if user_rank.current_rank_id != proposal.current_rank_id:
        raise InvalidState(
            "Participant's rank changed since the proposal was raised",
            proposal_id=proposal.id,
            proposal_rank_id=proposal.current_rank_id,
            current_rank_id=user_rank.current_rank_id,
        )
    _claim_decision(
        db,
        proposal,
        status=ProposalStatus.APPROVED,
        actor_user_id=actor_user_id,
        decided_at=now(),
    )

    current_attendance = get_current_attendance(db, proposal.user_id)
    proposal.attendance_total_at_proposal = current_attendance
    proposal.attendance_delta_since_last_rank = current_attendance - user_rank.attendance_since_last_rank

    history = apply_promotion(
        db,
        user_rank=user_rank,
        next_rank=proposal.next_rank,
        current_attendance=current_attendance,
        triggered_by=triggered_by,
        actor_user_id=actor_user_id,
        discord_actor_id=discord_actor_id,
        now=now,
    )
    dispatch_notification(
        db,
        audience=Audience.users(proposal.user_id),
        title="Rank Approved",
        body=f"You have been promoted to {proposal.next_rank.name}.",
        category=MessageCategory.RANKUP,
        created_by_id=actor_user_id,
    )
    logger.info("promotion_approved", extra={"proposal_id": proposal.id, "user_id": actor_user_id})
    return proposal, history


def decline_proposal(
    db: Session,
    *,
    proposal_id: int,
    decline_reason: Optional[str] = None,
    actor_user_id: Optional[int] = None,
    discord_actor_id: Optional[str] = None,
    triggered_by: RankTrigger = RankTrigger.ADMIN_MANUAL,
    now: Callable[[], datetime] = utcnow,
) -> tuple[PromotionProposal, RankHistory]:
    proposal = get_proposal(db, proposal_id)
    _claim_decision(
        db,
        proposal,
        status=ProposalStatus.DECLINED,
        actor_user_id=actor_user_id,
        decided_at=now(),
        decline_reason=decline_reason,
    )

    user_rank = _user_rank_for_proposal(db, proposal)
    current_attendance = get_current_attendance(db, proposal.user_id)
    delta = current_attendance - user_rank.attendance_since_last_rank
    proposal.attendance_total_at_proposal = current_attendance
    proposal.attendance_delta_since_last_rank = delta
    # Declining still advances the baseline so the same delta cannot re-trigger.
    user_rank.attendance_since_last_rank = current_attendance
    db.flush()

    history = record_rank_history(
        db,
        user_id=proposal.user_id,
        previous_rank_name=proposal.current_rank.name,
        new_rank_name=proposal.next_rank.name,
        attendance_total=current_attendance,
        attendance_delta=delta,
        triggered_by=triggered_by,
        outcome=RankOutcome.DECLINED,
        triggered_by_user_id=actor_user_id,
        triggered_by_discord_id=discord_actor_id,
        decline_reason=decline_reason,
    )
    dispatch_notification(
        db,
        audience=Audience.users(proposal.user_id),
        title="Rank Proposal Declined",
        body=f"Proposal declined: {decline_reason}" if decline_reason else "Your rankup proposal was declined.",
        category=MessageCategory.RANKUP,
        created_by_id=actor_user_id,
    )
    logger.info("promotion_declined", extra={"proposal_id": proposal.id, "user_id": actor_user_id})
    return proposal, history


def _sweep_participant(
    db: Session,
    user_rank: UserRank,
    *,
    actor_user_id: Optional[int],
    now: Callable[[], datetime],
) -> Optional[tuple[str, SweepEntry]]:
    username = user_rank.user.username if user_rank.user else None
    if user_rank.retired or not user_rank.interview_done:
        return None

    current_rank = user_rank.current_rank
    if current_rank is None:
        return "failed", SweepEntry(user_rank.user_id, username, reason="No current rank assigned")

    next_rank = get_next_rank(db, current_rank)
    if next_rank is None or not next_rank.attendance_required_since_last_rank:
        return None

    required = next_rank.attendance_required_since_last_rank
    current_attendance = get_current_attendance(db, user_rank.user_id)
    delta = current_attendance - user_rank.attendance_since_last_rank
    if delta < required:
        return "failed", SweepEntry(
            user_rank.user_id,
            username,
            from_rank=current_rank.name,
            reason=f"Need {required - delta} more attendance ops",
        )

    apply_promotion(
        db,
        user_rank=user_rank,
        next_rank=next_rank,
        current_attendance=current_attendance,
        triggered_by=RankTrigger.AUTO,
        actor_user_id=actor_user_id,
        now=now,
    )
    dispatch_notification(
        db,
        audience=Audience.users(user_rank.user_id),
        title=f"Promoted to {next_rank.name}",
        body=f"You have been promoted from {current_rank.name} to {next_rank.name}!",
        category=MessageCategory.RANKUP,
    )
    return "promoted", SweepEntry(user_rank.user_id, username, from_rank=current_rank.name, to_rank=next_rank.name)


def auto_rankup_sweep(
    db: Session,
    *,
    actor_user_id: Optional[int] = None,
    stop: Optional[Callable[[], bool]] = None,
    now: Callable[[], datetime] = utcnow,
) -> SweepOutcome:
    """Promote every participant whose attendance requirement is met.

    Each participant is evaluated and committed on its own; a failure is
    recorded against that participant and the sweep moves on. ``stop`` is
    polled before each participant.
    """
    rows = db.query(UserRank.id, UserRank.user_id).order_by(UserRank.id.asc()).all()
    outcome = SweepOutcome(total=len(rows))

    for user_rank_id, user_id in rows:
        if stop is not None and stop():
            outcome.aborted = True
            break
        try:
            with db.begin_nested():
                user_rank = db.get(UserRank, user_rank_id)
                entry = _sweep_participant(db, user_rank, actor_user_id=actor_user_id, now=now)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.exception("auto_rankup_participant_failed", extra={"participant_id": user_id})
            outcome.failed.append(SweepEntry(user_id, reason=str(exc) or exc.__class__.__name__))
            continue

        if entry is None:
            continue
        kind, result = entry
        if kind == "promoted":
            outcome.promoted.append(result)
        else:
            outcome.failed.append(result)

    logger.info(
        "auto_rankup_sweep_finished",
        extra={"user_id": actor_user_id},
    )
    return outcome
