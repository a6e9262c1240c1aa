from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from muster.core.deps import get_current_user, require_admin
from muster.db.session import get_db
from muster.models.user import User
from muster.schemas.migration import MigrationApplyResult, MigrationPreview, MigrationRequest
from muster.schemas.rank import (
    DeclineRequest,
    EligibilityResult,
    PromotionProposalRead,
    ProposeRequest,
    ProposeResult,
    SweepResult,
)
from muster.services.eligibility import check_rankup_eligibility
from muster.services.promotions import (
    approve_proposal,
    auto_rankup_sweep,
    decline_proposal,
    list_pending_proposals,
    propose_promotion,
)
from muster.services.rank_migration import apply_migration, preview_migration

router = APIRouter(prefix="/api/ranks", tags=["ranks"])


@router.get("/eligibility/{user_id}", response_model=EligibilityResult)
def read_eligibility(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> EligibilityResult:
    if current_user.id != user_id and not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorised to view eligibility")
    return check_rankup_eligibility(db, user_id)


@router.get("/promotions/pending", response_model=List[PromotionProposalRead])
def pending_promotions(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> List[PromotionProposalRead]:
    return list_pending_proposals(db)


@router.post("/promotions", response_model=ProposeResult)
def propose(
    payload: ProposeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> ProposeResult:
    outcome = propose_promotion(db, user_id=payload.user_id, actor_user_id=current_user.id)
    db.commit()
    return ProposeResult.model_validate(outcome)


@router.post("/promotions/{proposal_id}/approve", response_model=PromotionProposalRead)
def approve(
    proposal_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> PromotionProposalRead:
    proposal, _history = approve_proposal(db, proposal_id=proposal_id, actor_user_id=current_user.id)
    db.commit()
    db.refresh(proposal)
    return proposal


@router.post("/promotions/{proposal_id}/decline", response_model=PromotionProposalRead)
def decline(
    proposal_id: int,
    payload: DeclineRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> PromotionProposalRead:
    proposal, _history = decline_proposal(
        db,
        proposal_id=proposal_id,
        decline_reason=payload.decline_reason,
        actor_user_id=current_user.id,
    )
    db.commit()
    db.refresh(proposal)
    return proposal


@router.post("/auto-rankup", response_model=SweepResult)
def auto_rankup(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> SweepResult:
    return SweepResult.model_validate(auto_rankup_sweep(db, actor_user_id=current_user.id))


@router.post("/migrate/preview", response_model=MigrationPreview)
def migrate_preview(
    payload: MigrationRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> MigrationPreview:
    return MigrationPreview.model_validate(
        preview_migration(db, strategy=payload.strategy, mappings=payload.rank_mappings)
    )


@router.post("/migrate/apply", response_model=MigrationApplyResult)
def migrate_apply(
    payload: MigrationRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> MigrationApplyResult:
    result = apply_migration(
        db,
        strategy=payload.strategy,
        mappings=payload.rank_mappings,
        actor_user_id=current_user.id,
    )
    return MigrationApplyResult.model_validate(result)
