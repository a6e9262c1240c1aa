"""Promotion actions for the Discord bot, authenticated with the static bot token."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from muster.core.deps import require_bot
from muster.db.session import get_db
from muster.models.enums import RankTrigger
from muster.schemas.rank import BotDecisionRequest, PromotionProposalRead
from muster.services.promotions import approve_proposal, decline_proposal, list_pending_proposals

router = APIRouter(prefix="/api/ranks/bot", tags=["bot"], dependencies=[Depends(require_bot)])


@router.get("/promotions", response_model=List[PromotionProposalRead])
def bot_pending_promotions(db: Session = Depends(get_db)) -> List[PromotionProposalRead]:
    return list_pending_proposals(db)


@router.post("/promotions/{proposal_id}/approve", response_model=PromotionProposalRead)
def bot_approve(
    proposal_id: int,
    payload: BotDecisionRequest,
    db: Session = Depends(get_db),
) -> PromotionProposalRead:
    proposal, _history = approve_proposal(
        db,
        proposal_id=proposal_id,
        discord_actor_id=payload.discord_actor_id,
        triggered_by=RankTrigger.BOT,
    )
    db.commit()
    db.refresh(proposal)
    return proposal


@router.post("/promotions/{proposal_id}/decline", response_model=PromotionProposalRead)
def bot_decline(
    proposal_id: int,
    payload: BotDecisionRequest,
    db: Session = Depends(get_db),
) -> PromotionProposalRead:
    proposal, _history = decline_proposal(
        db,
        proposal_id=proposal_id,
        decline_reason=payload.decline_reason,
        discord_actor_id=payload.discord_actor_id,
        triggered_by=RankTrigger.BOT,
    )
    db.commit()
    db.refresh(proposal)
    return proposal
