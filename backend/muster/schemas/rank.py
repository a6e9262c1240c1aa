from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field

from muster.models.enums import EligibilityReason, ProposalStatus, RankOutcome, RankTrigger
from muster.schemas.base import ORMModel


class RankSummary(ORMModel):
    id: int
    name: str
    abbreviation: str
    order_index: int
    attendance_required_since_last_rank: Optional[int] = None
    auto_rankup_enabled: bool = False


class EligibilityResult(ORMModel):
    user_id: int
    eligible: bool
    reason: EligibilityReason
    message: str
    current_rank: Optional[RankSummary] = None
    next_rank: Optional[RankSummary] = None
    current_attendance: int = 0
    attendance_since_last_rank: int = 0
    attendance_delta: int = 0
    attendance_required: Optional[int] = None
    attendance_remaining: int = 0
    missing_training_ids: List[int] = Field(default_factory=list)
    pending_proposal_id: Optional[int] = None


class PromotionProposalRead(ORMModel):
    id: int
    user_id: int
    current_rank_id: int
    next_rank_id: int
    attendance_total_at_proposal: int
    attendance_delta_since_last_rank: int
    status: ProposalStatus
    decline_reason: Optional[str] = None
    decided_by_user_id: Optional[int] = None
    decided_at: Optional[datetime] = None
    created_at: datetime


class RankHistoryRead(ORMModel):
    id: int
    user_id: int
    previous_rank_name: Optional[str] = None
    new_rank_name: str
    attendance_total_at_change: int
    attendance_delta_since_last_rank: int
    triggered_by: RankTrigger
    triggered_by_user_id: Optional[int] = None
    triggered_by_discord_id: Optional[str] = None
    outcome: RankOutcome
    decline_reason: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime


class ProposeRequest(ORMModel):
    user_id: int = Field(validation_alias=AliasChoices("user_id", "userId", "participantId"))


class ProposeResult(ORMModel):
    action: Literal["promoted", "proposed", "existing"]
    eligibility: EligibilityResult
    proposal: Optional[PromotionProposalRead] = None
    history: Optional[RankHistoryRead] = None


class DeclineRequest(ORMModel):
    decline_reason: Optional[str] = Field(
        default=None,
        max_length=1000,
        validation_alias=AliasChoices("decline_reason", "declineReason", "reason"),
    )


class BotDecisionRequest(ORMModel):
    discord_actor_id: str = Field(min_length=1, validation_alias=AliasChoices("discord_actor_id", "discordActorId"))
    decline_reason: Optional[str] = Field(
        default=None,
        max_length=1000,
        validation_alias=AliasChoices("decline_reason", "declineReason", "reason"),
    )


class SweepEntry(ORMModel):
    user_id: int
    username: Optional[str] = None
    from_rank: Optional[str] = None
    to_rank: Optional[str] = None
    reason: Optional[str] = None


class SweepResult(ORMModel):
    promoted: List[SweepEntry] = Field(default_factory=list)
    failed: List[SweepEntry] = Field(default_factory=list)
    total: int = 0
    aborted: bool = False


class BulkRankAssignRequest(ORMModel):
    user_ids: List[int] = Field(min_length=1, validation_alias=AliasChoices("user_ids", "userIds"))
    rank_id: int = Field(validation_alias=AliasChoices("rank_id", "rankId"))


class BulkRetireToggleRequest(ORMModel):
    user_ids: List[int] = Field(min_length=1, validation_alias=AliasChoices("user_ids", "userIds"))
    retired: Optional[bool] = None


class BulkUpdateResult(ORMModel):
    updated: int
    user_ids: List[int] = Field(default_factory=list)
