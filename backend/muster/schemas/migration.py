from __future__ import annotations

from typing import List, Optional

from pydantic import AliasChoices, Field

from muster.models.enums import ChangeType, MigrationStrategy
from muster.schemas.base import ORMModel


class RankMapping(ORMModel):
    old_rank_id: int = Field(validation_alias=AliasChoices("old_rank_id", "oldRankId"))
    new_rank_id: int = Field(validation_alias=AliasChoices("new_rank_id", "newRankId"))


class MigrationRequest(ORMModel):
    strategy: MigrationStrategy
    rank_mappings: Optional[List[RankMapping]] = Field(
        default=None,
        validation_alias=AliasChoices("rank_mappings", "rankMappings"),
    )


class MigrationChange(ORMModel):
    user_id: int
    username: Optional[str] = None
    current_rank_id: Optional[int] = None
    current_rank_name: Optional[str] = None
    new_rank_id: Optional[int] = None
    new_rank_name: Optional[str] = None
    attendance_since_last_rank: int = 0
    change_type: ChangeType


class MigrationSummary(ORMModel):
    total: int = 0
    promotions: int = 0
    demotions: int = 0
    unchanged: int = 0


class MigrationPreview(ORMModel):
    strategy: MigrationStrategy
    changes: List[MigrationChange] = Field(default_factory=list)
    summary: MigrationSummary


class MigrationFailure(ORMModel):
    user_id: int
    reason: str


class MigrationApplyResult(ORMModel):
    strategy: MigrationStrategy
    applied: int = 0
    unchanged: int = 0
    failed: List[MigrationFailure] = Field(default_factory=list)
