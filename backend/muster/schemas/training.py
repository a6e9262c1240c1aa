from __future__ import annotations

from typing import List, Optional

from pydantic import AliasChoices, Field

from muster.schemas.base import ORMModel


class PrerequisiteCreate(ORMModel):
    required_training_id: int = Field(
        validation_alias=AliasChoices("required_training_id", "requiredTrainingId"),
    )


class PrerequisiteRead(ORMModel):
    id: int
    training_id: int
    required_training_id: int


class UnmetRank(ORMModel):
    required_rank_id: int
    required_rank_name: str
    current_rank_id: Optional[int] = None
    current_rank_name: Optional[str] = None


class UnmetTraining(ORMModel):
    training_id: int
    name: str


class UnmetRequirements(ORMModel):
    training_id: int
    user_id: int
    met: bool
    unmet_rank: Optional[UnmetRank] = None
    unmet_trainings: List[UnmetTraining] = Field(default_factory=list)
