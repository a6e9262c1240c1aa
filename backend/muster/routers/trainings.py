from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from muster.core.deps import get_current_user, require_admin
from muster.db.session import get_db
from muster.models.user import User
from muster.schemas.training import PrerequisiteCreate, PrerequisiteRead, UnmetRequirements
from muster.services.training import add_prerequisite, get_unmet_requirements

router = APIRouter(prefix="/api/trainings", tags=["trainings"])


@router.post("/{training_id}/prerequisites", response_model=PrerequisiteRead, status_code=status.HTTP_201_CREATED)
def create_prerequisite(
    training_id: int,
    payload: PrerequisiteCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> PrerequisiteRead:
    edge = add_prerequisite(db, training_id=training_id, required_training_id=payload.required_training_id)
    db.commit()
    db.refresh(edge)
    return edge


@router.get("/{training_id}/unmet-requirements/{user_id}", response_model=UnmetRequirements)
def unmet_requirements(
    training_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UnmetRequirements:
    return UnmetRequirements.model_validate(get_unmet_requirements(db, training_id=training_id, user_id=user_id))
