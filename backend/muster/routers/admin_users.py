from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from muster.core.deps import require_admin
from muster.db.session import get_db
from muster.models.user import User
from muster.schemas.rank import BulkRankAssignRequest, BulkRetireToggleRequest, BulkUpdateResult
from muster.services.user_ranks import bulk_rank_assign, bulk_retire_toggle

router = APIRouter(prefix="/api/admin/users", tags=["admin"])


@router.post("/bulk-rank-assign", response_model=BulkUpdateResult)
def assign_rank(
    payload: BulkRankAssignRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> BulkUpdateResult:
    user_ids = bulk_rank_assign(
        db,
        user_ids=payload.user_ids,
        rank_id=payload.rank_id,
        actor_user_id=current_user.id,
    )
    db.commit()
    return BulkUpdateResult(updated=len(user_ids), user_ids=user_ids)


@router.post("/bulk-retire-toggle", response_model=BulkUpdateResult)
def toggle_retired(
    payload: BulkRetireToggleRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> BulkUpdateResult:
    user_ids = bulk_retire_toggle(db, user_ids=payload.user_ids, retired=payload.retired)
    db.commit()
    return BulkUpdateResult(updated=len(user_ids), user_ids=user_ids)
