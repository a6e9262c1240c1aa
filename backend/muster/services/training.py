from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from muster.core.errors import InvalidState, NotFound
from muster.models.rank import Rank, RankTransitionRequirement, UserRank
from muster.models.training import Training, TrainingPrerequisite, UserTraining
from muster.services.identity import get_user


def get_training(db: Session, training_id: int) -> Training:
    training = db.get(Training, training_id)
    if not training:
        raise NotFound("Training not found", training_id=training_id)
    return training


def completed_training_ids(db: Session, user_id: int) -> set[int]:
    """Trainings the user holds and does not need to redo."""
    rows = (
        db.query(UserTraining.training_id)
        .filter(UserTraining.user_id == user_id, UserTraining.needs_retraining.is_(False))
        .all()
    )
    return {row.training_id for row in rows}


def required_training_ids(db: Session, target_rank_id: int) -> list[int]:
    requirement = (
        db.query(RankTransitionRequirement)
        .filter(RankTransitionRequirement.target_rank_id == target_rank_id)
        .first()
    )
    if not requirement:
        return []
    return sorted(t.id for t in requirement.required_trainings)


def missing_trainings_for_rank(db: Session, *, user_id: int, target_rank_id: int) -> list[int]:
    completed = completed_training_ids(db, user_id)
    return [tid for tid in required_training_ids(db, target_rank_id) if tid not in completed]


def _prerequisite_graph(db: Session) -> dict[int, list[int]]:
    graph: dict[int, list[int]] = {}
    for training_id, required_id in db.query(TrainingPrerequisite.training_id, TrainingPrerequisite.required_training_id):
        graph.setdefault(training_id, []).append(required_id)
    return graph


def would_create_cycle(graph: dict[int, list[int]], training_id: int, required_training_id: int) -> bool:
    """True if adding ``training_id -> required_training_id`` closes a cycle.

    Iterative depth-first search from the new prerequisite; reaching
    ``training_id`` again means the edge would make the graph cyclic.
    """
    if training_id == required_training_id:
        return True
    visited: set[int] = set()
    stack = [required_training_id]
    while stack:
        node = stack.pop()
        if node == training_id:
            return True
        if node in visited:
            continue
        visited.add(node)
        stack.extend(n for n in graph.get(node, ()) if n not in visited)
    return False


def add_prerequisite(db: Session, *, training_id: int, required_training_id: int) -> TrainingPrerequisite:
    get_training(db, training_id)
    get_training(db, required_training_id)

    if would_create_cycle(_prerequisite_graph(db), training_id, required_training_id):
        raise InvalidState(
            "Adding this prerequisite would create a cycle",
            training_id=training_id,
            required_training_id=required_training_id,
        )

    edge = TrainingPrerequisite(training_id=training_id, required_training_id=required_training_id)
    try:
        with db.begin_nested():
            db.add(edge)
            db.flush()
    except IntegrityError as exc:
        raise InvalidState(
            "Prerequisite already exists",
            training_id=training_id,
            required_training_id=required_training_id,
        ) from exc
    return edge


def get_unmet_requirements(db: Session, *, training_id: int, user_id: int) -> dict:
    training = get_training(db, training_id)
    get_user(db, user_id)
    completed = completed_training_ids(db, user_id)

    unmet_rank: Optional[dict] = None
    if training.minimum_rank_id is not None:
        minimum = db.get(Rank, training.minimum_rank_id)
        user_rank = db.query(UserRank).filter(UserRank.user_id == user_id).first()
        current = user_rank.current_rank if user_rank else None
        if minimum and (current is None or current.order_index < minimum.order_index):
            unmet_rank = {
                "required_rank_id": minimum.id,
                "required_rank_name": minimum.name,
                "current_rank_id": current.id if current else None,
                "current_rank_name": current.name if current else None,
            }

    prerequisites = (
        db.query(TrainingPrerequisite)
        .filter(TrainingPrerequisite.training_id == training_id)
        .order_by(TrainingPrerequisite.required_training_id.asc())
        .all()
    )
    unmet_trainings = [
        {"training_id": p.required_training_id, "name": p.required_training.name}
        for p in prerequisites
        if p.required_training_id not in completed
    ]
    return {
        "training_id": training_id,
        "user_id": user_id,
        "met": unmet_rank is None and not unmet_trainings,
        "unmet_rank": unmet_rank,
        "unmet_trainings": unmet_trainings,
    }
