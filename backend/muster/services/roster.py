"""Read-only roster queries: orbats and sign-ups."""

from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session, joinedload

from muster.core.errors import ScheduleNotFound
from muster.models.roster import Orbat, Signup


def get_orbat(db: Session, orbat_id: int) -> Orbat:
    orbat = db.get(Orbat, orbat_id)
    if not orbat:
        raise ScheduleNotFound("Orbat not found", orbat_id=orbat_id)
    return orbat


def signups_for_date(db: Session, *, user_id: int, on_date: date) -> list[Signup]:
    """Sign-ups of ``user_id`` for orbats scheduled on ``on_date``."""
    return (
        db.query(Signup)
        .join(Orbat, Signup.orbat_id == Orbat.id)
        .options(joinedload(Signup.orbat))
        .filter(Signup.user_id == user_id, Orbat.event_date == on_date)
        .order_by(Orbat.id.asc())
        .all()
    )


def get_signup_for_orbat(db: Session, *, signup_id: int, orbat_id: int) -> Signup:
    signup = db.query(Signup).filter(Signup.id == signup_id, Signup.orbat_id == orbat_id).first()
    if not signup:
        raise ScheduleNotFound(
            "Signup not found or does not belong to this orbat",
            signup_id=signup_id,
            orbat_id=orbat_id,
        )
    return signup


def find_signup(db: Session, *, user_id: int, orbat_id: int) -> Signup | None:
    return db.query(Signup).filter(Signup.user_id == user_id, Signup.orbat_id == orbat_id).first()

