from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from muster.core.errors import IdentityNotFound
from muster.core.settings import settings
from muster.models.user import AuthAccount, User


def resolve_participant(db: Session, external_id: str, *, provider: Optional[str] = None) -> int:
    """Map an external identity (e.g. a Steam id) to the internal user id.

    Unlinked identities are a hard stop: an admin has to link the account.
    """
    provider = provider or settings.identity_provider
    account = (
        db.query(AuthAccount)
        .filter(AuthAccount.provider == provider, AuthAccount.provider_user_id == str(external_id))
        .first()
    )
    if not account:
        raise IdentityNotFound(
            f"User with this {provider} id not found",
            provider=provider,
            external_id=str(external_id),
        )
    return account.user_id


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise IdentityNotFound("User not found", user_id=user_id)
    return user


def find_user_by_username(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == username).first()


def admin_user_ids(db: Session) -> list[int]:
    rows = db.query(User.id).filter(User.is_admin.is_(True), User.is_active.is_(True)).order_by(User.id.asc()).all()
    return [row.id for row in rows]


def active_user_ids(db: Session) -> list[int]:
    rows = db.query(User.id).filter(User.is_active.is_(True)).order_by(User.id.asc()).all()
    return [row.id for row in rows]
