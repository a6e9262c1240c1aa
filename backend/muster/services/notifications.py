"""Notification dispatch.

Callers decide when and what to send. Delivery is written to the message
inbox inside a SAVEPOINT so a failure here never rolls back the caller's
attendance or promotion writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from muster.core.errors import DependencyFailure
from muster.core.observability import notification_failures_total
from muster.models.enums import AudienceType, MessageCategory
from muster.models.message import Message, MessageRecipient
from muster.services.identity import active_user_ids, admin_user_ids

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Audience:
    type: AudienceType
    user_ids: Sequence[int] = field(default_factory=tuple)

    @classmethod
    def users(cls, *user_ids: int) -> "Audience":
        return cls(AudienceType.USER, tuple(user_ids))

    @classmethod
    def admins(cls) -> "Audience":
        return cls(AudienceType.ADMIN)

    @classmethod
    def everyone(cls) -> "Audience":
        return cls(AudienceType.ALL)


def _resolve_recipients(db: Session, audience: Audience) -> list[int]:
    if audience.type == AudienceType.ADMIN:
        return admin_user_ids(db)
    if audience.type == AudienceType.ALL:
        return active_user_ids(db)
    return list(dict.fromkeys(audience.user_ids))


def _write_message(
    db: Session,
    *,
    audience: Audience,
    title: str,
    body: str,
    category: MessageCategory,
    action_url: Optional[str],
    created_by_id: Optional[int],
) -> Optional[Message]:
    recipient_ids = _resolve_recipients(db, audience)
    if not recipient_ids:
        return None
    message = Message(
        title=title,
        body=body,
        type=category,
        action_url=action_url,
        created_by_id=created_by_id,
    )
    message.recipients = [
        MessageRecipient(user_id=user_id, audience_type=audience.type, channel="web", is_read=False)
        for user_id in recipient_ids
    ]
    db.add(message)
    db.flush()
    return message


def dispatch_notification(
    db: Session,
    *,
    audience: Audience,
    title: str,
    body: str,
    category: MessageCategory = MessageCategory.GENERAL,
    action_url: Optional[str] = None,
    created_by_id: Optional[int] = None,
) -> Optional[Message]:
    """Fire-and-forget: returns the message, or ``None`` if nothing was sent."""
    try:
        with db.begin_nested():
            try:
                return _write_message(
                    db,
                    audience=audience,
                    title=title,
                    body=body,
                    category=category,
                    action_url=action_url,
                    created_by_id=created_by_id,
                )
            except SQLAlchemyError as exc:
                raise DependencyFailure(
                    "Notification dispatch failed",
                    title=title,
                    audience=audience.type.value,
                ) from exc
    except DependencyFailure as failure:
        notification_failures_total.inc()
        logger.warning(
            "notification_dispatch_failed: %s",
            failure.__cause__,
            extra={"error_code": failure.code},
        )
        return None
