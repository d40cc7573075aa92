"""In-app notification records for upload decisions."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models

# purpose: persist decision notifications inside the same unit of work as the decision
# status: active
# related_docs: DESIGN.md


def expiry_days() -> int:
    return int(os.getenv("NOTIFICATION_EXPIRY_DAYS", "30"))


def create_notification(
    db: Session,
    *,
    user_id: UUID,
    title: str,
    notification_type: str,
    message: str | None = None,
    action_url: str | None = None,
    action_label: str | None = None,
    related_entity_type: str | None = None,
    related_entity_id: UUID | None = None,
    expires_at: datetime | None = None,
) -> models.Notification:
    """Stage a notification on the session; the caller owns the commit."""

    now = datetime.now(timezone.utc)
    notification = models.Notification(
        user_id=user_id,
        title=title,
        message=message,
        notification_type=notification_type,
        action_url=action_url,
        action_label=action_label,
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
        created_at=now,
        expires_at=expires_at or now + timedelta(days=expiry_days()),
    )
    db.add(notification)
    db.flush()
    return notification


def list_for_user(
    db: Session,
    user_id: UUID,
    *,
    is_read: bool | None = None,
    notification_type: str | None = None,
) -> list[models.Notification]:
    query = db.query(models.Notification).filter(
        models.Notification.user_id == user_id,
        models.Notification.expires_at > datetime.now(timezone.utc),
    )
    if is_read is not None:
        query = query.filter(models.Notification.is_read == is_read)
    if notification_type:
        query = query.filter(models.Notification.notification_type == notification_type)
    return query.order_by(models.Notification.created_at.desc()).all()


def mark_read(db: Session, notification_id: UUID, user_id: UUID) -> models.Notification | None:
    notification = (
        db.query(models.Notification)
        .filter_by(id=notification_id, user_id=user_id)
        .first()
    )
    if notification is None:
        return None
    notification.is_read = True
    return notification


def mark_all_read(db: Session, user_id: UUID) -> int:
    return (
        db.query(models.Notification)
        .filter(
            models.Notification.user_id == user_id,
            models.Notification.is_read.is_(False),
        )
        .update({models.Notification.is_read: True}, synchronize_session=False)
    )


def purge_expired(db: Session, *, now: datetime | None = None) -> int:
    """Delete notifications whose expiry has passed, returning the count."""

    cutoff = now or datetime.now(timezone.utc)
    return (
        db.query(models.Notification)
        .filter(models.Notification.expires_at < cutoff)
        .delete(synchronize_session=False)
    )
