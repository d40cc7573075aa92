from datetime import datetime, timezone
from uuid import UUID
from sqlalchemy.orm import Session
from . import models

APPROVE_REQUEST = "approve_request"
REJECT_REQUEST = "reject_request"
CANCEL_REQUEST = "cancel_request"
DELETE_FILE = "delete_file"
RESTORE_FILE = "restore_file"
RENAME_FILE = "rename_file"
SET_CURRENT_VERSION = "set_current_version"


def log_action(
    db: Session,
    actor_id: str | UUID,
    action: str,
    entity_type: str | None = None,
    entity_id: str | UUID | None = None,
    description: str | None = None,
    details: dict | None = None,
):
    log = models.AuditLog(
        actor_id=UUID(str(actor_id)),
        action=action,
        entity_type=entity_type,
        entity_id=UUID(str(entity_id)) if entity_id else None,
        description=description,
        details=details or {},
        created_at=datetime.now(timezone.utc),
    )
    db.add(log)
    db.commit()
    db.refresh(log)
    return log


def list_actions(
    db: Session,
    *,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: UUID | None = None,
    limit: int = 100,
):
    query = db.query(models.AuditLog)
    if action:
        query = query.filter(models.AuditLog.action == action)
    if entity_type:
        query = query.filter(models.AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(models.AuditLog.entity_id == entity_id)
    return query.order_by(models.AuditLog.created_at.desc()).limit(limit).all()
