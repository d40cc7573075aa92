from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user
from ..database import get_db
from ..services import notifications as notification_service

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("/", response_model=list[schemas.NotificationOut])
def list_notifications(
    is_read: Optional[bool] = Query(None, description="Filter by read status"),
    notification_type: Optional[str] = Query(None, description="Filter by notification type"),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return notification_service.list_for_user(
        db,
        user.id,
        is_read=is_read,
        notification_type=notification_type,
    )


@router.post("/{notification_id}/read", response_model=schemas.NotificationOut)
def mark_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    notif = notification_service.mark_read(db, notification_id, user.id)
    if not notif:
        raise HTTPException(status_code=404, detail="Notification not found")
    db.commit()
    db.refresh(notif)
    return notif


@router.post("/mark-all-read")
def mark_all_read(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Mark all unread notifications as read"""
    updated = notification_service.mark_all_read(db, user.id)
    db.commit()
    return {"message": "All notifications marked as read", "updated": updated}
