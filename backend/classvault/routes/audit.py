from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import audit, models, schemas
from ..auth import get_current_user
from ..database import get_db
from ..rbac import require_admin

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/", response_model=list[schemas.AuditLogOut])
def list_logs(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    require_admin(current_user)
    return audit.list_actions(
        db,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        limit=limit,
    )
