from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from .. import audit, models, schemas
from ..auth import get_current_user
from ..database import get_db
from ..errors import LifecycleError
from ..rbac import require_admin
from ..services import approvals, upload_requests
from ..storage import StorageArea, get_storage
from .common import to_http_exception

router = APIRouter(prefix="/api/admin/upload-requests", tags=["admin"])

_STATUSES = {models.REQUEST_PENDING, models.REQUEST_APPROVED, models.REQUEST_REJECTED, "all"}


@router.get("", response_model=list[schemas.UploadRequestOut])
def list_review_queue(
    status: str = models.REQUEST_PENDING,
    class_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    require_admin(user)
    if status not in _STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status filter")
    return upload_requests.list_for_review(
        db,
        status=None if status == "all" else status,
        class_id=class_id,
    )


@router.get("/summary", response_model=schemas.PendingSummaryOut)
def pending_summary(
    class_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    require_admin(user)
    return schemas.PendingSummaryOut(
        pending=upload_requests.count_pending(db, class_id),
        class_id=class_id,
    )


@router.post("/{request_id}/approve", response_model=schemas.ApprovalOut)
def approve_upload_request(
    request_id: UUID,
    db: Session = Depends(get_db),
    storage: StorageArea = Depends(get_storage),
    user: models.User = Depends(get_current_user),
):
    require_admin(user)
    try:
        published = approvals.approve(db, storage, request_id, admin=user)
    except LifecycleError as exc:
        raise to_http_exception(db, exc) from exc
    audit.log_action(
        db,
        user.id,
        audit.APPROVE_REQUEST,
        "upload_request",
        request_id,
        description=f"Approved {published.original_file_name}",
        details={
            "file_id": str(published.id),
            "file_name": published.original_file_name,
            "version": published.version,
            "class_id": str(published.class_id),
        },
    )
    return schemas.ApprovalOut(request_id=request_id, file_id=published.id, version=published.version)


@router.post("/{request_id}/reject", response_model=schemas.UploadRequestOut)
def reject_upload_request(
    request_id: UUID,
    payload: schemas.RejectRequestIn,
    db: Session = Depends(get_db),
    storage: StorageArea = Depends(get_storage),
    user: models.User = Depends(get_current_user),
):
    require_admin(user)
    try:
        rejected = approvals.reject(db, storage, request_id, admin=user, reason=payload.reason)
    except LifecycleError as exc:
        raise to_http_exception(db, exc) from exc
    audit.log_action(
        db,
        user.id,
        audit.REJECT_REQUEST,
        "upload_request",
        request_id,
        description=f"Rejected {rejected.file_name}",
        details={"file_name": rejected.file_name, "reason": rejected.rejection_reason},
    )
    return upload_requests.get_detail(db, request_id)
