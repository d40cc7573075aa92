from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, Response, UploadFile
from sqlalchemy.orm import Session

from .. import audit, models, rbac, schemas
from ..auth import get_current_user
from ..database import get_db
from ..errors import LifecycleError
from ..services import access, approvals, upload_requests
from ..storage import StorageArea, get_storage
from .common import file_response, parse_uuid, rate_limit, to_http_exception

router = APIRouter(prefix="/api/upload-requests", tags=["upload-requests"])


@router.post("", response_model=schemas.UploadRequestSubmitted, status_code=201)
@rate_limit("10/minute")
async def submit_upload_request(
    request: Request,
    class_id: str = Form(...),
    upload: UploadFile = File(...),
    description: Optional[str] = Form(None),
    based_on_file_id: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    storage: StorageArea = Depends(get_storage),
    user: models.User = Depends(get_current_user),
):
    class_uuid = parse_uuid(class_id, "class id")
    if class_uuid is None:
        raise HTTPException(status_code=400, detail="Class is required")
    base_uuid = parse_uuid(based_on_file_id, "file id")
    # read at most one byte past the limit
    data = await upload.read(approvals.max_upload_bytes() + 1)
    try:
        created = approvals.submit(
            db,
            storage,
            user=user,
            class_id=class_uuid,
            file_name=upload.filename or "",
            declared_type=upload.content_type,
            data=data,
            description=description,
            based_on_file_id=base_uuid,
        )
    except LifecycleError as exc:
        raise to_http_exception(db, exc) from exc
    return schemas.UploadRequestSubmitted(
        request_id=created.id,
        file_name=created.file_name,
        file_type=created.file_type,
        size=created.size,
        is_update=created.based_on_file_id is not None,
    )


@router.get("", response_model=list[schemas.UploadRequestOut])
def list_my_requests(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return upload_requests.list_for_user(db, user.id)


@router.get("/{request_id}", response_model=schemas.UploadRequestOut)
def get_upload_request(
    request_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        detail = upload_requests.get_detail(db, request_id)
    except LifecycleError as exc:
        raise to_http_exception(db, exc) from exc
    if not rbac.is_privileged(user) and detail.user_id != user.id:
        raise HTTPException(status_code=403, detail="Not authorized to view this request")
    return detail


@router.delete("/{request_id}", status_code=204)
def cancel_upload_request(
    request_id: UUID,
    db: Session = Depends(get_db),
    storage: StorageArea = Depends(get_storage),
    user: models.User = Depends(get_current_user),
):
    try:
        cancelled = approvals.cancel(db, storage, request_id, user=user)
    except LifecycleError as exc:
        raise to_http_exception(db, exc) from exc
    audit.log_action(
        db,
        user.id,
        audit.CANCEL_REQUEST,
        "upload_request",
        request_id,
        description=f"Cancelled upload request for {cancelled.file_name}",
        details={"file_name": cancelled.file_name, "class_id": str(cancelled.class_id)},
    )
    return Response(status_code=204)


@router.get("/{request_id}/file")
def download_pending_file(
    request_id: UUID,
    inline: bool = False,
    db: Session = Depends(get_db),
    storage: StorageArea = Depends(get_storage),
    user: models.User = Depends(get_current_user),
):
    try:
        served = access.serve_quarantined(db, storage, request_id, user)
    except LifecycleError as exc:
        raise to_http_exception(db, exc) from exc
    return file_response(served, inline=inline)
