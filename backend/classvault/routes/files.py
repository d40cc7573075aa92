from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import audit, models, rbac, schemas
from ..auth import get_current_user, get_optional_user
from ..database import SessionLocal, get_db
from ..errors import InvalidState, LifecycleError
from ..services import access, file_versions
from ..storage import StorageArea, get_storage
from .common import file_response, to_http_exception

router = APIRouter(prefix="/api/files", tags=["files"])
admin_router = APIRouter(prefix="/api/admin/files", tags=["admin"])


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.get("/{file_id}/download")
def download_file(
    file_id: UUID,
    request: Request,
    background_tasks: BackgroundTasks,
    inline: bool = False,
    db: Session = Depends(get_db),
    storage: StorageArea = Depends(get_storage),
    user: Optional[models.User] = Depends(get_optional_user),
):
    try:
        served = access.serve_published(db, storage, file_id, user)
    except LifecycleError as exc:
        raise to_http_exception(db, exc) from exc
    background_tasks.add_task(
        access.record_access,
        SessionLocal,
        file_id,
        user.id if user else None,
        _client_ip(request),
        request.headers.get("user-agent"),
    )
    return file_response(served, inline=inline, cache_control="private, max-age=3600")


@router.get("/{file_id}/versions", response_model=list[schemas.PublishedFileOut])
def list_versions(
    file_id: UUID,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_optional_user),
):
    try:
        versions = file_versions.chain(db, file_id)
    except LifecycleError as exc:
        raise to_http_exception(db, exc) from exc
    if rbac.is_privileged(user):
        return versions
    visible = [v for v in versions if v.is_approved and not v.is_deleted]
    if not visible:
        raise HTTPException(status_code=404, detail="File not found")
    return visible


@router.get("/classes/{class_id}", response_model=list[schemas.PublishedFileOut])
def list_class_files(
    class_id: UUID,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_optional_user),
):
    return file_versions.list_current_for_class(db, class_id)


@admin_router.post("/{file_id}/delete", response_model=schemas.PublishedFileOut)
def delete_file(
    file_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    rbac.require_admin(user)
    try:
        published = file_versions.soft_delete(db, file_id, actor_id=user.id)
        db.commit()
    except LifecycleError as exc:
        raise to_http_exception(db, exc) from exc
    audit.log_action(
        db,
        user.id,
        audit.DELETE_FILE,
        "file",
        file_id,
        description=f"Deleted {published.original_file_name}",
        details={"file_name": published.original_file_name, "version": published.version},
    )
    db.refresh(published)
    return published


@admin_router.post("/{file_id}/restore", response_model=schemas.PublishedFileOut)
def restore_file(
    file_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    rbac.require_admin(user)
    try:
        published = file_versions.restore(db, file_id)
        db.commit()
    except LifecycleError as exc:
        raise to_http_exception(db, exc) from exc
    audit.log_action(
        db,
        user.id,
        audit.RESTORE_FILE,
        "file",
        file_id,
        description=f"Restored {published.original_file_name}",
    )
    db.refresh(published)
    return published


@admin_router.post("/{file_id}/rename", response_model=schemas.PublishedFileOut)
def rename_file(
    file_id: UUID,
    payload: schemas.RenameFileIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    rbac.require_admin(user)
    try:
        published, old_name = file_versions.rename(db, file_id, payload.file_name)
        db.commit()
    except LifecycleError as exc:
        raise to_http_exception(db, exc) from exc
    audit.log_action(
        db,
        user.id,
        audit.RENAME_FILE,
        "file",
        file_id,
        description=f"Renamed {old_name} to {published.original_file_name}",
        details={"old_name": old_name, "new_name": published.original_file_name},
    )
    db.refresh(published)
    return published


@admin_router.post("/{file_id}/make-current", response_model=schemas.PublishedFileOut)
def make_current_version(
    file_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    rbac.require_admin(user)
    try:
        published = file_versions.make_current(db, file_id)
        db.commit()
    except LifecycleError as exc:
        raise to_http_exception(db, exc) from exc
    except IntegrityError as exc:
        # a concurrent switch claimed the current flag first
        raise to_http_exception(db, InvalidState("Another version was made current concurrently")) from exc
    audit.log_action(
        db,
        user.id,
        audit.SET_CURRENT_VERSION,
        "file",
        file_id,
        description=f"Set version {published.version} of {published.original_file_name} as current",
        details={"version": published.version, "root_file_id": str(published.root_file_id)},
    )
    db.refresh(published)
    return published
