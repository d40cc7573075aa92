"""Upload-request state machine: intake, approval, rejection, and cancellation."""

from __future__ import annotations

import logging
import os
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..database import unit_of_work
from ..errors import (
    AccessForbidden,
    InvalidState,
    MissingPayload,
    NotFound,
    PayloadTooLarge,
    RequestConflict,
    StorageInconsistency,
    ValidationError,
)
from ..storage import StorageArea
from . import class_registry, file_versions, notifications, upload_requests

# purpose: move upload requests from pending to a terminal state while keeping storage and rows consistent
# status: active
# depends_on: classvault.storage, classvault.services.upload_requests, classvault.services.file_versions
# related_docs: DESIGN.md

logger = logging.getLogger(__name__)

DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024


def max_upload_bytes() -> int:
    return int(os.getenv("MAX_UPLOAD_BYTES", str(DEFAULT_MAX_UPLOAD_BYTES)))


def _check_payload(file_name: str, data: bytes) -> None:
    if not file_name or not file_name.strip():
        raise ValidationError("File name is required")
    if len(data) == 0:
        raise ValidationError("File is empty")
    limit = max_upload_bytes()
    if len(data) > limit:
        raise PayloadTooLarge(f"File size exceeds {limit // (1024 * 1024)}MB limit")


def _check_base_file(
    db: Session,
    based_on_file_id: UUID,
    *,
    user_id: UUID,
    class_id: UUID,
) -> models.PublishedFile:
    try:
        base = file_versions.get_file(db, based_on_file_id)
    except NotFound as exc:
        raise NotFound("Original file not found") from exc
    if base.uploaded_by_id != user_id:
        raise AccessForbidden("You can only update files you uploaded")
    if not base.is_approved:
        raise ValidationError("Cannot update a file that is not approved")
    if base.is_deleted:
        raise ValidationError("Cannot update a deleted file")
    if not base.is_current_version:
        raise ValidationError("Only the current version of a file can be updated")
    if base.class_id != class_id:
        raise ValidationError("Update must target the class of the original file")
    return base


def _notify_admins_of_upload(db: Session, request: models.UploadRequest, *, uploader_id: UUID) -> None:
    admins = (
        db.query(models.User.id)
        .filter(
            models.User.is_admin.is_(True),
            models.User.is_active.is_(True),
            models.User.id != uploader_id,
        )
        .all()
    )
    kind = "update" if request.based_on_file_id else "upload"
    for (admin_id,) in admins:
        notifications.create_notification(
            db,
            user_id=admin_id,
            title=f"New {kind} request: {request.file_name}",
            message=f'"{request.file_name}" is waiting for review.',
            notification_type=models.NOTIFICATION_FILE_UPLOADED,
            action_url=f"/admin/requests/{request.id}",
            action_label="Review Request",
            related_entity_type="request",
            related_entity_id=request.id,
        )


def submit(
    db: Session,
    storage: StorageArea,
    *,
    user: models.User,
    class_id: UUID,
    file_name: str,
    declared_type: str | None,
    data: bytes,
    description: str | None = None,
    based_on_file_id: UUID | None = None,
) -> models.UploadRequest:
    """Validate an upload, quarantine its bytes, and record a pending request.

    Bytes are written before the row so that no row ever references a key
    that failed to write; if the row cannot be inserted the bytes are removed
    again on a best-effort basis.
    """

    _check_payload(file_name, data)
    file_name = file_name.strip()
    description = (description or "").strip() or None
    file_type = class_registry.derive_mime_type(file_name, declared_type)

    policy = class_registry.get_class_policy(db, class_id)
    if policy is None:
        raise NotFound("Class not found")
    if not policy.is_active:
        raise ValidationError("Class is not active")
    if not class_registry.is_type_allowed(policy, file_name, file_type):
        raise ValidationError(
            f"File type not allowed. Allowed types: {', '.join(policy.allowed_file_types)}"
        )

    if based_on_file_id is not None:
        _check_base_file(db, based_on_file_id, user_id=user.id, class_id=class_id)

    if upload_requests.has_pending_duplicate(
        db,
        user_id=user.id,
        class_id=class_id,
        file_name=file_name,
        based_on_file_id=based_on_file_id,
    ):
        raise RequestConflict(
            upload_requests.DUPLICATE_UPDATE if based_on_file_id else upload_requests.DUPLICATE_NEW_UPLOAD
        )

    object_key = storage.quarantine_put(data, file_name, content_type=file_type)
    try:
        with unit_of_work(db):
            request = upload_requests.create(
                db,
                user_id=user.id,
                class_id=class_id,
                file_name=file_name,
                file_type=file_type,
                size=len(data),
                description=description,
                pending_object_key=object_key,
                based_on_file_id=based_on_file_id,
            )
            _notify_admins_of_upload(db, request, uploader_id=user.id)
    except Exception:
        try:
            storage.quarantine_delete(object_key)
        except Exception:
            logger.warning("Failed to clean up pending file %s after insert failure", object_key, exc_info=True)
        raise
    db.refresh(request)
    logger.info("Upload request %s submitted by %s for class %s", request.id, user.id, class_id)
    return request


def _discard_lost_promotion(db: Session, request_id: UUID, published_key: str, storage: StorageArea) -> None:
    """Remove bytes promoted by an approval that lost the race to another decision."""

    owner = (
        db.query(models.PublishedFile.id)
        .filter(models.PublishedFile.storage_key == published_key)
        .first()
    )
    if owner is not None:
        return
    status = db.query(models.UploadRequest.status).filter(models.UploadRequest.id == request_id).scalar()
    if status == models.REQUEST_PENDING:
        # a retried approval reuses these bytes
        logger.warning("Keeping promoted object %s for still-pending request %s", published_key, request_id)
        return
    try:
        storage.published_delete(published_key)
    except Exception:
        logger.error(
            "Storage inconsistency: orphaned published object %s for request %s",
            published_key,
            request_id,
            exc_info=True,
        )


def approve(
    db: Session,
    storage: StorageArea,
    request_id: UUID,
    *,
    admin: models.User,
) -> models.PublishedFile:
    """Promote a pending request into a new current file version."""

    pending = upload_requests.find_pending(db, request_id)
    if not pending.pending_object_key:
        raise MissingPayload("No file associated with this request")
    if pending.based_on_file_id is not None:
        base = file_versions.get_file(db, pending.based_on_file_id)
        if not base.is_current_version:
            raise InvalidState("Base file is no longer the current version")
    # no transaction may stay open across the move
    db.commit()

    try:
        published_key = storage.promote(pending.pending_object_key, pending.class_id)
    except NotFound as exc:
        logger.error("Storage inconsistency: pending file %s missing for request %s", pending.pending_object_key, request_id)
        raise StorageInconsistency("Pending file is missing from storage") from exc

    file_id = uuid4()
    try:
        with unit_of_work(db):
            if pending.based_on_file_id is not None:
                file_versions.demote(db, pending.based_on_file_id)
            published = file_versions.create_version(
                db,
                file_id=file_id,
                class_id=pending.class_id,
                original_file_name=pending.file_name,
                file_type=pending.file_type,
                size=pending.size,
                description=pending.description,
                storage_key=published_key,
                uploaded_by_id=pending.user_id,
                approved_by_id=admin.id,
                based_on_file_id=pending.based_on_file_id,
            )
            upload_requests.mark_approved(db, request_id, file_id=file_id, admin_id=admin.id)
            notification = notifications.create_notification(
                db,
                user_id=pending.user_id,
                title=f"File Approved: {pending.file_name}",
                message=f'Your upload request for "{pending.file_name}" has been approved!',
                notification_type=models.NOTIFICATION_FILE_APPROVED,
                action_url=f"/file/{file_id}",
                action_label="View File",
                related_entity_type="file",
                related_entity_id=file_id,
            )
            upload_requests.link_notification(db, request_id, notification.id)
    except InvalidState:
        logger.warning("Approval of request %s lost to a concurrent decision", request_id)
        _discard_lost_promotion(db, request_id, published_key, storage)
        raise
    except SQLAlchemyError as exc:
        status = db.query(models.UploadRequest.status).filter(models.UploadRequest.id == request_id).scalar()
        if status != models.REQUEST_PENDING:
            # another decision committed first
            logger.warning("Approval of request %s lost to a concurrent decision: %s", request_id, status)
            _discard_lost_promotion(db, request_id, published_key, storage)
            raise InvalidState(f"{upload_requests.NO_LONGER_PENDING}: {status or 'cancelled'}") from exc
        logger.error(
            "Storage inconsistency: request %s promoted to %s but the approval was not recorded",
            request_id,
            published_key,
            exc_info=True,
        )
        raise StorageInconsistency(
            "File was moved but the approval could not be recorded; retry the approval"
        ) from exc

    db.refresh(published)
    logger.info("Upload request %s approved by %s as file %s v%s", request_id, admin.id, published.id, published.version)
    return published


def reject(
    db: Session,
    storage: StorageArea,
    request_id: UUID,
    *,
    admin: models.User,
    reason: str,
) -> models.UploadRequest:
    """Resolve a pending request as rejected and discard its quarantined bytes."""

    pending = upload_requests.find_pending(db, request_id)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")

    with unit_of_work(db):
        upload_requests.mark_rejected(db, request_id, reason=reason, admin_id=admin.id)
        notification = notifications.create_notification(
            db,
            user_id=pending.user_id,
            title=f"Upload Rejected: {pending.file_name}",
            message=f'Your upload request for "{pending.file_name}" was rejected: {reason}',
            notification_type=models.NOTIFICATION_FILE_REJECTED,
            action_url=f"/requests/{request_id}",
            action_label="View Details",
            related_entity_type="request",
            related_entity_id=request_id,
        )
        upload_requests.link_notification(db, request_id, notification.id)

    if pending.pending_object_key:
        try:
            storage.discard(pending.pending_object_key, pending.class_id)
        except Exception:
            logger.warning(
                "Failed to delete pending file %s for rejected request %s",
                pending.pending_object_key,
                request_id,
                exc_info=True,
            )
    logger.info("Upload request %s rejected by %s", request_id, admin.id)
    return upload_requests.get_request(db, request_id)


def cancel(db: Session, storage: StorageArea, request_id: UUID, *, user: models.User) -> upload_requests.PendingRequest:
    """Withdraw the caller's own pending request."""

    snapshot = upload_requests.cancel(db, storage, request_id, by_user_id=user.id)
    logger.info("Upload request %s cancelled by %s", request_id, user.id)
    return snapshot
