"""Relational store for upload requests and their pending-state guards."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from .. import models, schemas
from ..database import unit_of_work
from ..errors import AccessForbidden, InvalidState, NotFound, RequestConflict
from ..storage import StorageArea

# purpose: enforce single-pending and pending-only transitions for upload requests
# status: active
# related_docs: DESIGN.md

logger = logging.getLogger(__name__)

DUPLICATE_NEW_UPLOAD = "You already have a pending request for this file in this class"
DUPLICATE_UPDATE = "You already have a pending update request for this file"
NO_LONGER_PENDING = "Request is no longer pending"


@dataclass(frozen=True, slots=True)
class PendingRequest:
    """Snapshot of a pending request, detached from the session that read it."""

    id: UUID
    class_id: UUID
    user_id: UUID
    file_name: str
    file_type: str
    size: int
    description: str | None
    pending_object_key: str | None
    based_on_file_id: UUID | None


def get_request(db: Session, request_id: UUID) -> models.UploadRequest:
    request = db.get(models.UploadRequest, request_id)
    if request is None:
        raise NotFound("Request not found")
    return request


def find_pending(db: Session, request_id: UUID) -> PendingRequest:
    """Return the request only while it is pending."""

    request = get_request(db, request_id)
    if request.status != models.REQUEST_PENDING:
        raise InvalidState(f"{NO_LONGER_PENDING}: {request.status}")
    return PendingRequest(
        id=request.id,
        class_id=request.class_id,
        user_id=request.user_id,
        file_name=request.file_name,
        file_type=request.file_type,
        size=int(request.size),
        description=request.description,
        pending_object_key=request.pending_object_key,
        based_on_file_id=request.based_on_file_id,
    )


def has_pending_duplicate(
    db: Session,
    *,
    user_id: UUID,
    class_id: UUID,
    file_name: str,
    based_on_file_id: UUID | None = None,
) -> bool:
    query = db.query(models.UploadRequest.id).filter(
        models.UploadRequest.user_id == user_id,
        models.UploadRequest.status == models.REQUEST_PENDING,
    )
    if based_on_file_id is not None:
        query = query.filter(models.UploadRequest.based_on_file_id == based_on_file_id)
    else:
        query = query.filter(
            models.UploadRequest.class_id == class_id,
            models.UploadRequest.file_name == file_name,
            models.UploadRequest.based_on_file_id.is_(None),
        )
    return query.first() is not None


def _is_unique_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate key" in message


def create(
    db: Session,
    *,
    user_id: UUID,
    class_id: UUID,
    file_name: str,
    file_type: str,
    size: int,
    pending_object_key: str,
    description: str | None = None,
    based_on_file_id: UUID | None = None,
) -> models.UploadRequest:
    """Stage a pending request, raising ``RequestConflict`` for duplicates.

    The pre-check is not atomic with the insert; the partial unique indexes
    on ``upload_requests`` catch the concurrent case at flush time.
    """

    conflict_message = DUPLICATE_UPDATE if based_on_file_id else DUPLICATE_NEW_UPLOAD
    if has_pending_duplicate(
        db,
        user_id=user_id,
        class_id=class_id,
        file_name=file_name,
        based_on_file_id=based_on_file_id,
    ):
        raise RequestConflict(conflict_message)
    request = models.UploadRequest(
        class_id=class_id,
        user_id=user_id,
        file_name=file_name,
        file_type=file_type,
        size=size,
        description=description,
        status=models.REQUEST_PENDING,
        pending_object_key=pending_object_key,
        based_on_file_id=based_on_file_id,
        created_at=datetime.now(timezone.utc),
    )
    db.add(request)
    try:
        db.flush()
    except IntegrityError as exc:
        if _is_unique_violation(exc):
            raise RequestConflict(conflict_message) from exc
        raise
    return request


def _resolve_pending(db: Session, request_id: UUID, values: dict) -> None:
    updated = (
        db.query(models.UploadRequest)
        .filter(
            models.UploadRequest.id == request_id,
            models.UploadRequest.status == models.REQUEST_PENDING,
        )
        .update(values)
    )
    if updated == 0:
        raise InvalidState(NO_LONGER_PENDING)


def mark_approved(db: Session, request_id: UUID, *, file_id: UUID, admin_id: UUID) -> None:
    """Conditionally move a pending request to approved; losers get ``InvalidState``."""

    _resolve_pending(
        db,
        request_id,
        {
            models.UploadRequest.status: models.REQUEST_APPROVED,
            models.UploadRequest.responded_at: datetime.now(timezone.utc),
            models.UploadRequest.responded_by_id: admin_id,
            models.UploadRequest.file_id: file_id,
            models.UploadRequest.pending_object_key: None,
        },
    )


def mark_rejected(db: Session, request_id: UUID, *, reason: str, admin_id: UUID) -> None:
    _resolve_pending(
        db,
        request_id,
        {
            models.UploadRequest.status: models.REQUEST_REJECTED,
            models.UploadRequest.responded_at: datetime.now(timezone.utc),
            models.UploadRequest.responded_by_id: admin_id,
            models.UploadRequest.rejection_reason: reason,
            models.UploadRequest.pending_object_key: None,
        },
    )


def link_notification(db: Session, request_id: UUID, notification_id: UUID) -> None:
    (
        db.query(models.UploadRequest)
        .filter(models.UploadRequest.id == request_id)
        .update({models.UploadRequest.notification_id: notification_id})
    )


def cancel(db: Session, storage: StorageArea, request_id: UUID, *, by_user_id: UUID) -> PendingRequest:
    """Delete a pending request owned by ``by_user_id`` and drop its quarantined bytes.

    The byte cleanup is best-effort: a storage failure is logged and the
    cancellation still stands.
    """

    request = get_request(db, request_id)
    if request.user_id != by_user_id:
        raise AccessForbidden("Not authorized to cancel this request")
    if request.status != models.REQUEST_PENDING:
        raise InvalidState("Only pending requests can be cancelled")
    snapshot = find_pending(db, request_id)
    with unit_of_work(db):
        deleted = (
            db.query(models.UploadRequest)
            .filter(
                models.UploadRequest.id == request_id,
                models.UploadRequest.status == models.REQUEST_PENDING,
            )
            .delete()
        )
        if deleted == 0:
            raise InvalidState("Only pending requests can be cancelled")
    if snapshot.pending_object_key:
        try:
            storage.discard(snapshot.pending_object_key, snapshot.class_id)
        except Exception:
            logger.warning(
                "Failed to delete pending file %s for cancelled request %s",
                snapshot.pending_object_key,
                request_id,
                exc_info=True,
            )
    return snapshot


def count_pending(db: Session, class_id: UUID | None = None) -> int:
    query = db.query(models.UploadRequest).filter(models.UploadRequest.status == models.REQUEST_PENDING)
    if class_id is not None:
        query = query.filter(models.UploadRequest.class_id == class_id)
    return query.count()


def _projection_query(db: Session):
    requester = aliased(models.User)
    responder = aliased(models.User)
    base_file = aliased(models.PublishedFile)
    return (
        db.query(
            models.UploadRequest,
            models.SchoolClass.name,
            requester.email,
            responder.email,
            base_file.version,
        )
        .outerjoin(models.SchoolClass, models.SchoolClass.id == models.UploadRequest.class_id)
        .outerjoin(requester, requester.id == models.UploadRequest.user_id)
        .outerjoin(responder, responder.id == models.UploadRequest.responded_by_id)
        .outerjoin(base_file, base_file.id == models.UploadRequest.based_on_file_id)
    )


def _to_out(row) -> schemas.UploadRequestOut:
    request, class_name, requester_email, responded_by_email, based_on_version = row
    out = schemas.UploadRequestOut.model_validate(request)
    return out.model_copy(
        update={
            "is_update": request.based_on_file_id is not None,
            "class_name": class_name,
            "requester_email": requester_email,
            "responded_by_email": responded_by_email,
            "based_on_version": based_on_version,
        }
    )


def list_for_user(db: Session, user_id: UUID) -> list[schemas.UploadRequestOut]:
    rows = (
        _projection_query(db)
        .filter(models.UploadRequest.user_id == user_id)
        .order_by(models.UploadRequest.created_at.desc())
        .all()
    )
    return [_to_out(row) for row in rows]


def list_for_review(
    db: Session,
    *,
    status: str | None = models.REQUEST_PENDING,
    class_id: UUID | None = None,
) -> list[schemas.UploadRequestOut]:
    query = _projection_query(db)
    if status:
        query = query.filter(models.UploadRequest.status == status)
    if class_id is not None:
        query = query.filter(models.UploadRequest.class_id == class_id)
    # oldest first
    rows = query.order_by(models.UploadRequest.created_at.asc()).all()
    return [_to_out(row) for row in rows]


def get_detail(db: Session, request_id: UUID) -> schemas.UploadRequestOut:
    row = _projection_query(db).filter(models.UploadRequest.id == request_id).first()
    if row is None:
        raise NotFound("Request not found")
    return _to_out(row)
