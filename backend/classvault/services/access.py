"""Read access to published and quarantined file bytes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models, rbac
from ..errors import AccessForbidden, InvalidState, NotFound
from ..storage import StorageArea
from . import file_versions, upload_requests

# purpose: gate file downloads by approval, version, and ownership rules
# status: active
# related_docs: DESIGN.md

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ServedFile:
    data: bytes
    file_name: str
    file_type: str


def serve_published(
    db: Session,
    storage: StorageArea,
    file_id: UUID,
    caller: models.User | None,
) -> ServedFile:
    """Return a published file's bytes.

    Administrators may read any version, including deleted ones. Everyone
    else only sees the approved, current, non-deleted member of a chain; for
    superseded versions the raised ``AccessForbidden`` carries the id of the
    version that replaced it.
    """

    published = file_versions.get_file(db, file_id)
    if not rbac.is_privileged(caller):
        if published.is_deleted:
            raise NotFound("File not found")
        if not published.is_approved:
            raise AccessForbidden("File is not approved")
        if not published.is_current_version:
            current = file_versions.current_version(db, file_id)
            raise AccessForbidden(
                "A newer version of this file is available",
                current_file_id=current.id if current is not None else None,
            )
    data = storage.published_get(published.class_id, published.storage_key)
    return ServedFile(data=data, file_name=published.original_file_name, file_type=published.file_type)


def record_access(
    session_factory: Callable[[], Session],
    file_id: UUID,
    user_id: UUID | None,
    ip_address: str | None,
    user_agent: str | None,
) -> None:
    """Append a download record in a fresh session; failures never reach the caller."""

    db = session_factory()
    try:
        db.add(
            models.FileAccessLog(
                file_id=file_id,
                user_id=user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                accessed_at=datetime.now(timezone.utc),
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.warning("Failed to record access to file %s", file_id, exc_info=True)
    finally:
        db.close()


def serve_quarantined(
    db: Session,
    storage: StorageArea,
    request_id: UUID,
    caller: models.User,
) -> ServedFile:
    request = upload_requests.get_request(db, request_id)
    if not rbac.can_read_request(caller, request):
        raise AccessForbidden("Not authorized to view this request")
    if request.status != models.REQUEST_PENDING:
        raise InvalidState(f"{upload_requests.NO_LONGER_PENDING}: {request.status}")
    if not request.pending_object_key:
        raise NotFound("Pending file not found in storage")
    data = storage.quarantine_get(request.pending_object_key)
    return ServedFile(data=data, file_name=request.file_name, file_type=request.file_type)
