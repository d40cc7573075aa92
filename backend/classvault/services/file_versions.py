"""Version chain bookkeeping for published class files."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models
from ..errors import InvalidState, NotFound, ValidationError

# purpose: keep one current member per document chain with gapless version numbers
# status: active
# related_docs: DESIGN.md


def get_file(db: Session, file_id: UUID) -> models.PublishedFile:
    published = db.get(models.PublishedFile, file_id)
    if published is None:
        raise NotFound("File not found")
    return published


def next_version_number(db: Session, based_on_file_id: UUID | None) -> int:
    """One past the highest version in the chain, so numbers stay gapless after a rollback."""

    if based_on_file_id is None:
        return 1
    root_file_id = get_file(db, based_on_file_id).root_file_id
    highest = (
        db.query(func.max(models.PublishedFile.version))
        .filter(models.PublishedFile.root_file_id == root_file_id)
        .scalar()
    )
    return (highest or 0) + 1


def create_version(
    db: Session,
    *,
    class_id: UUID,
    original_file_name: str,
    file_type: str,
    size: int,
    storage_key: str,
    uploaded_by_id: UUID,
    approved_by_id: UUID,
    description: str | None = None,
    based_on_file_id: UUID | None = None,
    file_id: UUID | None = None,
) -> models.PublishedFile:
    """Stage a new current version; the predecessor must already be demoted."""

    file_id = file_id or uuid4()
    if based_on_file_id is None:
        root_file_id = file_id
    else:
        root_file_id = get_file(db, based_on_file_id).root_file_id
    now = datetime.now(timezone.utc)
    published = models.PublishedFile(
        id=file_id,
        class_id=class_id,
        original_file_name=original_file_name,
        file_type=file_type,
        size=size,
        description=description,
        storage_key=storage_key,
        uploaded_by_id=uploaded_by_id,
        approved_by_id=approved_by_id,
        approved_at=now,
        is_approved=True,
        version=next_version_number(db, based_on_file_id),
        parent_file_id=based_on_file_id,
        root_file_id=root_file_id,
        is_current_version=True,
        created_at=now,
    )
    db.add(published)
    db.flush()
    return published


def demote(db: Session, file_id: UUID) -> None:
    """Clear the current flag on exactly one row, failing if it was already cleared."""

    updated = (
        db.query(models.PublishedFile)
        .filter(
            models.PublishedFile.id == file_id,
            models.PublishedFile.is_current_version.is_(True),
        )
        .update({models.PublishedFile.is_current_version: False})
    )
    if updated == 0:
        raise InvalidState("Base file is no longer the current version")
    db.flush()


def chain(db: Session, file_id: UUID) -> list[models.PublishedFile]:
    """All versions sharing ``file_id``'s root, oldest first."""

    root_file_id = get_file(db, file_id).root_file_id
    return (
        db.query(models.PublishedFile)
        .filter(models.PublishedFile.root_file_id == root_file_id)
        .order_by(models.PublishedFile.version.asc())
        .all()
    )


def current_version(db: Session, file_id: UUID) -> models.PublishedFile | None:
    root_file_id = get_file(db, file_id).root_file_id
    return (
        db.query(models.PublishedFile)
        .filter(
            models.PublishedFile.root_file_id == root_file_id,
            models.PublishedFile.is_current_version.is_(True),
        )
        .one_or_none()
    )


def make_current(db: Session, file_id: UUID) -> models.PublishedFile:
    """Point the chain's current flag at ``file_id``; caller owns the commit."""

    target = get_file(db, file_id)
    if not target.is_approved:
        raise ValidationError("Only approved files can be the current version")
    if target.is_current_version:
        return target
    current = current_version(db, file_id)
    if current is not None:
        demote(db, current.id)
    target.is_current_version = True
    db.flush()
    return target


def list_current_for_class(db: Session, class_id: UUID) -> list[models.PublishedFile]:
    return (
        db.query(models.PublishedFile)
        .filter(
            models.PublishedFile.class_id == class_id,
            models.PublishedFile.is_approved.is_(True),
            models.PublishedFile.is_deleted.is_(False),
            models.PublishedFile.is_current_version.is_(True),
        )
        .order_by(models.PublishedFile.original_file_name.asc())
        .all()
    )


def soft_delete(db: Session, file_id: UUID, *, actor_id: UUID) -> models.PublishedFile:
    published = get_file(db, file_id)
    published.is_deleted = True
    published.deleted_by_id = actor_id
    published.deleted_at = datetime.now(timezone.utc)
    return published


def restore(db: Session, file_id: UUID) -> models.PublishedFile:
    published = get_file(db, file_id)
    published.is_deleted = False
    published.deleted_by_id = None
    published.deleted_at = None
    return published


def rename(db: Session, file_id: UUID, new_name: str) -> tuple[models.PublishedFile, str]:
    """Change the display name, returning the file and its previous name."""

    new_name = new_name.strip()
    if not new_name:
        raise ValidationError("File name cannot be empty")
    published = get_file(db, file_id)
    old_name = published.original_file_name
    published.original_file_name = new_name
    return published, old_name
