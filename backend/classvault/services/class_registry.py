"""Class registry contract consumed by upload intake."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models

EXTENSION_TO_MIME: dict[str, tuple[str, ...]] = {
    "pdf": ("application/pdf",),
    "docx": ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",),
    "xlsx": ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",),
    "md": ("text/markdown", "text/plain"),
    "txt": ("text/plain",),
    "png": ("image/png",),
    "jpg": ("image/jpeg",),
    "jpeg": ("image/jpeg",),
}


@dataclass(frozen=True, slots=True)
class ClassPolicy:
    id: UUID
    name: str
    is_active: bool
    allowed_file_types: tuple[str, ...] = field(default_factory=tuple)


def get_class_policy(db: Session, class_id: UUID) -> ClassPolicy | None:
    row = db.get(models.SchoolClass, class_id)
    if row is None:
        return None
    return ClassPolicy(
        id=row.id,
        name=row.name,
        is_active=bool(row.is_active),
        allowed_file_types=tuple(t.lower() for t in (row.allowed_file_types or [])),
    )


def extension_of(file_name: str) -> str | None:
    _, dot, ext = file_name.rpartition(".")
    if not dot or not ext:
        return None
    return ext.lower()


def derive_mime_type(file_name: str, declared_type: str | None) -> str:
    """Return the declared MIME type, deriving one from the extension when blank."""

    if declared_type and declared_type.strip():
        return declared_type.strip().lower()
    ext = extension_of(file_name)
    if ext is None:
        return "application/octet-stream"
    mimes = EXTENSION_TO_MIME.get(ext)
    return mimes[0] if mimes else f"application/{ext}"


def is_type_allowed(policy: ClassPolicy, file_name: str, mime_type: str) -> bool:
    """Accept when the MIME type or the file extension maps to an allowed extension."""

    allowed = policy.allowed_file_types
    if not allowed:
        return True
    allowed_mimes = {mime for ext in allowed for mime in EXTENSION_TO_MIME.get(ext, ())}
    if mime_type in allowed_mimes:
        return True
    ext_from_mime = next(
        (ext for ext, mimes in EXTENSION_TO_MIME.items() if mime_type in mimes),
        None,
    )
    if ext_from_mime and ext_from_mime in allowed:
        return True
    ext_from_name = extension_of(file_name)
    return bool(ext_from_name and ext_from_name in allowed)
