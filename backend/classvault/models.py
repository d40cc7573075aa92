import uuid
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    BigInteger,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .database import Base

REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"

NOTIFICATION_FILE_APPROVED = "file_approved"
NOTIFICATION_FILE_REJECTED = "file_rejected"
NOTIFICATION_FILE_UPLOADED = "file_uploaded"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False)
    full_name = Column(String)
    is_admin = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    notifications = relationship(
        "Notification", back_populates="user", cascade="all, delete-orphan"
    )


class SchoolClass(Base):
    __tablename__ = "classes"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    # lowercase extensions, empty list accepts any type
    allowed_file_types = Column(JSON, default=list, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class PublishedFile(Base):
    __tablename__ = "files"
    __table_args__ = (
        sa.UniqueConstraint("root_file_id", "version", name="uq_files_chain_version"),
        sa.Index(
            "uq_files_chain_current",
            "root_file_id",
            unique=True,
            sqlite_where=sa.text("is_current_version = 1"),
            postgresql_where=sa.text("is_current_version"),
        ),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    class_id = Column(UUID(as_uuid=True), ForeignKey("classes.id"), nullable=False, index=True)
    original_file_name = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    size = Column(BigInteger, nullable=False)
    description = Column(Text)
    storage_key = Column(String, nullable=False, unique=True)
    uploaded_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    approved_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    approved_at = Column(DateTime(timezone=True))
    is_approved = Column(Boolean, default=False, nullable=False)
    version = Column(Integer, default=1, nullable=False)
    parent_file_id = Column(UUID(as_uuid=True), ForeignKey("files.id"))
    root_file_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    is_current_version = Column(Boolean, default=True, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    deleted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    school_class = relationship("SchoolClass")
    parent = relationship("PublishedFile", remote_side=[id])
    uploaded_by = relationship("User", foreign_keys=[uploaded_by_id])


class UploadRequest(Base):
    __tablename__ = "upload_requests"
    __table_args__ = (
        sa.Index(
            "uq_upload_requests_pending_new",
            "user_id",
            "class_id",
            "file_name",
            unique=True,
            sqlite_where=sa.text("status = 'pending' AND based_on_file_id IS NULL"),
            postgresql_where=sa.text("status = 'pending' AND based_on_file_id IS NULL"),
        ),
        sa.Index(
            "uq_upload_requests_pending_update",
            "user_id",
            "based_on_file_id",
            unique=True,
            sqlite_where=sa.text("status = 'pending' AND based_on_file_id IS NOT NULL"),
            postgresql_where=sa.text("status = 'pending' AND based_on_file_id IS NOT NULL"),
        ),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    class_id = Column(UUID(as_uuid=True), ForeignKey("classes.id"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    file_name = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    size = Column(BigInteger, nullable=False)
    description = Column(Text)
    status = Column(String, default=REQUEST_PENDING, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    responded_at = Column(DateTime(timezone=True))
    responded_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    rejection_reason = Column(Text)
    # quarantine object key, cleared once the request leaves pending
    pending_object_key = Column(String)
    file_id = Column(UUID(as_uuid=True), ForeignKey("files.id"))
    based_on_file_id = Column(UUID(as_uuid=True), ForeignKey("files.id"))
    notification_id = Column(UUID(as_uuid=True), ForeignKey("notifications.id", ondelete="SET NULL"))

    school_class = relationship("SchoolClass")
    user = relationship("User", foreign_keys=[user_id])
    file = relationship("PublishedFile", foreign_keys=[file_id])
    based_on_file = relationship("PublishedFile", foreign_keys=[based_on_file_id])


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(String)
    notification_type = Column(String, nullable=False)  # file_approved, file_rejected, file_uploaded
    action_url = Column(String)
    action_label = Column(String)
    is_read = Column(Boolean, default=False, nullable=False)
    related_entity_type = Column(String)
    related_entity_id = Column(UUID(as_uuid=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    user = relationship("User", back_populates="notifications")


class FileAccessLog(Base):
    __tablename__ = "file_access_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    file_id = Column(UUID(as_uuid=True), ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    ip_address = Column(String)
    user_agent = Column(String)
    accessed_at = Column(DateTime(timezone=True), default=_utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    action = Column(String, nullable=False)
    entity_type = Column(String)
    entity_id = Column(UUID(as_uuid=True))
    description = Column(String)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
