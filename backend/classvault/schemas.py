from datetime import datetime
from typing import Optional, Any, Dict, Literal
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID


class UserOut(BaseModel):
    id: UUID
    email: str
    full_name: Optional[str] = None
    is_admin: bool = False
    model_config = ConfigDict(from_attributes=True)


class UploadRequestOut(BaseModel):
    """Upload request plus the joined display fields each listing declares.

    Joined fields are optional because not every projection loads them.
    """

    id: UUID
    class_id: UUID
    user_id: UUID
    file_name: str
    file_type: str
    size: int
    description: Optional[str] = None
    status: Literal["pending", "approved", "rejected"]
    created_at: datetime
    responded_at: Optional[datetime] = None
    responded_by_id: Optional[UUID] = None
    rejection_reason: Optional[str] = None
    file_id: Optional[UUID] = None
    based_on_file_id: Optional[UUID] = None
    is_update: bool = False
    class_name: Optional[str] = None
    requester_email: Optional[str] = None
    responded_by_email: Optional[str] = None
    based_on_version: Optional[int] = None
    model_config = ConfigDict(from_attributes=True)


class UploadRequestSubmitted(BaseModel):
    request_id: UUID
    file_name: str
    file_type: str
    size: int
    is_update: bool


class RejectRequestIn(BaseModel):
    reason: str = Field(..., max_length=2000)


class ApprovalOut(BaseModel):
    request_id: UUID
    file_id: UUID
    version: int


class PendingSummaryOut(BaseModel):
    pending: int
    class_id: Optional[UUID] = None


class PublishedFileOut(BaseModel):
    id: UUID
    class_id: UUID
    original_file_name: str
    file_type: str
    size: int
    description: Optional[str] = None
    uploaded_by_id: UUID
    approved_by_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    is_approved: bool
    version: int
    parent_file_id: Optional[UUID] = None
    is_current_version: bool
    is_deleted: bool = False
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class RenameFileIn(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)


class NotificationOut(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    message: Optional[str] = None
    notification_type: str
    action_url: Optional[str] = None
    action_label: Optional[str] = None
    is_read: bool
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[UUID] = None
    created_at: datetime
    expires_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditLogOut(BaseModel):
    id: UUID
    actor_id: Optional[UUID] = None
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[UUID] = None
    description: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
