"""Error taxonomy shared by the upload-request lifecycle services."""

from __future__ import annotations

from uuid import UUID

# purpose: give intake, approval, and serving flows one vocabulary of failures
# status: active
# related_docs: DESIGN.md


class LifecycleError(RuntimeError):
    """Base error for upload-request lifecycle flows."""


class ValidationError(LifecycleError):
    """Raised when caller input is malformed or violates a class policy."""


class RequestConflict(LifecycleError):
    """Raised when a pending request already exists for the same target."""


class AccessForbidden(LifecycleError):
    """Raised when the caller may not act on or read the resource."""

    def __init__(self, message: str, *, current_file_id: UUID | None = None) -> None:
        super().__init__(message)
        self.current_file_id = current_file_id


class NotFound(LifecycleError):
    """Raised when a row or its backing bytes are missing."""


class InvalidState(LifecycleError):
    """Raised when the request's status does not allow the operation."""


class MissingPayload(InvalidState):
    """Raised when a pending request carries no quarantine object key."""


class PayloadTooLarge(LifecycleError):
    """Raised when an upload exceeds the configured byte limit."""


class StorageIOFailure(LifecycleError):
    """Raised when a storage read, write, or move cannot complete."""


class StorageInconsistency(LifecycleError):
    """Raised when storage and database disagree about a request's bytes."""
