from fastapi import HTTPException

from . import models


def is_privileged(user: models.User | None) -> bool:
    return bool(user is not None and user.is_admin)


def require_admin(user: models.User) -> None:
    if not is_privileged(user):
        raise HTTPException(status_code=403, detail="Admin access required")


def can_read_request(user: models.User, request: models.UploadRequest) -> bool:
    """Owners and administrators may read a request and its quarantined bytes."""
    return is_privileged(user) or request.user_id == user.id
