import os
from urllib.parse import quote
from uuid import UUID

from fastapi import HTTPException, Response
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from ..errors import (
    AccessForbidden,
    InvalidState,
    LifecycleError,
    NotFound,
    PayloadTooLarge,
    RequestConflict,
    StorageInconsistency,
    StorageIOFailure,
    ValidationError,
)

# most specific first; MissingPayload is covered by InvalidState
_STATUS_CODES = (
    (ValidationError, 400),
    (RequestConflict, 409),
    (AccessForbidden, 403),
    (NotFound, 404),
    (InvalidState, 409),
    (PayloadTooLarge, 413),
    (StorageIOFailure, 503),
    (StorageInconsistency, 500),
)


def status_code_for(exc: LifecycleError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 400


def to_http_exception(db: Session, exc: LifecycleError) -> HTTPException:
    """Roll back the request's session and translate a lifecycle error for the client."""
    db.rollback()
    detail: str | dict = str(exc)
    if isinstance(exc, AccessForbidden) and exc.current_file_id is not None:
        detail = {"message": str(exc), "current_file_id": str(exc.current_file_id)}
    return HTTPException(status_code=status_code_for(exc), detail=detail)


limiter = Limiter(key_func=get_remote_address)
testing = os.getenv("TESTING") == "1"


def rate_limit(limit: str):
    if testing:
        def wrapper(func):
            return func
        return wrapper
    return limiter.limit(limit)


def parse_uuid(value: str | None, label: str) -> UUID | None:
    if value is None or not value.strip():
        return None
    try:
        return UUID(value.strip())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label}")


def file_response(served, *, inline: bool = False, cache_control: str = "private, no-store") -> Response:
    disposition = "inline" if inline else "attachment"
    ascii_name = served.file_name.encode("ascii", "replace").decode().replace('"', "_")
    return Response(
        content=served.data,
        media_type=served.file_type or "application/octet-stream",
        headers={
            "Content-Disposition": f"{disposition}; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(served.file_name)}",
            "Cache-Control": cache_control,
        },
    )
