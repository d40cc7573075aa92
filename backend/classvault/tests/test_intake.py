import uuid

import pytest

from classvault import models
from classvault.errors import PayloadTooLarge, RequestConflict, ValidationError
from classvault.services import approvals
from classvault.storage import PENDING_AREA
from .conftest import TestingSessionLocal, create_class, create_user, load_user


def submit(client, headers, class_id, *, name="notes.pdf", content=b"%PDF-1.4 notes", mime="application/pdf", **form):
    data = {"class_id": str(class_id)}
    data.update({k: str(v) for k, v in form.items()})
    return client.post(
        "/api/upload-requests",
        data=data,
        files={"upload": (name, content, mime)},
        headers=headers,
    )


def test_submit_creates_pending_request(client, storage_dir):
    headers, user_id = create_user()
    class_id = create_class(allowed_file_types=["pdf"])

    resp = submit(client, headers, class_id, description="  week 1  ")
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["file_name"] == "notes.pdf"
    assert body["file_type"] == "application/pdf"
    assert body["size"] == len(b"%PDF-1.4 notes")
    assert body["is_update"] is False

    db = TestingSessionLocal()
    try:
        request = db.get(models.UploadRequest, uuid.UUID(body["request_id"]))
        assert request.status == models.REQUEST_PENDING
        assert request.user_id == user_id
        assert request.description == "week 1"
        assert (storage_dir / PENDING_AREA / request.pending_object_key).read_bytes() == b"%PDF-1.4 notes"
    finally:
        db.close()

    listing = client.get("/api/upload-requests", headers=headers)
    assert listing.status_code == 200
    assert [r["id"] for r in listing.json()] == [body["request_id"]]
    assert listing.json()[0]["class_name"].startswith("Class ")


def test_submit_notifies_active_admins(client):
    admin_headers, _ = create_user(is_admin=True)
    headers, _ = create_user()
    class_id = create_class()

    resp = submit(client, headers, class_id, name="poster.png", content=b"\x89PNG", mime="image/png")
    assert resp.status_code == 201
    inbox = client.get("/api/notifications/", headers=admin_headers).json()
    matching = [n for n in inbox if n["related_entity_id"] == resp.json()["request_id"]]
    assert len(matching) == 1
    assert matching[0]["notification_type"] == models.NOTIFICATION_FILE_UPLOADED


def test_duplicate_pending_request_conflicts(client, storage_dir):
    headers, _ = create_user()
    class_id = create_class()

    assert submit(client, headers, class_id).status_code == 201
    resp = submit(client, headers, class_id)
    assert resp.status_code == 409
    assert resp.json()["detail"] == "You already have a pending request for this file in this class"
    # the rejected duplicate leaves no bytes behind
    assert len(list((storage_dir / PENDING_AREA).iterdir())) == 1


def test_same_name_in_other_class_is_allowed(client):
    headers, _ = create_user()
    assert submit(client, headers, create_class()).status_code == 201
    assert submit(client, headers, create_class()).status_code == 201


def test_disallowed_type_is_rejected(client):
    headers, _ = create_user()
    class_id = create_class(allowed_file_types=["pdf", "docx"])
    resp = submit(client, headers, class_id, name="photo.png", content=b"\x89PNG", mime="image/png")
    assert resp.status_code == 400
    assert "File type not allowed" in resp.json()["detail"]


def test_type_derived_from_extension_when_declared_type_blank(client):
    headers, _ = create_user()
    class_id = create_class(allowed_file_types=["md"])
    resp = submit(client, headers, class_id, name="readme.md", content=b"# hi", mime="")
    assert resp.status_code == 201, resp.text
    assert resp.json()["file_type"] in {"text/markdown", "application/octet-stream"}


def test_inactive_or_unknown_class(client):
    headers, _ = create_user()
    assert submit(client, headers, create_class(is_active=False)).status_code == 400
    assert submit(client, headers, uuid.uuid4()).status_code == 404
    assert submit(client, headers, "not-a-uuid").status_code == 400


def test_empty_file_is_rejected(client):
    headers, _ = create_user()
    resp = submit(client, headers, create_class(), content=b"")
    assert resp.status_code == 400


def test_oversize_upload_returns_413(client, monkeypatch, storage_dir):
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "8")
    headers, _ = create_user()
    resp = submit(client, headers, create_class(), content=b"0123456789")
    assert resp.status_code == 413
    assert not (storage_dir / PENDING_AREA).exists() or not any((storage_dir / PENDING_AREA).iterdir())


def test_submit_requires_authentication(client):
    resp = client.post(
        "/api/upload-requests",
        data={"class_id": str(uuid.uuid4())},
        files={"upload": ("a.pdf", b"x", "application/pdf")},
    )
    assert resp.status_code == 401


def test_service_submit_validations(db, storage):
    _, user_id = create_user()
    user = load_user(db, user_id)
    class_id = create_class()

    with pytest.raises(ValidationError):
        approvals.submit(db, storage, user=user, class_id=class_id, file_name="  ", declared_type=None, data=b"x")

    approvals.submit(db, storage, user=user, class_id=class_id, file_name="a.txt", declared_type="text/plain", data=b"x")
    with pytest.raises(RequestConflict):
        approvals.submit(db, storage, user=user, class_id=class_id, file_name="a.txt", declared_type="text/plain", data=b"y")


def test_service_submit_size_limit(db, storage, monkeypatch):
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "3")
    _, user_id = create_user()
    user = load_user(db, user_id)
    with pytest.raises(PayloadTooLarge):
        approvals.submit(db, storage, user=user, class_id=create_class(), file_name="a.txt", declared_type=None, data=b"abcd")


def test_insert_failure_removes_quarantined_bytes(db, storage, storage_dir, monkeypatch):
    _, user_id = create_user()
    user = load_user(db, user_id)
    class_id = create_class()

    def explode(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(approvals.upload_requests, "create", explode)
    with pytest.raises(RuntimeError):
        approvals.submit(db, storage, user=user, class_id=class_id, file_name="a.txt", declared_type=None, data=b"x")
    assert not any((storage_dir / PENDING_AREA).iterdir())


def test_concurrent_duplicate_is_caught_by_unique_index(db, storage, storage_dir, monkeypatch):
    _, user_id = create_user()
    user = load_user(db, user_id)
    class_id = create_class()
    first = approvals.submit(db, storage, user=user, class_id=class_id, file_name="a.txt", declared_type=None, data=b"x")

    # both submissions pass the pre-check before either row lands
    monkeypatch.setattr(approvals.upload_requests, "has_pending_duplicate", lambda *args, **kwargs: False)
    with pytest.raises(RequestConflict, match="already have a pending request"):
        approvals.submit(db, storage, user=user, class_id=class_id, file_name="a.txt", declared_type=None, data=b"y")

    assert [path.name for path in (storage_dir / PENDING_AREA).iterdir()] == [first.pending_object_key]
    assert db.query(models.UploadRequest).filter_by(user_id=user_id).count() == 1
