import uuid

import pytest
from sqlalchemy.exc import SQLAlchemyError

from classvault import models
from classvault.errors import (
    AccessForbidden,
    InvalidState,
    MissingPayload,
    StorageInconsistency,
    ValidationError,
)
from classvault.services import approvals, file_versions
from classvault.storage import PENDING_AREA, PUBLISHED_AREA
from .conftest import TestingSessionLocal, create_class, create_user, load_user


def submit_pdf(db, storage, user, class_id, *, data=b"%PDF v1", name="notes.pdf", based_on=None):
    return approvals.submit(
        db,
        storage,
        user=user,
        class_id=class_id,
        file_name=name,
        declared_type="application/pdf",
        data=data,
        based_on_file_id=based_on,
    )


@pytest.fixture
def actors(db):
    _, student_id = create_user()
    _, admin_id = create_user(is_admin=True)
    return load_user(db, student_id), load_user(db, admin_id)


def test_approve_publishes_first_version(db, storage, storage_dir, actors):
    student, admin = actors
    class_id = create_class(allowed_file_types=["pdf"])
    request = submit_pdf(db, storage, student, class_id)
    object_key = request.pending_object_key

    published = approvals.approve(db, storage, request.id, admin=admin)

    assert published.version == 1
    assert published.is_current_version
    assert published.is_approved
    assert published.root_file_id == published.id
    assert published.parent_file_id is None
    assert published.uploaded_by_id == student.id
    assert published.approved_by_id == admin.id
    assert published.storage_key == f"{class_id}/{object_key}"
    assert not (storage_dir / PENDING_AREA / object_key).exists()
    assert (storage_dir / PUBLISHED_AREA / str(class_id) / object_key).read_bytes() == b"%PDF v1"

    db.expire_all()
    stored = db.get(models.UploadRequest, request.id)
    assert stored.status == models.REQUEST_APPROVED
    assert stored.file_id == published.id
    assert stored.responded_by_id == admin.id
    assert stored.pending_object_key is None
    notification = db.get(models.Notification, stored.notification_id)
    assert notification.user_id == student.id
    assert notification.title == "File Approved: notes.pdf"
    assert notification.action_url == f"/file/{published.id}"
    assert notification.action_label == "View File"
    assert notification.notification_type == models.NOTIFICATION_FILE_APPROVED


def test_terminal_requests_cannot_be_decided_again(db, storage, actors):
    student, admin = actors
    class_id = create_class()
    request = submit_pdf(db, storage, student, class_id)
    approvals.approve(db, storage, request.id, admin=admin)

    with pytest.raises(InvalidState, match="Request is no longer pending"):
        approvals.approve(db, storage, request.id, admin=admin)
    with pytest.raises(InvalidState):
        approvals.reject(db, storage, request.id, admin=admin, reason="late")
    assert db.query(models.PublishedFile).filter_by(class_id=class_id).count() == 1


def test_reject_records_reason_and_discards_bytes(db, storage, storage_dir, actors):
    student, admin = actors
    request = submit_pdf(db, storage, student, create_class())
    object_key = request.pending_object_key

    rejected = approvals.reject(db, storage, request.id, admin=admin, reason="  wrong class  ")

    assert rejected.status == models.REQUEST_REJECTED
    assert rejected.rejection_reason == "wrong class"
    assert rejected.responded_by_id == admin.id
    assert rejected.pending_object_key is None
    assert not (storage_dir / PENDING_AREA / object_key).exists()
    notification = db.get(models.Notification, rejected.notification_id)
    assert notification.title == "Upload Rejected: notes.pdf"
    assert notification.message.endswith("was rejected: wrong class")
    assert notification.action_url == f"/requests/{request.id}"
    assert notification.action_label == "View Details"


def test_reject_requires_reason(db, storage, actors):
    student, admin = actors
    request = submit_pdf(db, storage, student, create_class())
    with pytest.raises(ValidationError):
        approvals.reject(db, storage, request.id, admin=admin, reason="   ")
    db.expire_all()
    assert db.get(models.UploadRequest, request.id).status == models.REQUEST_PENDING


def test_rejected_name_can_be_resubmitted(db, storage, actors):
    student, admin = actors
    class_id = create_class()
    first = submit_pdf(db, storage, student, class_id)
    approvals.reject(db, storage, first.id, admin=admin, reason="blurry")
    second = submit_pdf(db, storage, student, class_id, data=b"%PDF sharper")
    assert second.id != first.id
    assert second.status == models.REQUEST_PENDING


def test_update_creates_next_version(db, storage, actors):
    student, admin = actors
    class_id = create_class()
    v1 = approvals.approve(db, storage, submit_pdf(db, storage, student, class_id).id, admin=admin)

    update = submit_pdf(db, storage, student, class_id, data=b"%PDF v2", based_on=v1.id)
    assert update.based_on_file_id == v1.id
    v2 = approvals.approve(db, storage, update.id, admin=admin)

    db.expire_all()
    v1 = db.get(models.PublishedFile, v1.id)
    assert v2.version == 2
    assert v2.parent_file_id == v1.id
    assert v2.root_file_id == v1.id
    assert v2.is_current_version
    assert not v1.is_current_version
    current = (
        db.query(models.PublishedFile)
        .filter_by(root_file_id=v1.id, is_current_version=True)
        .all()
    )
    assert [f.id for f in current] == [v2.id]


def test_update_rules(db, storage, actors):
    student, admin = actors
    class_id = create_class()
    v1 = approvals.approve(db, storage, submit_pdf(db, storage, student, class_id).id, admin=admin)

    _, other_id = create_user()
    other = load_user(db, other_id)
    with pytest.raises(AccessForbidden):
        submit_pdf(db, storage, other, class_id, based_on=v1.id)
    with pytest.raises(ValidationError):
        submit_pdf(db, storage, student, create_class(), based_on=v1.id)

    submit_pdf(db, storage, student, class_id, data=b"v2", based_on=v1.id)
    with pytest.raises(approvals.RequestConflict, match="pending update request"):
        submit_pdf(db, storage, student, class_id, data=b"v2 again", based_on=v1.id)


def test_update_of_superseded_version_is_refused(db, storage, actors):
    student, admin = actors
    class_id = create_class()
    v1 = approvals.approve(db, storage, submit_pdf(db, storage, student, class_id).id, admin=admin)
    approvals.approve(db, storage, submit_pdf(db, storage, student, class_id, data=b"v2", based_on=v1.id).id, admin=admin)

    with pytest.raises(ValidationError, match="current version"):
        submit_pdf(db, storage, student, class_id, data=b"v3", based_on=v1.id)


def test_missing_payload_cannot_be_approved(db, storage, actors):
    student, admin = actors
    request = submit_pdf(db, storage, student, create_class())
    db.query(models.UploadRequest).filter_by(id=request.id).update({"pending_object_key": None})
    db.commit()
    with pytest.raises(MissingPayload):
        approvals.approve(db, storage, request.id, admin=admin)


def test_missing_pending_bytes_surface_as_inconsistency(db, storage, storage_dir, actors):
    student, admin = actors
    request = submit_pdf(db, storage, student, create_class())
    (storage_dir / PENDING_AREA / request.pending_object_key).unlink()
    with pytest.raises(StorageInconsistency):
        approvals.approve(db, storage, request.id, admin=admin)
    db.expire_all()
    assert db.get(models.UploadRequest, request.id).status == models.REQUEST_PENDING


def test_failed_commit_after_promote_leaves_request_pending_and_retry_succeeds(db, storage, actors, monkeypatch):
    student, admin = actors
    class_id = create_class()
    request = submit_pdf(db, storage, student, class_id)

    def broken_notification(*args, **kwargs):
        raise SQLAlchemyError("notification insert failed")

    with monkeypatch.context() as patch:
        patch.setattr(approvals.notifications, "create_notification", broken_notification)
        with pytest.raises(StorageInconsistency):
            approvals.approve(db, storage, request.id, admin=admin)

    db.expire_all()
    assert db.get(models.UploadRequest, request.id).status == models.REQUEST_PENDING
    assert db.query(models.PublishedFile).filter_by(class_id=class_id).count() == 0

    published = approvals.approve(db, storage, request.id, admin=admin)
    assert published.version == 1
    assert storage.published_get(class_id, published.storage_key) == b"%PDF v1"


def test_approval_losing_race_to_rejection(db, storage, actors, monkeypatch):
    student, admin = actors
    class_id = create_class()
    request = submit_pdf(db, storage, student, class_id)
    request_id = request.id
    admin_id = admin.id
    real_promote = storage.promote

    def promote_then_lose(object_key, target_class_id):
        published_key = real_promote(object_key, target_class_id)
        other = TestingSessionLocal()
        try:
            approvals.reject(other, storage, request_id, admin=load_user(other, admin_id), reason="duplicate")
        finally:
            other.close()
        return published_key

    monkeypatch.setattr(storage, "promote", promote_then_lose)
    with pytest.raises(InvalidState):
        approvals.approve(db, storage, request_id, admin=admin)

    db.expire_all()
    assert db.get(models.UploadRequest, request_id).status == models.REQUEST_REJECTED
    assert db.query(models.PublishedFile).filter_by(class_id=class_id).count() == 0
    assert list(storage.iter_published_keys()) == []


def test_approval_losing_race_to_another_approval(db, storage, actors, monkeypatch):
    student, admin = actors
    class_id = create_class()
    request = submit_pdf(db, storage, student, class_id)
    request_id = request.id
    admin_id = admin.id
    real_promote = storage.promote

    def promote_then_lose(object_key, target_class_id):
        published_key = real_promote(object_key, target_class_id)
        monkeypatch.setattr(storage, "promote", real_promote)
        other = TestingSessionLocal()
        try:
            approvals.approve(other, storage, request_id, admin=load_user(other, admin_id))
        finally:
            other.close()
        return published_key

    monkeypatch.setattr(storage, "promote", promote_then_lose)
    with pytest.raises(InvalidState, match="no longer pending"):
        approvals.approve(db, storage, request_id, admin=admin)

    db.expire_all()
    approved = db.get(models.UploadRequest, request_id)
    assert approved.status == models.REQUEST_APPROVED
    published = db.query(models.PublishedFile).filter_by(class_id=class_id).all()
    assert [f.id for f in published] == [approved.file_id]
    assert storage.published_get(class_id, published[0].storage_key) == b"%PDF v1"


def test_cancel_removes_request_and_bytes(db, storage, storage_dir, actors):
    student, admin = actors
    request = submit_pdf(db, storage, student, create_class())
    object_key = request.pending_object_key

    with pytest.raises(AccessForbidden):
        approvals.cancel(db, storage, request.id, user=admin)

    snapshot = approvals.cancel(db, storage, request.id, user=student)
    assert snapshot.id == request.id
    assert db.get(models.UploadRequest, request.id) is None
    assert not (storage_dir / PENDING_AREA / object_key).exists()


def test_cancel_of_decided_request_is_refused(db, storage, actors):
    student, admin = actors
    request = submit_pdf(db, storage, student, create_class())
    approvals.reject(db, storage, request.id, admin=admin, reason="no")
    with pytest.raises(InvalidState, match="Only pending requests can be cancelled"):
        approvals.cancel(db, storage, request.id, user=student)


def test_unknown_request(db, storage, actors):
    _, admin = actors
    with pytest.raises(approvals.NotFound):
        approvals.approve(db, storage, uuid.uuid4(), admin=admin)


def test_update_losing_to_version_switch_stays_pending(db, storage, actors, monkeypatch):
    student, admin = actors
    class_id = create_class()
    v1 = approvals.approve(db, storage, submit_pdf(db, storage, student, class_id).id, admin=admin)
    v2 = approvals.approve(db, storage, submit_pdf(db, storage, student, class_id, data=b"v2", based_on=v1.id).id, admin=admin)
    update = submit_pdf(db, storage, student, class_id, data=b"v3", based_on=v2.id)
    update_id, v1_id = update.id, v1.id
    real_promote = storage.promote

    def promote_then_switch(object_key, target_class_id):
        published_key = real_promote(object_key, target_class_id)
        other = TestingSessionLocal()
        try:
            file_versions.make_current(other, v1_id)
            other.commit()
        finally:
            other.close()
        return published_key

    with monkeypatch.context() as patch:
        patch.setattr(storage, "promote", promote_then_switch)
        with pytest.raises(InvalidState, match="no longer the current version"):
            approvals.approve(db, storage, update_id, admin=admin)

    db.expire_all()
    assert db.get(models.UploadRequest, update_id).status == models.REQUEST_PENDING
    assert len(list(storage.iter_published_keys())) == 3

    approvals.reject(db, storage, update_id, admin=admin, reason="base changed")
    assert len(list(storage.iter_published_keys())) == 2
