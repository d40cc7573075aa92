import os
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ.setdefault("SECRET_KEY", "test-secret")
for _var in ("MINIO_ENDPOINT", "MINIO_ACCESS_KEY", "MINIO_SECRET_KEY"):
    os.environ.pop(_var, None)
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

import uuid

sys.path.append(str(Path(__file__).resolve().parents[2]))

from classvault.main import app
from classvault.database import Base, get_db
from classvault.auth import create_access_token
from classvault.storage import LocalStorageArea
from classvault import models

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def storage_dir(tmp_path):
    d = tmp_path / "storage"
    d.mkdir()
    os.environ["STORAGE_DIR"] = str(d)
    yield d


@pytest.fixture
def storage(storage_dir):
    return LocalStorageArea(str(storage_dir))


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def create_user(*, is_admin: bool = False, is_active: bool = True):
    """Insert a user and return ``(headers, user_id)`` carrying a bearer token for it."""

    prefix = "admin" if is_admin else "student"
    email = f"{prefix}+{uuid.uuid4()}@example.com"
    token = create_access_token({"sub": email})
    db = TestingSessionLocal()
    try:
        user = models.User(email=email, full_name=prefix.title(), is_admin=is_admin, is_active=is_active)
        db.add(user)
        db.commit()
        db.refresh(user)
        user_id = user.id
    finally:
        db.close()
    return {"Authorization": f"Bearer {token}"}, user_id


def create_class(*, allowed_file_types=None, is_active: bool = True, name: str | None = None):
    db = TestingSessionLocal()
    try:
        school_class = models.SchoolClass(
            name=name or f"Class {uuid.uuid4().hex[:6]}",
            is_active=is_active,
            allowed_file_types=list(allowed_file_types or []),
        )
        db.add(school_class)
        db.commit()
        db.refresh(school_class)
        return school_class.id
    finally:
        db.close()


def load_user(db, user_id):
    return db.get(models.User, user_id)
