"""Quarantine and published storage areas for uploaded class files."""

from __future__ import annotations

import contextlib
import io
import logging
import os
import re
from typing import Iterator, Optional
from uuid import UUID, uuid4

from minio import Minio
from minio.commonconfig import CopySource
from minio.error import S3Error

from .errors import NotFound, StorageIOFailure, ValidationError

# purpose: keep not-yet-reviewed uploads and approved files in disjoint namespaces
# status: active
# related_docs: DESIGN.md

logger = logging.getLogger(__name__)

PENDING_AREA = "pending"
PUBLISHED_AREA = "approved"

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

_MINIO_CLIENT: Optional[Minio] = None


def sanitize_filename(filename: str) -> str:
    """Replace every character outside ``[A-Za-z0-9._-]`` with an underscore."""

    return re.sub(r"[^A-Za-z0-9._-]", "_", filename) or "upload.bin"


def build_object_key(filename: str) -> str:
    """Return a collision-resistant quarantine key for ``filename``."""

    return f"{uuid4()}-{sanitize_filename(filename)}"


def _check_key(object_key: str) -> str:
    if not object_key or object_key in {".", ".."} or not _KEY_PATTERN.match(object_key):
        raise ValidationError(f"Invalid storage key: {object_key!r}")
    return object_key


def published_key_for(class_id: UUID | str, object_key: str) -> str:
    return f"{class_id}/{_check_key(object_key)}"


def _split_published_key(published_key: str) -> tuple[str, str]:
    class_part, _, object_key = published_key.partition("/")
    if not class_part or not _KEY_PATTERN.match(class_part):
        raise ValidationError(f"Invalid published key: {published_key!r}")
    return class_part, _check_key(object_key)


class StorageArea:
    """Contract shared by the storage backends.

    The quarantine area is one flat namespace; the published area is
    partitioned by class. ``promote`` moves an object between the two and is
    safe to repeat: when the quarantine object is gone but its published
    counterpart exists, the published key is returned again.
    """

    def quarantine_put(self, data: bytes, declared_name: str, *, content_type: str = "application/octet-stream") -> str:
        raise NotImplementedError

    def quarantine_get(self, object_key: str) -> bytes:
        raise NotImplementedError

    def quarantine_delete(self, object_key: str) -> None:
        raise NotImplementedError

    def promote(self, object_key: str, class_id: UUID | str) -> str:
        raise NotImplementedError

    def published_get(self, class_id: UUID | str, published_key: str) -> bytes:
        raise NotImplementedError

    def published_delete(self, published_key: str) -> None:
        raise NotImplementedError

    def iter_published_keys(self) -> Iterator[str]:
        raise NotImplementedError

    def discard(self, object_key: str, class_id: UUID | str) -> None:
        """Remove a request's bytes from quarantine and any copy already promoted."""
        self.quarantine_delete(object_key)
        self.published_delete(published_key_for(class_id, object_key))


class LocalStorageArea(StorageArea):
    """Filesystem backend rooted at a directory shared by all workers."""

    def __init__(self, root: str) -> None:
        self.root = root

    def _pending_path(self, object_key: str) -> str:
        return os.path.join(self.root, PENDING_AREA, _check_key(object_key))

    def _published_path(self, published_key: str) -> str:
        class_part, object_key = _split_published_key(published_key)
        return os.path.join(self.root, PUBLISHED_AREA, class_part, object_key)

    def quarantine_put(self, data: bytes, declared_name: str, *, content_type: str = "application/octet-stream") -> str:
        object_key = build_object_key(declared_name)
        path = self._pending_path(object_key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            with contextlib.suppress(OSError):
                os.remove(path)
            raise StorageIOFailure(f"Failed to save file: {exc}") from exc
        return object_key

    def quarantine_get(self, object_key: str) -> bytes:
        path = self._pending_path(object_key)
        try:
            with open(path, "rb") as handle:
                return handle.read()
        except FileNotFoundError as exc:
            raise NotFound("Pending file not found in storage") from exc
        except OSError as exc:
            raise StorageIOFailure(f"Failed to read pending file: {exc}") from exc

    def quarantine_delete(self, object_key: str) -> None:
        try:
            os.remove(self._pending_path(object_key))
        except FileNotFoundError:
            return

    def promote(self, object_key: str, class_id: UUID | str) -> str:
        published_key = published_key_for(class_id, object_key)
        source = self._pending_path(object_key)
        destination = self._published_path(published_key)
        if not os.path.exists(source):
            if os.path.exists(destination):
                return published_key
            raise NotFound("Pending file is missing from storage")
        try:
            os.makedirs(os.path.dirname(destination), exist_ok=True)
            os.replace(source, destination)
        except FileNotFoundError as exc:
            # a concurrent promotion of the same object may have won the rename
            if os.path.exists(destination):
                return published_key
            raise NotFound("Pending file is missing from storage") from exc
        except OSError as exc:
            raise StorageIOFailure(f"Failed to move file to published area: {exc}") from exc
        return published_key

    def published_get(self, class_id: UUID | str, published_key: str) -> bytes:
        class_part, _ = _split_published_key(published_key)
        if class_part != str(class_id):
            raise NotFound("File not found in storage")
        try:
            with open(self._published_path(published_key), "rb") as handle:
                return handle.read()
        except FileNotFoundError as exc:
            raise NotFound("File not found in storage") from exc
        except OSError as exc:
            raise StorageIOFailure(f"Failed to read file: {exc}") from exc

    def published_delete(self, published_key: str) -> None:
        try:
            os.remove(self._published_path(published_key))
        except FileNotFoundError:
            return

    def iter_published_keys(self) -> Iterator[str]:
        base = os.path.join(self.root, PUBLISHED_AREA)
        if not os.path.isdir(base):
            return
        for class_part in sorted(os.listdir(base)):
            class_dir = os.path.join(base, class_part)
            if not os.path.isdir(class_dir):
                continue
            for object_key in sorted(os.listdir(class_dir)):
                yield f"{class_part}/{object_key}"


class MinioStorageArea(StorageArea):
    """S3-compatible backend; promotion is a server-side copy followed by a remove."""

    def __init__(self, client: Minio, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    def _exists(self, object_name: str) -> bool:
        try:
            self.client.stat_object(self.bucket, object_name)
        except S3Error as exc:
            if exc.code in {"NoSuchKey", "NoSuchObject"}:
                return False
            raise StorageIOFailure(f"Object storage error: {exc}") from exc
        return True

    def _read(self, object_name: str) -> bytes:
        try:
            response = self.client.get_object(self.bucket, object_name)
        except S3Error as exc:
            if exc.code in {"NoSuchKey", "NoSuchObject"}:
                raise NotFound("File not found in storage") from exc
            raise StorageIOFailure(f"Object storage error: {exc}") from exc
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def quarantine_put(self, data: bytes, declared_name: str, *, content_type: str = "application/octet-stream") -> str:
        object_key = build_object_key(declared_name)
        try:
            self.client.put_object(
                self.bucket,
                f"{PENDING_AREA}/{object_key}",
                io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except S3Error as exc:
            raise StorageIOFailure(f"Failed to save file: {exc}") from exc
        return object_key

    def quarantine_get(self, object_key: str) -> bytes:
        return self._read(f"{PENDING_AREA}/{_check_key(object_key)}")

    def quarantine_delete(self, object_key: str) -> None:
        try:
            self.client.remove_object(self.bucket, f"{PENDING_AREA}/{_check_key(object_key)}")
        except S3Error as exc:
            if exc.code not in {"NoSuchKey", "NoSuchObject"}:
                raise StorageIOFailure(f"Failed to delete pending file: {exc}") from exc

    def promote(self, object_key: str, class_id: UUID | str) -> str:
        published_key = published_key_for(class_id, object_key)
        source = f"{PENDING_AREA}/{object_key}"
        destination = f"{PUBLISHED_AREA}/{published_key}"
        if not self._exists(source):
            if self._exists(destination):
                return published_key
            raise NotFound("Pending file is missing from storage")
        try:
            self.client.copy_object(self.bucket, destination, CopySource(self.bucket, source))
            self.client.remove_object(self.bucket, source)
        except S3Error as exc:
            raise StorageIOFailure(f"Failed to move file to published area: {exc}") from exc
        return published_key

    def published_get(self, class_id: UUID | str, published_key: str) -> bytes:
        class_part, _ = _split_published_key(published_key)
        if class_part != str(class_id):
            raise NotFound("File not found in storage")
        return self._read(f"{PUBLISHED_AREA}/{published_key}")

    def published_delete(self, published_key: str) -> None:
        _split_published_key(published_key)
        try:
            self.client.remove_object(self.bucket, f"{PUBLISHED_AREA}/{published_key}")
        except S3Error as exc:
            if exc.code not in {"NoSuchKey", "NoSuchObject"}:
                raise StorageIOFailure(f"Failed to delete file: {exc}") from exc

    def iter_published_keys(self) -> Iterator[str]:
        prefix = f"{PUBLISHED_AREA}/"
        for obj in self.client.list_objects(self.bucket, prefix=prefix, recursive=True):
            yield obj.object_name[len(prefix):]


def _get_storage_dir() -> str:
    """Return the configured storage root for the filesystem backend."""

    return os.getenv("STORAGE_DIR", "storage")


def _ensure_minio_client() -> Optional[Minio]:
    """Initialize and return a MinIO client when configuration is present."""

    global _MINIO_CLIENT
    endpoint = os.getenv("MINIO_ENDPOINT", "").strip()
    access_key = os.getenv("MINIO_ACCESS_KEY")
    secret_key = os.getenv("MINIO_SECRET_KEY")
    if not endpoint or not access_key or not secret_key:
        return None
    if _MINIO_CLIENT is None:
        bucket = os.getenv("MINIO_BUCKET", "classvault")
        client = Minio(
            endpoint.removeprefix("https://").removeprefix("http://"),
            access_key=access_key,
            secret_key=secret_key,
            secure=endpoint.startswith("https"),
        )
        try:
            if not client.bucket_exists(bucket):
                client.make_bucket(bucket)
        except S3Error as exc:
            logger.warning("MinIO bucket %s unavailable, falling back to local storage: %s", bucket, exc)
            return None
        _MINIO_CLIENT = client
    return _MINIO_CLIENT


def get_storage() -> StorageArea:
    """FastAPI dependency returning the configured storage backend."""

    client = _ensure_minio_client()
    if client is not None:
        return MinioStorageArea(client, os.getenv("MINIO_BUCKET", "classvault"))
    return LocalStorageArea(_get_storage_dir())
