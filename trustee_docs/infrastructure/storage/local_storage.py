"""
Adapter: Local Filesystem Storage Service

Concrete implementation of IStorageService on a local directory.
Used for development and tests; keys map to relative paths under base_dir.
"""

import hashlib
import logging
import os
import uuid
from pathlib import Path

from trustee_docs.core.errors import UploadFailureError
from trustee_docs.core.interfaces.storage_service import IStorageService, StorageRef

logger = logging.getLogger(__name__)


class LocalStorageService(IStorageService):
    """File storage rooted at one directory, with path traversal checks."""

    def __init__(self, base_dir: str | Path, bucket: str = "documents"):
        self._bucket = bucket
        self._base_dir = (Path(base_dir) / bucket).resolve()
        self._base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or "\x00" in key or "\\" in key or key.startswith(("/", "~")):
            raise UploadFailureError(f"Invalid storage key: {key!r}")
        if any(part == ".." for part in key.split("/")):
            raise UploadFailureError(f"Invalid storage key: {key!r}")
        path = (self._base_dir / key).resolve()
        try:
            path.relative_to(self._base_dir)
        except ValueError as e:
            raise UploadFailureError(f"Storage key resolves outside storage: {key!r}") from e
        return path

    def upload(self, data: bytes, key: str, content_type: str = "application/octet-stream") -> StorageRef:
        path = self._path(key)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise UploadFailureError(f"Could not write {key}: {e}") from e

        logger.debug(f"Stored {len(data)} bytes at {path}")
        return StorageRef(
            bucket=self._bucket,
            key=key,
            size_bytes=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
            content_type=content_type,
        )

    def download(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise UploadFailureError(f"Stored object not found: {key}") from e
        except OSError as e:
            raise UploadFailureError(f"Could not read {key}: {e}") from e

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise UploadFailureError(f"Could not delete {key}: {e}") from e

    def get_url(self, key: str, expires_seconds: int = 3600) -> str:
        return self._path(key).as_uri()

    def ping(self) -> bool:
        return self._base_dir.is_dir() and os.access(self._base_dir, os.W_OK)
