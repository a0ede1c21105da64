"""
Adapter: MinIO Storage Service

Concrete implementation of IStorageService using MinIO
(S3-compatible API).
"""

import hashlib
import io
import logging
from datetime import timedelta

from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from trustee_docs.core.errors import UploadFailureError
from trustee_docs.core.interfaces.storage_service import IStorageService, StorageRef

logger = logging.getLogger(__name__)


class MinIOStorageService(IStorageService):
    """
    Document storage on MinIO.

    In production, switch to real S3 without changing any other code;
    only the connection credentials change.
    """

    def __init__(self, endpoint: str, access_key: str, secret_key: str, bucket: str, secure: bool = False):
        self._bucket = bucket
        self._client = Minio(endpoint, access_key=access_key, secret_key=secret_key, secure=secure)
        self._bucket_checked = False

    def _ensure_bucket(self):
        if self._bucket_checked:
            return
        if not self._client.bucket_exists(self._bucket):
            self._client.make_bucket(self._bucket)
            logger.info(f"Created bucket {self._bucket}")
        self._bucket_checked = True

    def upload(self, data: bytes, key: str, content_type: str = "application/octet-stream") -> StorageRef:
        sha = hashlib.sha256(data).hexdigest()
        try:
            self._ensure_bucket()
            self._client.put_object(
                self._bucket,
                key,
                io.BytesIO(data),
                length=len(data),
                content_type=content_type,
                metadata={"sha256": sha},
            )
        except (S3Error, HTTPError) as e:
            raise UploadFailureError(f"MinIO upload of {key} failed: {e}") from e

        return StorageRef(bucket=self._bucket, key=key, size_bytes=len(data), sha256=sha, content_type=content_type)

    def download(self, key: str) -> bytes:
        response = None
        try:
            response = self._client.get_object(self._bucket, key)
            return response.read()
        except (S3Error, HTTPError) as e:
            raise UploadFailureError(f"MinIO download of {key} failed: {e}") from e
        finally:
            if response is not None:
                response.close()
                response.release_conn()

    def delete(self, key: str) -> None:
        try:
            self._client.remove_object(self._bucket, key)
        except S3Error as e:
            if e.code == "NoSuchKey":
                return
            raise UploadFailureError(f"MinIO delete of {key} failed: {e}") from e
        except HTTPError as e:
            raise UploadFailureError(f"MinIO delete of {key} failed: {e}") from e

    def get_url(self, key: str, expires_seconds: int = 3600) -> str:
        try:
            return self._client.presigned_get_object(self._bucket, key, expires=timedelta(seconds=expires_seconds))
        except (S3Error, HTTPError) as e:
            raise UploadFailureError(f"Could not sign URL for {key}: {e}") from e

    def ping(self) -> bool:
        try:
            self._client.bucket_exists(self._bucket)
            return True
        except (S3Error, HTTPError) as e:
            logger.warning(f"MinIO unreachable: {e}")
            return False
