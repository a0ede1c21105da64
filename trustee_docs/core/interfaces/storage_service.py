"""
Contract: Storage Service

Persists raw document bytes in object storage
(MinIO/S3 or the local filesystem).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class StorageRef:
    """Reference to a stored file."""
    bucket: str
    key: str
    size_bytes: int
    sha256: str
    content_type: str


class IStorageService(ABC):
    """
    Port: Storage Service

    Durable persistence of binary documents.
    Implementations may be MinIO, S3, local filesystem, etc.
    Every failure is raised as UploadFailureError.
    """

    @abstractmethod
    def upload(self, data: bytes, key: str, content_type: str = "application/octet-stream") -> StorageRef:
        """
        Upload a file.

        Args:
            data: File content.
            key: Path/key inside the storage.
            content_type: MIME type.

        Returns:
            StorageRef with location and hash.
        """
        ...

    @abstractmethod
    def download(self, key: str) -> bytes:
        """Download a file's bytes."""
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete a file. Deleting a missing key is not an error."""
        ...

    @abstractmethod
    def get_url(self, key: str, expires_seconds: int = 3600) -> str:
        """
        Build a URL for temporary access.

        Args:
            key: Path/key inside the storage.
            expires_seconds: Expiry for signed URLs.

        Returns:
            Signed (or local file) URL.
        """
        ...

    def ping(self) -> bool:
        """Whether the backend is reachable."""
        return True
