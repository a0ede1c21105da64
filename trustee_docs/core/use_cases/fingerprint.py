"""
Use Case: Content Fingerprint

Derives the identity used for duplicate lookup. Whether the identity is a
true content hash or a name/size/type heuristic is a parameter: the
heuristic gives false duplicates and false distincts, the hash does not.
"""

import hashlib
from dataclasses import dataclass
from enum import Enum


class FingerprintMode(str, Enum):
    CONTENT_HASH = "content_hash"
    METADATA = "metadata"


@dataclass(frozen=True)
class Fingerprint:
    filename: str
    size: int
    mime_type: str
    sha256: str | None = None

    @property
    def is_content_hash(self) -> bool:
        return self.sha256 is not None

    @property
    def key(self) -> str:
        if self.sha256:
            return f"sha256:{self.sha256}"
        return f"meta:{self.filename}:{self.size}:{self.mime_type}"

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "size": self.size,
            "mime_type": self.mime_type,
            "sha256": self.sha256,
            "key": self.key,
        }


def compute_fingerprint(
    filename: str,
    data: bytes,
    mime_type: str | None = None,
    mode: FingerprintMode | str = FingerprintMode.CONTENT_HASH,
) -> Fingerprint:
    """Fingerprint an uploaded file."""
    mode = FingerprintMode(mode)
    sha = hashlib.sha256(data).hexdigest() if mode == FingerprintMode.CONTENT_HASH else None
    return Fingerprint(
        filename=filename,
        size=len(data),
        mime_type=mime_type or "application/octet-stream",
        sha256=sha,
    )
