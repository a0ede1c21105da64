"""
Use Case: Upload Document

Pipeline:
  1. Validate (size, MIME type)
  2. Fingerprint
  3. Duplicate check → prompt the caller, or apply its resolution
  4. Storage write
  5. Record insert (pending) + version 1

Running the analysis is left to the caller (a background job), which gets
back the document id to schedule.
"""

import logging
import threading
import uuid
from dataclasses import dataclass

from trustee_docs.core.entities.document import Document, DocumentVersion, ProcessingStatus, utc_now
from trustee_docs.core.errors import DocumentNotFoundError, InvalidUploadError, UserCancelledError
from trustee_docs.core.interfaces.document_store import IDocumentStore
from trustee_docs.core.interfaces.storage_service import IStorageService
from trustee_docs.core.use_cases.check_duplicates import (
    DuplicateCheck,
    DuplicateResolver,
    Resolution,
    renamed_title,
)
from trustee_docs.core.use_cases.fingerprint import Fingerprint, FingerprintMode, compute_fingerprint

logger = logging.getLogger(__name__)


class CancellationToken:
    """Set by the caller to stop an upload that has not been recorded yet."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, where: str = ""):
        if self._event.is_set():
            raise UserCancelledError(f"Upload cancelled{f' before {where}' if where else ''}")


@dataclass
class UploadOutcome:
    """
    outcome ∈ created | replaced | versioned | duplicate | cancelled.

    `needs_analysis` tells the caller to schedule a pipeline run.
    """
    outcome: str
    document: Document | None = None
    duplicate: DuplicateCheck | None = None
    fingerprint: Fingerprint | None = None
    message: str = ""

    @property
    def needs_analysis(self) -> bool:
        return self.outcome in ("created", "replaced", "versioned")


class UploadDocumentUseCase:
    """
    Use Case: file → stored, recorded document.

    Dependency Injection: store, storage and the orchestrator (used to
    reset documents whose bytes get replaced) come through the constructor.
    """

    def __init__(
        self,
        store: IDocumentStore,
        storage: IStorageService,
        orchestrator,
        fingerprint_mode: FingerprintMode | str = FingerprintMode.CONTENT_HASH,
        max_upload_bytes: int = 50 * 1024 * 1024,
        allowed_mime_types: list[str] | None = None,
    ):
        self._store = store
        self._storage = storage
        self._orchestrator = orchestrator
        self._resolver = DuplicateResolver(store)
        self._mode = FingerprintMode(fingerprint_mode)
        self._max_bytes = max_upload_bytes
        self._allowed = set(allowed_mime_types or [])

    def execute(
        self,
        owner_id: str,
        filename: str,
        data: bytes,
        mime_type: str | None = None,
        resolution: Resolution | str | None = None,
        target_existing_id: str | None = None,
        client_hint: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> UploadOutcome:
        token = cancel_token or CancellationToken()
        mime_type = mime_type or "application/octet-stream"
        resolution = Resolution(resolution) if resolution else None

        self._validate(filename, data, mime_type)
        fingerprint = compute_fingerprint(filename, data, mime_type, self._mode)

        if resolution == Resolution.CANCEL:
            logger.info(f"Upload of {filename} cancelled by owner {owner_id}")
            return UploadOutcome("cancelled", fingerprint=fingerprint, message="Upload cancelled")

        try:
            if resolution is None:
                check = self._resolver.check(owner_id, fingerprint)
                if check.is_duplicate:
                    return UploadOutcome(
                        "duplicate",
                        duplicate=check,
                        fingerprint=fingerprint,
                        message=f"A document matching {filename} already exists",
                    )
                return self._create(owner_id, filename, data, fingerprint, client_hint, token,
                                    duplicate_check_failed=check.lookup_failed)

            if resolution == Resolution.RENAME:
                title = renamed_title(filename, lambda t: self._store.title_exists(owner_id, t))
                return self._create(owner_id, title, data, fingerprint, client_hint, token,
                                    renamed_from=filename)

            target = self._resolve_target(owner_id, fingerprint, target_existing_id)
            if resolution == Resolution.REPLACE:
                return self._replace(target, data, fingerprint, token)
            return self._add_version(owner_id, target, filename, data, fingerprint, token)

        except UserCancelledError as e:
            logger.info(f"Upload of {filename} for owner {owner_id} cancelled: {e.message}")
            return UploadOutcome("cancelled", fingerprint=fingerprint, message=e.message)

    # ── Resolutions ──────────────────────────────────────

    def _create(
        self,
        owner_id: str,
        title: str,
        data: bytes,
        fingerprint: Fingerprint,
        client_hint: str | None,
        token: CancellationToken,
        **extra_metadata,
    ) -> UploadOutcome:
        document_id = str(uuid.uuid4())
        key = f"{owner_id}/{document_id}/{title}"

        token.raise_if_cancelled("storage write")
        ref = self._storage.upload(data, key, fingerprint.mime_type)
        try:
            token.raise_if_cancelled("record insert")
            now = utc_now()
            metadata = {
                "stage": "queued",
                "fingerprint": fingerprint.to_dict(),
                "original_filename": fingerprint.filename,
                "events": [{"event": "uploaded", "at": now.isoformat(), "storage_path": ref.key}],
            }
            if client_hint:
                metadata["client_hint"] = client_hint
            metadata.update({k: v for k, v in extra_metadata.items() if v})

            document = self._store.insert(
                Document(
                    id=document_id,
                    owner_id=owner_id,
                    title=title,
                    type=fingerprint.mime_type,
                    size=fingerprint.size,
                    storage_path=ref.key,
                    sha256=ref.sha256 if fingerprint.is_content_hash else None,
                    status=ProcessingStatus.PENDING,
                    metadata=metadata,
                    created_at=now,
                    updated_at=now,
                ),
                DocumentVersion(
                    id=str(uuid.uuid4()),
                    document_id=document_id,
                    version_number=1,
                    storage_path=ref.key,
                    is_current=True,
                    size=fingerprint.size,
                    sha256=ref.sha256,
                    change_notes="Initial upload",
                    created_by=owner_id,
                    created_at=now,
                ),
            )
        except Exception:
            # No record points at the object; remove it.
            self._storage.delete(ref.key)
            raise

        logger.info(f"Uploaded {title} as document {document.id} ({fingerprint.size} bytes)")
        return UploadOutcome("created", document=document, fingerprint=fingerprint)

    def _replace(self, target: Document, data: bytes, fingerprint: Fingerprint, token: CancellationToken) -> UploadOutcome:
        key = target.storage_path or f"{target.owner_id}/{target.id}/{target.title}"
        token.raise_if_cancelled("storage write")
        ref = self._storage.upload(data, key, fingerprint.mime_type)

        self._store.update_content(
            target.id,
            storage_path=ref.key,
            size=fingerprint.size,
            mime_type=fingerprint.mime_type,
            sha256=ref.sha256 if fingerprint.is_content_hash else None,
            version_sha256=ref.sha256,
        )
        document = self._orchestrator.prepare_for_new_content(target.id, reason="replaced")
        logger.info(f"Replaced content of document {target.id}")
        return UploadOutcome("replaced", document=document, fingerprint=fingerprint)

    def _add_version(
        self,
        owner_id: str,
        target: Document,
        filename: str,
        data: bytes,
        fingerprint: Fingerprint,
        token: CancellationToken,
    ) -> UploadOutcome:
        versions = self._store.list_versions(target.id)
        number = max((v.version_number for v in versions), default=0) + 1
        key = f"{target.owner_id}/{target.id}/v{number}_{filename}"

        token.raise_if_cancelled("storage write")
        ref = self._storage.upload(data, key, fingerprint.mime_type)
        try:
            token.raise_if_cancelled("version insert")
            self._store.add_version(DocumentVersion(
                id=str(uuid.uuid4()),
                document_id=target.id,
                version_number=number,
                storage_path=ref.key,
                is_current=True,
                size=fingerprint.size,
                sha256=ref.sha256,
                change_notes=f"Uploaded {filename}",
                created_by=owner_id,
            ))
        except Exception:
            self._storage.delete(ref.key)
            raise

        self._store.update_content(
            target.id,
            storage_path=ref.key,
            size=fingerprint.size,
            mime_type=fingerprint.mime_type,
            sha256=ref.sha256 if fingerprint.is_content_hash else None,
            version_sha256=ref.sha256,
        )
        document = self._orchestrator.prepare_for_new_content(target.id, reason=f"version {number}")
        logger.info(f"Added version {number} to document {target.id}")
        return UploadOutcome("versioned", document=document, fingerprint=fingerprint)

    # ── Helpers ──────────────────────────────────────────

    def _resolve_target(self, owner_id: str, fingerprint: Fingerprint, target_existing_id: str | None) -> Document:
        if target_existing_id:
            target = self._store.get(target_existing_id)
            if target.owner_id != owner_id:
                raise DocumentNotFoundError(f"Document {target_existing_id} not found")
            return target
        check = self._resolver.check(owner_id, fingerprint)
        if not check.candidates:
            raise DocumentNotFoundError(f"No existing document matches {fingerprint.filename}")
        return check.candidates[0]

    def _validate(self, filename: str, data: bytes, mime_type: str):
        if not filename:
            raise InvalidUploadError("Missing file name")
        if not data:
            raise InvalidUploadError("Empty file")
        if len(data) > self._max_bytes:
            raise InvalidUploadError(
                f"File is {len(data)} bytes, limit is {self._max_bytes}",
                details={"size": len(data), "max_upload_bytes": self._max_bytes},
            )
        if self._allowed and mime_type not in self._allowed:
            raise InvalidUploadError(
                f"Unsupported file type: {mime_type}",
                details={"mime_type": mime_type},
            )
