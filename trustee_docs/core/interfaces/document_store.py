"""
Contract: Document Record Store

The relational store holding documents, versions, analysis results and
downstream work items. It is the single shared mutable resource of the
pipeline; every status write is compare-and-set.
"""

from abc import ABC, abstractmethod

from trustee_docs.core.entities.analysis_result import AnalysisResult
from trustee_docs.core.entities.document import Document, DocumentVersion, ProcessingStatus
from trustee_docs.core.entities.work_item import Folder, FolderRecommendation, FollowUpTask


class IDocumentStore(ABC):
    """
    Port: Document Record Store

    Implementations wrap backend failures in PersistenceError and raise
    DocumentNotFoundError for unknown ids.
    """

    # ── Documents ──

    @abstractmethod
    def insert(self, document: Document, initial_version: DocumentVersion | None = None) -> Document:
        """Insert a new document (and its first version) in one transaction."""
        ...

    @abstractmethod
    def get(self, document_id: str) -> Document:
        ...

    @abstractmethod
    def find_by_storage_path(self, storage_path: str) -> Document | None:
        ...

    @abstractmethod
    def find_duplicates(
        self,
        owner_id: str,
        *,
        sha256: str | None = None,
        title: str | None = None,
        size: int | None = None,
        mime_type: str | None = None,
    ) -> list[Document]:
        """Documents of one owner matching a content hash, or title+size+type."""
        ...

    @abstractmethod
    def title_exists(self, owner_id: str, title: str) -> bool:
        ...

    @abstractmethod
    def update_status(
        self,
        document_id: str,
        expected: ProcessingStatus | None,
        status: ProcessingStatus,
        metadata_patch: dict | None = None,
        clear_keys: tuple[str, ...] = (),
    ) -> Document:
        """
        Compare-and-set status write.

        Applies only when the row still has `expected` (None skips the check),
        otherwise raises StaleStatusError. Metadata is merged, never replaced;
        `clear_keys` removes top-level keys after the merge.
        """
        ...

    @abstractmethod
    def patch_metadata(self, document_id: str, metadata_patch: dict) -> Document:
        """Merge into metadata without touching status."""
        ...

    @abstractmethod
    def update_content(
        self,
        document_id: str,
        *,
        storage_path: str,
        size: int,
        mime_type: str,
        sha256: str | None,
        version_sha256: str | None = None,
    ) -> Document:
        """
        Point the document at new bytes. The current version row, when it
        lives at the same storage path, takes the new size and `version_sha256`.
        """
        ...

    @abstractmethod
    def set_parent_folder(self, document_id: str, folder_id: str | None) -> Document:
        ...

    # ── Versions ──

    @abstractmethod
    def list_versions(self, document_id: str) -> list[DocumentVersion]:
        """Newest first."""
        ...

    @abstractmethod
    def add_version(self, version: DocumentVersion) -> DocumentVersion:
        """Add a version as current; clears is_current on the others atomically."""
        ...

    @abstractmethod
    def switch_version(self, document_id: str, version_id: str) -> DocumentVersion:
        """Atomically make `version_id` the only current version and repoint the document."""
        ...

    # ── Analysis ──

    @abstractmethod
    def get_current_analysis(self, document_id: str) -> AnalysisResult | None:
        ...

    @abstractmethod
    def save_analysis(self, analysis: AnalysisResult) -> AnalysisResult:
        """Persist a result with its risk factors, superseding the current one."""
        ...

    @abstractmethod
    def supersede_analysis(self, document_id: str) -> None:
        """Clear the current flag so the next run re-invokes the oracle."""
        ...

    # ── Work items ──

    @abstractmethod
    def add_task_if_absent(self, task: FollowUpTask) -> FollowUpTask | None:
        """Insert unless (document_id, dedupe_key) exists; returns None when skipped."""
        ...

    @abstractmethod
    def list_tasks(self, document_id: str) -> list[FollowUpTask]:
        ...

    @abstractmethod
    def save_recommendation(self, recommendation: FolderRecommendation) -> FolderRecommendation:
        """Replaces any pending recommendation for the same document."""
        ...

    @abstractmethod
    def get_recommendation(self, recommendation_id: str) -> FolderRecommendation:
        ...

    @abstractmethod
    def get_pending_recommendation(self, document_id: str) -> FolderRecommendation | None:
        ...

    @abstractmethod
    def find_recommendation_for_analysis(self, document_id: str, analysis_id: str) -> FolderRecommendation | None:
        """Latest recommendation derived from this analysis, whatever its status."""
        ...

    @abstractmethod
    def update_recommendation(
        self, recommendation_id: str, status: str, previous_folder_id: str | None = None
    ) -> FolderRecommendation:
        ...

    @abstractmethod
    def get_or_create_folder(self, owner_id: str, name: str, folder_type: str) -> Folder:
        ...

    def ping(self) -> bool:
        return True
