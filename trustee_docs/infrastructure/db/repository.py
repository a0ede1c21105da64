"""
Document Repository — SQLAlchemy implementation of IDocumentStore.

Handles:
  - Documents with compare-and-set status writes and merged metadata
  - Versions (exactly one current per document)
  - Analysis results (exactly one current per document)
  - Follow-up tasks, folders and folder recommendations
"""

import logging
from contextlib import contextmanager

from sqlalchemy import desc, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from trustee_docs.core.entities.analysis_result import AnalysisResult
from trustee_docs.core.entities.document import Document, DocumentVersion, ProcessingStatus, merge_metadata, utc_now
from trustee_docs.core.entities.work_item import Folder, FolderRecommendation, FollowUpTask
from trustee_docs.core.errors import DocumentNotFoundError, PersistenceError, StaleStatusError
from trustee_docs.core.interfaces.document_store import IDocumentStore
from trustee_docs.infrastructure.db.database import get_db, ping_db
from trustee_docs.infrastructure.db.models import (
    AnalysisResultRecord,
    DocumentRecord,
    DocumentVersionRecord,
    FolderRecommendationRecord,
    FolderRecord,
    TaskRecord,
)

logger = logging.getLogger(__name__)


class DocumentRepository(IDocumentStore):
    """Repository for documents and everything hanging off them."""

    @contextmanager
    def _session(self):
        try:
            with get_db() as db:
                yield db
        except SQLAlchemyError as e:
            logger.error(f"Database error: {e}")
            raise PersistenceError(f"Database error: {e.__class__.__name__}", details={"error": str(e)}) from e

    @staticmethod
    def _document(db, document_id: str) -> DocumentRecord:
        record = db.get(DocumentRecord, document_id)
        if record is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return record

    # ── Documents ──

    def insert(self, document: Document, initial_version: DocumentVersion | None = None) -> Document:
        with self._session() as db:
            record = DocumentRecord.from_entity(document)
            db.add(record)
            if initial_version is not None:
                db.add(DocumentVersionRecord.from_entity(initial_version))
            db.flush()
            logger.info(f"Inserted document {record.id} for owner {record.owner_id}")
            return record.to_entity()

    def get(self, document_id: str) -> Document:
        with self._session() as db:
            return self._document(db, document_id).to_entity()

    def find_by_storage_path(self, storage_path: str) -> Document | None:
        with self._session() as db:
            record = db.query(DocumentRecord).filter_by(storage_path=storage_path).first()
            return record.to_entity() if record else None

    def find_duplicates(
        self,
        owner_id: str,
        *,
        sha256: str | None = None,
        title: str | None = None,
        size: int | None = None,
        mime_type: str | None = None,
    ) -> list[Document]:
        with self._session() as db:
            query = db.query(DocumentRecord).filter_by(owner_id=owner_id)
            if sha256:
                query = query.filter_by(sha256=sha256)
            else:
                query = query.filter_by(title=title, size=size, type=mime_type)
            return [r.to_entity() for r in query.order_by(desc(DocumentRecord.created_at)).all()]

    def title_exists(self, owner_id: str, title: str) -> bool:
        with self._session() as db:
            return db.query(DocumentRecord.id).filter_by(owner_id=owner_id, title=title).first() is not None

    def update_status(
        self,
        document_id: str,
        expected: ProcessingStatus | None,
        status: ProcessingStatus,
        metadata_patch: dict | None = None,
        clear_keys: tuple[str, ...] = (),
    ) -> Document:
        with self._session() as db:
            record = self._document(db, document_id)
            current = record.ai_processing_status
            if expected is not None and current != ProcessingStatus(expected).value:
                raise StaleStatusError(
                    f"Document {document_id} is {current}, expected {ProcessingStatus(expected).value}"
                )

            merged = merge_metadata(record.metadata_, metadata_patch)
            for key in clear_keys:
                merged.pop(key, None)

            # Guarded UPDATE: another writer may have moved the row since the read
            result = db.execute(
                update(DocumentRecord)
                .where(DocumentRecord.id == document_id, DocumentRecord.ai_processing_status == current)
                .values({
                    DocumentRecord.ai_processing_status: ProcessingStatus(status).value,
                    DocumentRecord.metadata_: merged,
                    DocumentRecord.updated_at: utc_now(),
                })
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StaleStatusError(f"Document {document_id} changed status during the write")

            db.refresh(record)
            return record.to_entity()

    def patch_metadata(self, document_id: str, metadata_patch: dict) -> Document:
        with self._session() as db:
            record = self._document(db, document_id)
            record.metadata_ = merge_metadata(record.metadata_, metadata_patch)
            db.flush()
            return record.to_entity()

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
        with self._session() as db:
            record = self._document(db, document_id)
            record.storage_path = storage_path
            record.size = size
            record.type = mime_type
            record.sha256 = sha256
            current = db.query(DocumentVersionRecord).filter_by(document_id=document_id, is_current=True).first()
            if current is not None and current.storage_path == storage_path:
                current.size = size
                if version_sha256 is not None:
                    current.sha256 = version_sha256
            db.flush()
            return record.to_entity()

    def set_parent_folder(self, document_id: str, folder_id: str | None) -> Document:
        with self._session() as db:
            record = self._document(db, document_id)
            if folder_id is not None and db.get(FolderRecord, folder_id) is None:
                raise DocumentNotFoundError(f"Folder {folder_id} not found")
            record.parent_folder_id = folder_id
            db.flush()
            return record.to_entity()

    # ── Versions ──

    def list_versions(self, document_id: str) -> list[DocumentVersion]:
        with self._session() as db:
            records = (
                db.query(DocumentVersionRecord)
                .filter_by(document_id=document_id)
                .order_by(desc(DocumentVersionRecord.version_number))
                .all()
            )
            return [r.to_entity() for r in records]

    def add_version(self, version: DocumentVersion) -> DocumentVersion:
        with self._session() as db:
            document = self._document(db, version.document_id)
            db.execute(
                update(DocumentVersionRecord)
                .where(DocumentVersionRecord.document_id == version.document_id)
                .values({DocumentVersionRecord.is_current: False})
                .execution_options(synchronize_session=False)
            )
            record = DocumentVersionRecord.from_entity(version)
            record.is_current = True
            db.add(record)
            document.storage_path = record.storage_path
            db.flush()
            logger.info(f"Document {version.document_id}: version {record.version_number} is current")
            return record.to_entity()

    def switch_version(self, document_id: str, version_id: str) -> DocumentVersion:
        with self._session() as db:
            document = self._document(db, document_id)
            target = db.query(DocumentVersionRecord).filter_by(id=version_id, document_id=document_id).first()
            if target is None:
                raise DocumentNotFoundError(f"Version {version_id} not found for document {document_id}")

            db.execute(
                update(DocumentVersionRecord)
                .where(DocumentVersionRecord.document_id == document_id, DocumentVersionRecord.id != version_id)
                .values({DocumentVersionRecord.is_current: False})
                .execution_options(synchronize_session=False)
            )
            target.is_current = True
            document.storage_path = target.storage_path
            if target.size:
                document.size = target.size
            if target.sha256 and document.sha256:
                document.sha256 = target.sha256
            db.flush()
            return target.to_entity()

    # ── Analysis ──

    def get_current_analysis(self, document_id: str) -> AnalysisResult | None:
        with self._session() as db:
            record = (
                db.query(AnalysisResultRecord)
                .filter_by(document_id=document_id, is_current=True)
                .order_by(desc(AnalysisResultRecord.created_at))
                .first()
            )
            return record.to_entity() if record else None

    def save_analysis(self, analysis: AnalysisResult) -> AnalysisResult:
        with self._session() as db:
            self._supersede(db, analysis.document_id)
            record = AnalysisResultRecord.from_entity(analysis)
            db.add(record)
            db.flush()
            logger.info(f"Saved analysis {record.id} for document {record.document_id} ({len(record.risk_factors)} risks)")
            return record.to_entity()

    def supersede_analysis(self, document_id: str) -> None:
        with self._session() as db:
            self._supersede(db, document_id)

    @staticmethod
    def _supersede(db, document_id: str):
        db.execute(
            update(AnalysisResultRecord)
            .where(AnalysisResultRecord.document_id == document_id, AnalysisResultRecord.is_current.is_(True))
            .values({AnalysisResultRecord.is_current: False, AnalysisResultRecord.superseded_at: utc_now()})
            .execution_options(synchronize_session=False)
        )

    # ── Work items ──

    def add_task_if_absent(self, task: FollowUpTask) -> FollowUpTask | None:
        with self._session() as db:
            exists = db.query(TaskRecord.id).filter_by(document_id=task.document_id, dedupe_key=task.dedupe_key).first()
            if exists is not None:
                logger.debug(f"Task {task.dedupe_key} already exists for document {task.document_id}")
                return None
            record = TaskRecord.from_entity(task)
            try:
                with db.begin_nested():
                    db.add(record)
            except IntegrityError:
                # Lost a concurrent insert of the same key
                return None
            return record.to_entity()

    def list_tasks(self, document_id: str) -> list[FollowUpTask]:
        with self._session() as db:
            records = db.query(TaskRecord).filter_by(document_id=document_id).order_by(TaskRecord.created_at).all()
            return [r.to_entity() for r in records]

    def save_recommendation(self, recommendation: FolderRecommendation) -> FolderRecommendation:
        with self._session() as db:
            db.query(FolderRecommendationRecord).filter_by(
                document_id=recommendation.document_id, status="pending"
            ).delete(synchronize_session=False)
            record = FolderRecommendationRecord.from_entity(recommendation)
            db.add(record)
            db.flush()
            return record.to_entity()

    def get_recommendation(self, recommendation_id: str) -> FolderRecommendation:
        with self._session() as db:
            record = db.get(FolderRecommendationRecord, recommendation_id)
            if record is None:
                raise DocumentNotFoundError(f"Folder recommendation {recommendation_id} not found")
            return record.to_entity()

    def get_pending_recommendation(self, document_id: str) -> FolderRecommendation | None:
        with self._session() as db:
            record = (
                db.query(FolderRecommendationRecord)
                .filter_by(document_id=document_id, status="pending")
                .order_by(desc(FolderRecommendationRecord.created_at))
                .first()
            )
            return record.to_entity() if record else None

    def find_recommendation_for_analysis(self, document_id: str, analysis_id: str) -> FolderRecommendation | None:
        with self._session() as db:
            record = (
                db.query(FolderRecommendationRecord)
                .filter_by(document_id=document_id, analysis_id=analysis_id)
                .order_by(desc(FolderRecommendationRecord.created_at))
                .first()
            )
            return record.to_entity() if record else None

    def update_recommendation(
        self, recommendation_id: str, status: str, previous_folder_id: str | None = None
    ) -> FolderRecommendation:
        with self._session() as db:
            record = db.get(FolderRecommendationRecord, recommendation_id)
            if record is None:
                raise DocumentNotFoundError(f"Folder recommendation {recommendation_id} not found")
            record.status = status
            if previous_folder_id is not None or status == "accepted":
                record.previous_folder_id = previous_folder_id
            db.flush()
            return record.to_entity()

    def get_or_create_folder(self, owner_id: str, name: str, folder_type: str) -> Folder:
        with self._session() as db:
            record = db.query(FolderRecord).filter_by(owner_id=owner_id, name=name).first()
            if record is None:
                record = FolderRecord(owner_id=owner_id, name=name, folder_type=folder_type)
                db.add(record)
                db.flush()
                logger.info(f"Created folder '{name}' for owner {owner_id}")
            return record.to_entity()

    def ping(self) -> bool:
        return ping_db()
