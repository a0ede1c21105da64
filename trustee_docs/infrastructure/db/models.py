"""
Database Models — SQLAlchemy.

Tables:
  - documents: uploaded documents, pipeline status and metadata log
  - document_versions: stored revisions of a document's bytes
  - analysis_results / risk_factors: oracle output, one current per document
  - tasks: follow-up tasks generated from risk factors
  - folders / folder_recommendations: folder suggestions and their outcome
"""

import uuid

from sqlalchemy import (
    Column, String, Float, Integer, Boolean, DateTime, Text, JSON,
    ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship

from trustee_docs.core.entities.analysis_result import AnalysisResult, RiskFactor, Severity
from trustee_docs.core.entities.document import Document, DocumentVersion, ProcessingStatus, utc_now
from trustee_docs.core.entities.work_item import Folder, FolderRecommendation, FollowUpTask


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class DocumentRecord(Base):
    """One uploaded document; the record every client polls."""
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(64), nullable=False, index=True)
    title = Column(String(512), nullable=False)
    type = Column(String(128), default="application/octet-stream")
    size = Column(Integer, default=0)
    sha256 = Column(String(64), nullable=True, index=True)
    storage_path = Column(String(1024), nullable=True, index=True)
    parent_folder_id = Column(String(36), ForeignKey("folders.id", ondelete="SET NULL"), nullable=True)
    ai_processing_status = Column(String(32), nullable=False, default=ProcessingStatus.PENDING.value, index=True)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=utc_now, index=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    versions = relationship("DocumentVersionRecord", back_populates="document", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_documents_owner_title", "owner_id", "title"),
    )

    def __repr__(self):
        return f"<Document {self.id} [{self.ai_processing_status}] {self.title}>"

    @classmethod
    def from_entity(cls, doc: Document) -> "DocumentRecord":
        return cls(
            id=doc.id,
            owner_id=doc.owner_id,
            title=doc.title,
            type=doc.type,
            size=doc.size,
            sha256=doc.sha256,
            storage_path=doc.storage_path,
            parent_folder_id=doc.parent_folder_id,
            ai_processing_status=ProcessingStatus(doc.status).value,
            metadata_=doc.metadata or {},
            created_at=doc.created_at,
            updated_at=doc.updated_at,
        )

    def to_entity(self) -> Document:
        return Document(
            id=self.id,
            owner_id=self.owner_id,
            title=self.title,
            type=self.type,
            size=self.size or 0,
            storage_path=self.storage_path,
            sha256=self.sha256,
            parent_folder_id=self.parent_folder_id,
            status=ProcessingStatus(self.ai_processing_status),
            metadata=dict(self.metadata_ or {}),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class DocumentVersionRecord(Base):
    __tablename__ = "document_versions"

    id = Column(String(36), primary_key=True, default=_uuid)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)
    storage_path = Column(String(1024), nullable=False)
    is_current = Column(Boolean, default=False, index=True)
    size = Column(Integer, default=0)
    sha256 = Column(String(64), nullable=True)
    change_notes = Column(Text, default="")
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utc_now)

    document = relationship("DocumentRecord", back_populates="versions")

    __table_args__ = (
        UniqueConstraint("document_id", "version_number", name="uq_document_version_number"),
    )

    @classmethod
    def from_entity(cls, v: DocumentVersion) -> "DocumentVersionRecord":
        return cls(
            id=v.id or _uuid(),
            document_id=v.document_id,
            version_number=v.version_number,
            storage_path=v.storage_path,
            is_current=v.is_current,
            size=v.size,
            sha256=v.sha256,
            change_notes=v.change_notes,
            created_by=v.created_by,
            created_at=v.created_at,
        )

    def to_entity(self) -> DocumentVersion:
        return DocumentVersion(
            id=self.id,
            document_id=self.document_id,
            version_number=self.version_number,
            storage_path=self.storage_path,
            is_current=bool(self.is_current),
            size=self.size or 0,
            sha256=self.sha256,
            change_notes=self.change_notes or "",
            created_by=self.created_by,
            created_at=self.created_at,
        )


class AnalysisResultRecord(Base):
    """Immutable oracle output; re-analysis adds a row and supersedes this one."""
    __tablename__ = "analysis_results"

    id = Column(String(36), primary_key=True, default=_uuid)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    is_current = Column(Boolean, default=True, index=True)
    form_type = Column(String(128), default="")
    form_number = Column(String(16), default="")
    confidence = Column(Float, default=0.0)
    extracted_fields = Column(JSON, default=dict)
    compliance_status = Column(JSON, default=dict)
    overall_risk = Column(String(16), default="low")
    critical_issues = Column(JSON, default=list)
    reasoning = Column(Text, default="")
    degraded = Column(Boolean, default=False)
    model = Column(String(64), default="")
    created_at = Column(DateTime, default=utc_now)
    superseded_at = Column(DateTime, nullable=True)

    risk_factors = relationship(
        "RiskFactorRecord",
        back_populates="analysis",
        cascade="all, delete-orphan",
        order_by="RiskFactorRecord.position",
    )

    @classmethod
    def from_entity(cls, a: AnalysisResult) -> "AnalysisResultRecord":
        record = cls(
            id=a.id or _uuid(),
            document_id=a.document_id,
            is_current=True,
            form_type=a.form_type,
            form_number=a.form_number,
            confidence=a.confidence,
            extracted_fields=a.extracted_fields,
            compliance_status=a.compliance_status,
            overall_risk=a.overall_risk,
            critical_issues=a.critical_issues,
            reasoning=a.reasoning,
            degraded=a.degraded,
            model=a.model,
            created_at=a.created_at,
        )
        record.risk_factors = [
            RiskFactorRecord(
                position=i,
                type=r.type,
                severity=Severity.coerce(r.severity).value,
                description=r.description,
                recommendation=r.recommendation,
                regulatory_reference=r.regulatory_reference,
            )
            for i, r in enumerate(a.risk_factors)
        ]
        return record

    def to_entity(self) -> AnalysisResult:
        return AnalysisResult(
            id=self.id,
            document_id=self.document_id,
            form_type=self.form_type or "",
            form_number=self.form_number or "",
            confidence=self.confidence or 0.0,
            extracted_fields=dict(self.extracted_fields or {}),
            risk_factors=[r.to_entity() for r in self.risk_factors],
            overall_risk=self.overall_risk or "low",
            critical_issues=list(self.critical_issues or []),
            compliance_status=dict(self.compliance_status or {}),
            reasoning=self.reasoning or "",
            degraded=bool(self.degraded),
            model=self.model or "",
            is_current=bool(self.is_current),
            created_at=self.created_at,
        )


class RiskFactorRecord(Base):
    __tablename__ = "risk_factors"

    id = Column(String(36), primary_key=True, default=_uuid)
    analysis_id = Column(String(36), ForeignKey("analysis_results.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0)
    type = Column(String(64), default="compliance")
    severity = Column(String(16), default="low")
    description = Column(Text, default="")
    recommendation = Column(Text, default="")
    regulatory_reference = Column(String(256), default="")

    analysis = relationship("AnalysisResultRecord", back_populates="risk_factors")

    def to_entity(self) -> RiskFactor:
        return RiskFactor(
            type=self.type,
            severity=Severity.coerce(self.severity),
            description=self.description or "",
            recommendation=self.recommendation or "",
            regulatory_reference=self.regulatory_reference or "",
        )


class TaskRecord(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=_uuid)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    analysis_id = Column(String(36), nullable=True)
    title = Column(String(256), nullable=False)
    description = Column(Text, default="")
    priority = Column(String(16), default="medium")
    severity = Column(String(16), default="medium")
    category = Column(String(64), default="compliance")
    regulatory_reference = Column(String(256), default="")
    solution = Column(Text, default="")
    status = Column(String(16), default="open")
    dedupe_key = Column(String(32), nullable=False)
    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (
        UniqueConstraint("document_id", "dedupe_key", name="uq_task_document_dedupe"),
    )

    @classmethod
    def from_entity(cls, t: FollowUpTask) -> "TaskRecord":
        return cls(
            id=t.id or _uuid(),
            document_id=t.document_id,
            analysis_id=t.analysis_id,
            title=t.title,
            description=t.description,
            priority=t.priority,
            severity=t.severity,
            category=t.category,
            regulatory_reference=t.regulatory_reference,
            solution=t.solution,
            status=t.status,
            dedupe_key=t.dedupe_key,
            created_at=t.created_at,
        )

    def to_entity(self) -> FollowUpTask:
        return FollowUpTask(
            id=self.id,
            document_id=self.document_id,
            analysis_id=self.analysis_id,
            title=self.title,
            description=self.description or "",
            priority=self.priority,
            severity=self.severity,
            category=self.category,
            regulatory_reference=self.regulatory_reference or "",
            solution=self.solution or "",
            status=self.status,
            dedupe_key=self.dedupe_key,
            created_at=self.created_at,
        )


class FolderRecord(Base):
    __tablename__ = "folders"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(64), nullable=False, index=True)
    name = Column(String(256), nullable=False)
    folder_type = Column(String(32), default="folder")
    parent_id = Column(String(36), ForeignKey("folders.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_folder_owner_name"),
    )

    def to_entity(self) -> Folder:
        return Folder(
            id=self.id,
            owner_id=self.owner_id,
            name=self.name,
            folder_type=self.folder_type,
            parent_id=self.parent_id,
        )


class FolderRecommendationRecord(Base):
    __tablename__ = "folder_recommendations"

    id = Column(String(36), primary_key=True, default=_uuid)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    folder_name = Column(String(256), nullable=False)
    folder_type = Column(String(32), default="folder")
    confidence = Column(Float, default=0.0)
    reason = Column(Text, default="")
    status = Column(String(16), default="pending", index=True)
    previous_folder_id = Column(String(36), nullable=True)
    analysis_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime, default=utc_now)

    @classmethod
    def from_entity(cls, r: FolderRecommendation) -> "FolderRecommendationRecord":
        return cls(
            id=r.id or _uuid(),
            document_id=r.document_id,
            folder_name=r.folder_name,
            folder_type=r.folder_type,
            confidence=r.confidence,
            reason=r.reason,
            status=r.status,
            previous_folder_id=r.previous_folder_id,
            analysis_id=r.analysis_id,
            created_at=r.created_at,
        )

    def to_entity(self) -> FolderRecommendation:
        return FolderRecommendation(
            id=self.id,
            document_id=self.document_id,
            folder_name=self.folder_name,
            folder_type=self.folder_type,
            confidence=self.confidence or 0.0,
            reason=self.reason or "",
            status=self.status,
            previous_folder_id=self.previous_folder_id,
            analysis_id=self.analysis_id,
            created_at=self.created_at,
        )
