"""
Pydantic schemas — request and response models for the API.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from trustee_docs.core.entities.analysis_result import AnalysisResult
from trustee_docs.core.entities.document import Document, DocumentVersion, ProcessingStatus
from trustee_docs.core.entities.work_item import FolderRecommendation, FollowUpTask


# ── Requests ──

class AnalysisOptionsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    include_risk_assessment: bool = Field(default=True, alias="includeRiskAssessment")
    include_compliance_check: bool = Field(default=True, alias="includeComplianceCheck")
    generate_tasks: bool = Field(default=True, alias="generateTasks")
    force: bool = False


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(alias="documentId")
    storage_path: str | None = Field(default=None, alias="storagePath")
    options: AnalysisOptionsRequest = AnalysisOptionsRequest()


class RetryRequest(BaseModel):
    force: bool = False
    restart: bool = False


class SwitchVersionRequest(BaseModel):
    version_id: str


class MoveRequest(BaseModel):
    folder_id: str | None = None


# ── Responses ──

class StatusResponse(BaseModel):
    document_id: str
    status: ProcessingStatus
    progress: int
    stage: str | None = None
    error: str | None = None
    error_message: str | None = None
    last_update: datetime | None = None

    @classmethod
    def from_document(cls, doc: Document) -> "StatusResponse":
        return cls(
            document_id=doc.id,
            status=doc.status,
            progress=doc.progress,
            stage=doc.metadata.get("stage"),
            error=doc.metadata.get("error"),
            error_message=doc.metadata.get("error_message"),
            last_update=doc.updated_at,
        )


class DocumentResponse(BaseModel):
    id: str
    owner_id: str
    title: str
    type: str
    size: int
    sha256: str | None = None
    storage_path: str | None = None
    parent_folder_id: str | None = None
    ai_processing_status: ProcessingStatus
    progress: int
    metadata: dict
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: Document) -> "DocumentResponse":
        return cls(
            id=doc.id,
            owner_id=doc.owner_id,
            title=doc.title,
            type=doc.type,
            size=doc.size,
            sha256=doc.sha256,
            storage_path=doc.storage_path,
            parent_folder_id=doc.parent_folder_id,
            ai_processing_status=doc.status,
            progress=doc.progress,
            metadata=doc.metadata,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
        )


class UploadResponse(BaseModel):
    document_id: str | None = None
    status: ProcessingStatus | None = None
    outcome: str
    message: str = ""


class DuplicateCandidateResponse(BaseModel):
    id: str
    title: str
    size: int
    type: str
    status: ProcessingStatus
    created_at: datetime | None = None


class DuplicateResponse(BaseModel):
    duplicate: bool = True
    code: str = "duplicate_conflict"
    message: str = ""
    candidates: list[DuplicateCandidateResponse]
    fingerprint: dict
    lookup_failed: bool = False


class RiskFactorResponse(BaseModel):
    type: str
    severity: str
    description: str
    recommendation: str = ""
    regulatory_reference: str = ""


class AnalysisResponse(BaseModel):
    id: str | None = None
    document_id: str
    form_type: str = ""
    form_number: str = ""
    confidence: float = 0.0
    extracted_fields: dict = {}
    risk_factors: list[RiskFactorResponse] = []
    overall_risk: str = "low"
    critical_issues: list[str] = []
    compliance_status: dict = {}
    reasoning: str = ""
    degraded: bool = False
    model: str = ""
    is_current: bool = True
    created_at: datetime | None = None

    @classmethod
    def from_result(cls, result: AnalysisResult) -> "AnalysisResponse":
        return cls.model_validate({**result.to_dict(), "created_at": result.created_at})


class AnalyzeResponse(BaseModel):
    success: bool
    document_id: str
    status: ProcessingStatus
    analysis: AnalysisResponse | None = None
    error: str | None = None
    error_message: str | None = None
    oracle_skipped: bool = False
    stage_latencies: dict = {}


class VersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    document_id: str
    version_number: int
    storage_path: str
    is_current: bool
    size: int = 0
    change_notes: str = ""
    created_by: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_version(cls, version: DocumentVersion) -> "VersionResponse":
        return cls.model_validate(version)


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str | None = None
    document_id: str
    analysis_id: str | None = None
    title: str
    description: str
    priority: str
    severity: str
    category: str
    regulatory_reference: str = ""
    solution: str = ""
    status: str
    created_at: datetime | None = None

    @classmethod
    def from_task(cls, task: FollowUpTask) -> "TaskResponse":
        return cls.model_validate(task)


class FolderRecommendationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str | None = None
    document_id: str
    folder_name: str
    folder_type: str
    confidence: float
    reason: str
    status: str
    previous_folder_id: str | None = None
    analysis_id: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_recommendation(cls, rec: FolderRecommendation) -> "FolderRecommendationResponse":
        return cls.model_validate(rec)


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    oracle: str
    storage: str
