"""
Service wiring — builds use cases with concrete adapters.

Routes depend on `get_services`; tests swap it through
`app.dependency_overrides`.
"""

import logging
from dataclasses import dataclass

from trustee_docs.config.settings import Settings, get_settings
from trustee_docs.core.interfaces.analysis_oracle import IAnalysisOracle
from trustee_docs.core.interfaces.document_store import IDocumentStore
from trustee_docs.core.interfaces.storage_service import IStorageService
from trustee_docs.core.use_cases.analyze_document import AnalyzeDocumentUseCase
from trustee_docs.core.use_cases.generate_tasks import TaskGenerator
from trustee_docs.core.use_cases.manage_versions import ManageVersionsUseCase
from trustee_docs.core.use_cases.recommend_folder import FolderRecommender, FolderService
from trustee_docs.core.use_cases.upload_document import UploadDocumentUseCase
from trustee_docs.infrastructure.db.repository import DocumentRepository
from trustee_docs.infrastructure.extraction.pypdf_extractor import PyPdfTextExtractor
from trustee_docs.infrastructure.llm.pattern_analyzer import PatternAnalysisOracle
from trustee_docs.infrastructure.storage.local_storage import LocalStorageService

logger = logging.getLogger(__name__)


@dataclass
class PipelineServices:
    store: IDocumentStore
    storage: IStorageService
    oracle: IAnalysisOracle
    orchestrator: AnalyzeDocumentUseCase
    uploads: UploadDocumentUseCase
    versions: ManageVersionsUseCase
    folders: FolderService


def build_storage(settings: Settings) -> IStorageService:
    if settings.storage_backend == "minio":
        from trustee_docs.infrastructure.storage.minio_storage import MinIOStorageService
        return MinIOStorageService(
            endpoint=settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            bucket=settings.minio_bucket,
            secure=settings.minio_secure,
        )
    return LocalStorageService(settings.storage_dir, bucket=settings.minio_bucket)


def build_oracle(settings: Settings) -> IAnalysisOracle:
    """Gemini when enabled and keyed, the deterministic rules oracle otherwise."""
    if settings.llm_enabled and settings.gemini_api_key:
        from trustee_docs.infrastructure.llm.llm_analyzer import GeminiAnalysisOracle
        return GeminiAnalysisOracle(
            api_key=settings.gemini_api_key,
            model_name=settings.gemini_model,
            timeout_seconds=settings.oracle_timeout_seconds,
        )
    logger.info("No Gemini key configured, using pattern analysis oracle")
    return PatternAnalysisOracle()


def build_services(
    settings: Settings,
    store: IDocumentStore | None = None,
    storage: IStorageService | None = None,
    oracle: IAnalysisOracle | None = None,
    **orchestrator_kwargs,
) -> PipelineServices:
    store = store or DocumentRepository()
    storage = storage or build_storage(settings)
    oracle = oracle or build_oracle(settings)

    orchestrator = AnalyzeDocumentUseCase(
        store=store,
        storage=storage,
        text_extractor=PyPdfTextExtractor(),
        oracle=oracle,
        task_generator=TaskGenerator(store, settings.task_severity_threshold),
        folder_recommender=FolderRecommender(store),
        oracle_timeout_seconds=settings.oracle_timeout_seconds,
        persistence_max_attempts=settings.persistence_max_attempts,
        persistence_backoff_seconds=settings.persistence_backoff_seconds,
        stall_reset_seconds=settings.stall_reset_seconds,
        **orchestrator_kwargs,
    )
    return PipelineServices(
        store=store,
        storage=storage,
        oracle=oracle,
        orchestrator=orchestrator,
        uploads=UploadDocumentUseCase(
            store=store,
            storage=storage,
            orchestrator=orchestrator,
            fingerprint_mode=settings.fingerprint_mode,
            max_upload_bytes=settings.max_upload_bytes,
            allowed_mime_types=settings.allowed_mime_types,
        ),
        versions=ManageVersionsUseCase(store, orchestrator),
        folders=FolderService(store),
    )


# Lazy singleton
_services = None


def get_services() -> PipelineServices:
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services
