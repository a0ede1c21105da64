"""
Routes: document upload, pipeline status, analysis, versions and folders.

Pipeline runs are scheduled as background tasks; clients poll
GET /documents/{id}/status for progress.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from trustee_docs.api.dependencies import PipelineServices, get_services
from trustee_docs.api.schemas.responses import (
    AnalysisResponse,
    AnalyzeRequest,
    AnalyzeResponse,
    DocumentResponse,
    DuplicateCandidateResponse,
    DuplicateResponse,
    FolderRecommendationResponse,
    MoveRequest,
    RetryRequest,
    StatusResponse,
    SwitchVersionRequest,
    TaskResponse,
    UploadResponse,
    VersionResponse,
)
from trustee_docs.core.entities.document import ProcessingStatus
from trustee_docs.core.use_cases.analyze_document import AnalysisOptions
from trustee_docs.core.use_cases.check_duplicates import Resolution
from trustee_docs.core.use_cases.upload_document import UploadOutcome

logger = logging.getLogger(__name__)

router = APIRouter()


def _schedule(background: BackgroundTasks, services: PipelineServices, document_id: str, options: AnalysisOptions | None = None):
    background.add_task(services.orchestrator.execute, document_id, options)
    logger.info(f"Scheduled pipeline run for document {document_id}")


def _upload_response(outcome: UploadOutcome, background: BackgroundTasks, services: PipelineServices) -> JSONResponse:
    if outcome.outcome == "duplicate":
        check = outcome.duplicate
        body = DuplicateResponse(
            message=outcome.message,
            candidates=[
                DuplicateCandidateResponse(
                    id=d.id, title=d.title, size=d.size, type=d.type, status=d.status, created_at=d.created_at,
                )
                for d in check.candidates
            ],
            fingerprint=check.fingerprint.to_dict(),
            lookup_failed=check.lookup_failed,
        )
        return JSONResponse(status_code=409, content=body.model_dump(mode="json"))

    if outcome.needs_analysis:
        _schedule(background, services, outcome.document.id)

    body = UploadResponse(
        document_id=outcome.document.id if outcome.document else None,
        status=outcome.document.status if outcome.document else None,
        outcome=outcome.outcome,
        message=outcome.message,
    )
    return JSONResponse(status_code=202 if outcome.needs_analysis else 200, content=body.model_dump(mode="json"))


@router.post("/documents/upload")
async def upload_document(
    background: BackgroundTasks,
    file: UploadFile = File(...),
    owner_id: str = Form(...),
    client_hint: str | None = Form(None),
    resolution: Resolution | None = Form(None),
    target_existing_id: str | None = Form(None),
    services: PipelineServices = Depends(get_services),
):
    """
    Upload a document.

    Returns 202 with the new document id, or 409 with the duplicate
    candidates when the same content already exists for this owner.
    Pass `resolution` (replace | version | rename | cancel) to resolve.
    """
    data = await file.read()
    outcome = await run_in_threadpool(
        services.uploads.execute,
        owner_id=owner_id,
        filename=file.filename or "",
        data=data,
        mime_type=file.content_type,
        resolution=resolution,
        target_existing_id=target_existing_id,
        client_hint=client_hint,
    )
    return _upload_response(outcome, background, services)


@router.post("/documents/resolve-duplicate")
async def resolve_duplicate(
    background: BackgroundTasks,
    file: UploadFile = File(...),
    owner_id: str = Form(...),
    decision: Resolution = Form(...),
    target_existing_id: str | None = Form(None),
    client_hint: str | None = Form(None),
    services: PipelineServices = Depends(get_services),
):
    """Re-submit a file with the user's duplicate resolution."""
    data = await file.read()
    outcome = await run_in_threadpool(
        services.uploads.execute,
        owner_id=owner_id,
        filename=file.filename or "",
        data=data,
        mime_type=file.content_type,
        resolution=decision,
        target_existing_id=target_existing_id,
        client_hint=client_hint,
    )
    return _upload_response(outcome, background, services)


@router.post("/documents/analyze", response_model=AnalyzeResponse)
def analyze_document(req: AnalyzeRequest, services: PipelineServices = Depends(get_services)):
    """Synchronous analysis of one document; errors come back in the body."""
    options = AnalysisOptions(
        include_risk_assessment=req.options.include_risk_assessment,
        include_compliance_check=req.options.include_compliance_check,
        generate_tasks=req.options.generate_tasks,
        force=req.options.force,
    )
    run = services.orchestrator.invoke(req.document_id, req.storage_path, options)
    return AnalyzeResponse(
        success=run.success,
        document_id=run.document_id,
        status=run.status,
        analysis=AnalysisResponse.from_result(run.analysis) if run.analysis else None,
        error=run.error,
        error_message=run.error_message,
        oracle_skipped=run.oracle_skipped,
        stage_latencies=run.stage_latencies,
    )


@router.get("/documents/{document_id}", response_model=DocumentResponse)
def get_document(document_id: str, services: PipelineServices = Depends(get_services)):
    return DocumentResponse.from_document(services.store.get(document_id))


@router.get("/documents/{document_id}/status", response_model=StatusResponse)
def get_status(document_id: str, services: PipelineServices = Depends(get_services)):
    return StatusResponse.from_document(services.store.get(document_id))


@router.post("/documents/{document_id}/retry", response_model=StatusResponse)
def retry_document(
    document_id: str,
    background: BackgroundTasks,
    req: RetryRequest | None = None,
    services: PipelineServices = Depends(get_services),
):
    """Reset a failed (or stalled, or forced complete) document and run it again."""
    doc = services.orchestrator.retry(
        document_id, force=bool(req and req.force), restart=bool(req and req.restart)
    )
    if doc.status == ProcessingStatus.PENDING:
        _schedule(background, services, doc.id, AnalysisOptions(force=bool(req and req.force)))
    return StatusResponse.from_document(doc)


@router.post("/documents/{document_id}/cancel", response_model=StatusResponse)
def cancel_document(document_id: str, services: PipelineServices = Depends(get_services)):
    return StatusResponse.from_document(services.orchestrator.abort(document_id))


@router.get("/documents/{document_id}/versions", response_model=list[VersionResponse])
def list_versions(document_id: str, services: PipelineServices = Depends(get_services)):
    return [VersionResponse.from_version(v) for v in services.versions.list(document_id)]


@router.post("/documents/{document_id}/versions/switch", response_model=StatusResponse)
def switch_version(
    document_id: str,
    req: SwitchVersionRequest,
    background: BackgroundTasks,
    services: PipelineServices = Depends(get_services),
):
    doc = services.versions.switch(document_id, req.version_id)
    if doc.status == ProcessingStatus.PENDING:
        _schedule(background, services, doc.id)
    return StatusResponse.from_document(doc)


@router.get("/documents/{document_id}/analysis", response_model=AnalysisResponse)
def get_analysis(document_id: str, services: PipelineServices = Depends(get_services)):
    services.store.get(document_id)
    analysis = services.store.get_current_analysis(document_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail="No analysis for this document yet")
    return AnalysisResponse.from_result(analysis)


@router.get("/documents/{document_id}/tasks", response_model=list[TaskResponse])
def list_tasks(document_id: str, services: PipelineServices = Depends(get_services)):
    services.store.get(document_id)
    return [TaskResponse.from_task(t) for t in services.store.list_tasks(document_id)]


@router.get("/documents/{document_id}/folder-recommendation", response_model=FolderRecommendationResponse)
def get_folder_recommendation(document_id: str, services: PipelineServices = Depends(get_services)):
    services.store.get(document_id)
    recommendation = services.store.get_pending_recommendation(document_id)
    if recommendation is None:
        raise HTTPException(status_code=404, detail="No pending folder recommendation")
    return FolderRecommendationResponse.from_recommendation(recommendation)


@router.post("/documents/{document_id}/move", response_model=DocumentResponse)
def move_document(document_id: str, req: MoveRequest, services: PipelineServices = Depends(get_services)):
    return DocumentResponse.from_document(services.folders.move(document_id, req.folder_id))


@router.post("/folder-recommendations/{recommendation_id}/accept", response_model=DocumentResponse)
def accept_recommendation(recommendation_id: str, services: PipelineServices = Depends(get_services)):
    return DocumentResponse.from_document(services.folders.accept(recommendation_id))


@router.post("/folder-recommendations/{recommendation_id}/reject", response_model=FolderRecommendationResponse)
def reject_recommendation(recommendation_id: str, services: PipelineServices = Depends(get_services)):
    return FolderRecommendationResponse.from_recommendation(services.folders.reject(recommendation_id))


@router.post("/folder-recommendations/{recommendation_id}/undo", response_model=DocumentResponse)
def undo_recommendation(recommendation_id: str, services: PipelineServices = Depends(get_services)):
    return DocumentResponse.from_document(services.folders.undo(recommendation_id))
