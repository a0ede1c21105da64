"""
FastAPI Application — Trustee Document Pipeline.

Architecture:
  - PostgreSQL (prod) / SQLite (dev) for documents, analyses and work items
  - MinIO or local filesystem for document bytes
  - Gemini (or the deterministic rules oracle) for document analysis
  - Background tasks for pipeline runs; clients poll the status record
"""

import logging

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trustee_docs.api.dependencies import PipelineServices, get_services
from trustee_docs.api.routes.documents import router as documents_router
from trustee_docs.api.schemas.responses import HealthResponse
from trustee_docs.config.settings import get_settings
from trustee_docs.core.errors import (
    DocumentNotFoundError,
    InvalidTransitionError,
    InvalidUploadError,
    OracleError,
    PersistenceError,
    PipelineError,
    UploadFailureError,
    UserCancelledError,
)
from trustee_docs.infrastructure.db.database import init_db

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Trustee Document Pipeline",
    description="Document ingestion, duplicate detection and AI analysis for insolvency trustees.",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Startup ──
@app.on_event("startup")
async def startup():
    """Initialize DB."""
    init_db()
    logger.info("Trustee Document Pipeline started")


# Register document routes
app.include_router(documents_router, prefix="/api/v1", tags=["Documents"])


# ── Errors ──
def status_for(error: PipelineError) -> int:
    if isinstance(error, DocumentNotFoundError):
        return 404
    if isinstance(error, (InvalidTransitionError, UserCancelledError)):
        return 409
    if isinstance(error, InvalidUploadError):
        return 400
    if isinstance(error, (UploadFailureError, OracleError)):
        return 502
    if isinstance(error, PersistenceError):
        return 503
    return 500


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, error: PipelineError):
    code = status_for(error)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: [{error.code.value}] {error.message}")
    return JSONResponse(status_code=code, content={"detail": error.message, "code": error.code.value})


# ── Health ──
@app.get("/health", response_model=HealthResponse)
def health(services: PipelineServices = Depends(get_services)):
    db_ok = services.store.ping()
    oracle_ok = services.oracle.ping()
    storage_ok = services.storage.ping()
    return HealthResponse(
        status="ok" if db_ok and storage_ok else "degraded",
        version=VERSION,
        database="ok" if db_ok else "unreachable",
        oracle=f"{services.oracle.model_name or 'unknown'}" if oracle_ok else "unreachable",
        storage="ok" if storage_ok else "unreachable",
    )
