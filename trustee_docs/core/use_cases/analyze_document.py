"""
Use Case: Analyze Document — the pipeline orchestrator.

Drives: pending → processing → [processing_financial] → complete,
with failed reachable from every non-terminal state.
Measures each stage's latency.

The orchestrator is the only writer of a document's status. Every write
is compare-and-set on the status it expects, so an abort that lands
between two stages stops the run instead of being overwritten.
"""

import logging
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field

from trustee_docs.core.entities.analysis_result import AnalysisResult
from trustee_docs.core.entities.document import (
    FAILURE_KEYS,
    RESETTABLE,
    Document,
    ProcessingStatus,
    utc_now,
)
from trustee_docs.core.errors import (
    DocumentNotFoundError,
    ErrorCode,
    InvalidTransitionError,
    OracleError,
    OracleParseError,
    OracleProviderError,
    OracleTimeoutError,
    PersistenceError,
    PipelineError,
    StaleStatusError,
    UploadFailureError,
)
from trustee_docs.core.interfaces.analysis_oracle import AnalysisHints, IAnalysisOracle, coerce_payload
from trustee_docs.core.interfaces.document_store import IDocumentStore
from trustee_docs.core.interfaces.storage_service import IStorageService
from trustee_docs.core.interfaces.text_extractor import ITextExtractor
from trustee_docs.core.use_cases.classify_content import classify_content, extract_client_name

logger = logging.getLogger(__name__)


@dataclass
class AnalysisOptions:
    include_risk_assessment: bool = True
    include_compliance_check: bool = True
    generate_tasks: bool = True
    force: bool = False


@dataclass
class PipelineRun:
    """Outcome of one orchestrator call."""
    document_id: str
    status: ProcessingStatus
    progress: int = 0
    analysis: AnalysisResult | None = None
    error: str | None = None
    error_message: str | None = None
    oracle_skipped: bool = False
    stage_latencies: dict = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == ProcessingStatus.COMPLETE

    @classmethod
    def from_document(cls, doc: Document, analysis: AnalysisResult | None = None, **kwargs) -> "PipelineRun":
        return cls(
            document_id=doc.id,
            status=doc.status,
            progress=doc.progress,
            analysis=analysis,
            error=doc.metadata.get("error"),
            error_message=doc.metadata.get("error_message"),
            **kwargs,
        )


def _event(name: str, **data) -> dict:
    return {"event": name, "at": utc_now().isoformat(), **data}


class AnalyzeDocumentUseCase:
    """
    Use Case: pending document → pipeline → terminal status.

    Dependency Injection: every collaborator comes through the constructor.
    Generators are optional and never affect the terminal status.
    """

    PIPELINE_VERSION = "1.0.0"

    def __init__(
        self,
        store: IDocumentStore,
        storage: IStorageService,
        text_extractor: ITextExtractor,
        oracle: IAnalysisOracle,
        task_generator=None,
        folder_recommender=None,
        oracle_timeout_seconds: float = 60.0,
        persistence_max_attempts: int = 3,
        persistence_backoff_seconds: float = 0.5,
        stall_reset_seconds: float = 90.0,
        sleep=time.sleep,
        now=utc_now,
    ):
        self._store = store
        self._storage = storage
        self._extractor = text_extractor
        self._oracle = oracle
        self._tasks = task_generator
        self._folders = folder_recommender
        self._oracle_timeout = oracle_timeout_seconds
        self._max_attempts = max(1, persistence_max_attempts)
        self._backoff = persistence_backoff_seconds
        self._stall_reset = stall_reset_seconds
        self._sleep = sleep
        self._now = now

    # ── Entry points ─────────────────────────────────────

    def execute(self, document_id: str, options: AnalysisOptions | None = None) -> PipelineRun:
        """
        Run the pipeline for a pending document.

        1. Storage read
        2. Text extraction
        3. Content classification (financial content → processing_financial)
        4. Oracle — skipped when a current Analysis Result already exists
        5. Persist Analysis Result + Risk Factors
        6. Task / folder generators (best effort)
        7. Complete
        """
        options = options or AnalysisOptions()
        doc = self._persist(self._store.get, document_id)

        if doc.status != ProcessingStatus.PENDING:
            logger.info(f"Document {doc.id} is {doc.status.value}, not starting a run")
            return PipelineRun.from_document(doc, self._persist(self._store.get_current_analysis, doc.id))

        force = options.force or bool(doc.metadata.get("force_reanalysis"))
        stage_latencies: dict[str, float] = {}
        t_start = time.perf_counter()

        try:
            doc = self._transition(doc, ProcessingStatus.PROCESSING, {
                "stage": "text_extraction",
                "stages": {"text_extraction": {"entered_at": self._iso()}},
                "pipeline_version": self.PIPELINE_VERSION,
                "events": [_event("processing_started", force=force)],
            })

            # ── 1. Storage read ────────────────────────────
            if not doc.storage_path:
                raise UploadFailureError("Document has no stored content")
            t0 = time.perf_counter()
            try:
                data = self._storage.download(doc.storage_path)
            except PipelineError:
                raise
            except Exception as e:
                raise UploadFailureError(f"Could not read {doc.storage_path}: {e}") from e
            stage_latencies["storage_ms"] = self._ms(t0)
            doc = self._step(doc, "storage_read")

            # ── 2. Text extraction ─────────────────────────
            t0 = time.perf_counter()
            extracted = self._extractor.extract(data, doc.type, doc.title)
            stage_latencies["extraction_ms"] = self._ms(t0)
            doc = self._step(doc, "text_extraction", {
                "text_length": len(extracted.raw_text),
                "pages": extracted.pages,
                "extractor": extracted.extractor,
                "extraction_warnings": extracted.warnings,
            })

            # ── 3. Classification ──────────────────────────
            classification = classify_content(doc.title, extracted.raw_text)
            doc = self._step(doc, "content_classification", {
                **classification.to_metadata(),
                "stages": {"text_extraction": {"exited_at": self._iso()}},
            })

            if classification.financial:
                doc = self._transition(doc, ProcessingStatus.PROCESSING_FINANCIAL, {
                    "stage": "financial_analysis",
                    "stages": {"financial_analysis": {"entered_at": self._iso()}},
                })

            # ── 4-5. Oracle + persistence ──────────────────
            existing = None if force else self._persist(self._store.get_current_analysis, doc.id)
            oracle_skipped = existing is not None
            if existing is not None:
                logger.info(f"Document {doc.id} already has analysis {existing.id}, skipping oracle")
                analysis = existing
                doc = self._step(doc, "oracle_analysis", {"oracle_skipped": "existing_analysis"})
            else:
                hints = AnalysisHints(
                    title=doc.title,
                    mime_type=doc.type,
                    form_number=classification.form_number,
                    financial=classification.financial,
                    include_risk_assessment=options.include_risk_assessment,
                    include_compliance_check=options.include_compliance_check,
                )
                t0 = time.perf_counter()
                analysis = self._run_oracle(doc, extracted.raw_text, hints)
                stage_latencies["oracle_ms"] = self._ms(t0)
                doc = self._step(doc, "oracle_analysis", {
                    "oracle_model": analysis.model,
                    "analysis_degraded": analysis.degraded,
                })
                analysis = self._persist(self._store.save_analysis, analysis)

            client_name = (
                str(analysis.extracted_fields.get("clientName") or analysis.extracted_fields.get("debtorName") or "")
                or extract_client_name(doc.title, extracted.raw_text)
            )
            doc = self._step(doc, "result_persisted", {
                "analysis_id": analysis.id,
                "form_type": analysis.form_type or classification.form_title,
                "form_number": analysis.form_number or classification.form_number,
                "confidence": analysis.confidence,
                "risk_level": analysis.overall_risk,
                "risk_count": len(analysis.risk_factors),
                "client_name": client_name,
                "has_analysis": True,
            })

            # ── 6. Generators ──────────────────────────────
            t0 = time.perf_counter()
            generator_errors = self._run_generators(doc, analysis, extracted.raw_text, options)
            stage_latencies["generators_ms"] = self._ms(t0)
            doc = self._step(doc, "generators", {"generator_errors": generator_errors} if generator_errors else None)

            # ── 7. Complete ────────────────────────────────
            stage_latencies["total_ms"] = self._ms(t_start)
            doc = self._transition(doc, ProcessingStatus.COMPLETE, {
                "stage": "complete",
                "completed_at": self._iso(),
                "stage_latencies": stage_latencies,
                "force_reanalysis": False,
                "stages": {
                    "financial_analysis": {"exited_at": self._iso()}
                } if classification.financial else {},
                "events": [_event("completed", oracle_skipped=oracle_skipped)],
            })
            logger.info(f"Document {doc.id} complete in {stage_latencies['total_ms']}ms")
            return PipelineRun.from_document(
                doc, analysis, oracle_skipped=oracle_skipped, stage_latencies=stage_latencies
            )

        except StaleStatusError as e:
            logger.warning(f"Run for document {document_id} stopped, status changed externally: {e}")
            current = self._persist(self._store.get, document_id)
            return PipelineRun.from_document(current, stage_latencies=stage_latencies)
        except PipelineError as e:
            return self._fail(doc, e, stage_latencies)
        except Exception as e:
            logger.exception(f"Unexpected pipeline error for document {document_id}")
            return self._fail(doc, PipelineError(f"Unexpected error: {e}"), stage_latencies)

    def invoke(
        self, document_id: str, storage_path: str | None = None, options: AnalysisOptions | None = None
    ) -> PipelineRun:
        """
        Synchronous analysis invocation.

        Runs a pending document, returns the current analysis of a complete
        one (unless forced) and reports the recorded error of a failed one.
        """
        options = options or AnalysisOptions()
        try:
            doc = self._persist(self._store.get, document_id)
        except DocumentNotFoundError:
            if not storage_path:
                raise
            doc = self._persist(self._store.find_by_storage_path, storage_path)
            if doc is None:
                raise
        if storage_path and doc.storage_path != storage_path:
            logger.warning(f"Analysis requested for {storage_path} but document {doc.id} points at {doc.storage_path}")

        if doc.status == ProcessingStatus.COMPLETE and options.force:
            doc = self.retry(doc.id, force=True)
        if doc.status == ProcessingStatus.PENDING:
            return self.execute(doc.id, options)
        return PipelineRun.from_document(doc, self._persist(self._store.get_current_analysis, doc.id))

    def retry(self, document_id: str, force: bool = False, restart: bool = False) -> Document:
        """
        Explicit retry: reset to pending so the pipeline re-enters from the top.

        failed → pending clears only the failure keys. A non-terminal document
        that has not been written for `stall_reset_seconds` is failed as
        stalled first; `restart` (the user giving up on a run they consider
        stuck) skips that idle check. complete → pending needs force
        (re-analysis). The caller schedules execute().
        """
        doc = self._persist(self._store.get, document_id)

        if doc.status == ProcessingStatus.PENDING:
            if force:
                doc = self._persist(self._store.patch_metadata, doc.id, {"force_reanalysis": True})
            return doc

        if doc.status in (ProcessingStatus.PROCESSING, ProcessingStatus.PROCESSING_FINANCIAL):
            idle = (self._now() - doc.updated_at).total_seconds()
            if idle < self._stall_reset and not restart:
                raise InvalidTransitionError(
                    f"Document {doc.id} is still {doc.status.value} (last update {idle:.0f}s ago)"
                )
            message = "Restarted by user" if restart else f"No progress for {idle:.0f}s"
            doc = self.abort(doc.id, ErrorCode.STALLED_JOB, message)

        if doc.status == ProcessingStatus.COMPLETE and not force:
            raise InvalidTransitionError(f"Document {doc.id} is already complete; use force to re-analyze")

        return self._reset(doc, force=force, reason="restart" if restart else "retry")

    def abort(self, document_id: str, code: ErrorCode = ErrorCode.USER_CANCELLED, message: str = "") -> Document:
        """External abort: any non-terminal state → failed. Never deletes anything."""
        for _ in range(3):
            doc = self._persist(self._store.get, document_id)
            if doc.status == ProcessingStatus.FAILED:
                return doc
            if doc.status == ProcessingStatus.COMPLETE:
                raise InvalidTransitionError(f"Document {doc.id} is already complete")
            try:
                return self._persist(
                    self._store.update_status, doc.id, doc.status, ProcessingStatus.FAILED,
                    self._failure_patch(doc, code, message or code.value, include_trace=False),
                )
            except StaleStatusError:
                continue
        raise InvalidTransitionError(f"Could not abort document {document_id}: status kept changing")

    def prepare_for_new_content(self, document_id: str, reason: str) -> Document:
        """
        Bring a document back to pending after its bytes were replaced.

        Stops a running pipeline, supersedes the current analysis and forces
        the next run to call the oracle for the new content.
        """
        doc = self._persist(self._store.get, document_id)
        if doc.status in (ProcessingStatus.PROCESSING, ProcessingStatus.PROCESSING_FINANCIAL):
            doc = self.abort(doc.id, ErrorCode.USER_CANCELLED, f"Superseded: {reason}")
        self._persist(self._store.supersede_analysis, doc.id)
        if doc.status in RESETTABLE:
            return self._reset(doc, force=True, reason=reason)
        return self._persist(self._store.patch_metadata, doc.id, {
            "force_reanalysis": True,
            "events": [_event("content_replaced", reason=reason)],
        })

    # ── Stages ───────────────────────────────────────────

    def _run_oracle(self, doc: Document, text: str, hints: AnalysisHints) -> AnalysisResult:
        model = getattr(self._oracle, "model_name", "")
        try:
            payload = self._call_oracle(text, hints)
        except OracleParseError as e:
            logger.warning(f"Oracle output for document {doc.id} unparseable, storing degraded result: {e}")
            return AnalysisResult.degraded_for(doc.id, model=model, reason=f"Analysis parsing failed: {e.message}")
        return coerce_payload(payload, doc.id, model=model)

    def _call_oracle(self, text: str, hints: AnalysisHints) -> dict:
        """Bound the oracle call by its timeout whatever the adapter does."""
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="oracle")
        future = executor.submit(self._oracle.analyze, text, hints)
        try:
            return future.result(timeout=self._oracle_timeout)
        except FuturesTimeout:
            future.cancel()
            raise OracleTimeoutError(f"Oracle did not answer within {self._oracle_timeout}s")
        except OracleError:
            raise
        except Exception as e:
            raise OracleProviderError(f"Oracle call failed: {e}") from e
        finally:
            executor.shutdown(wait=False)

    def _run_generators(self, doc: Document, analysis: AnalysisResult, text: str, options: AnalysisOptions) -> list[str]:
        errors: list[str] = []
        if self._tasks is not None and options.generate_tasks and options.include_risk_assessment:
            try:
                self._tasks.generate(doc, analysis)
            except Exception as e:
                logger.error(f"Task generation failed for document {doc.id}: {e}")
                errors.append(f"task_generator: {e}")
        if self._folders is not None:
            try:
                self._folders.recommend(doc, analysis, text)
            except Exception as e:
                logger.error(f"Folder recommendation failed for document {doc.id}: {e}")
                errors.append(f"folder_recommender: {e}")
        return errors

    # ── Writes ───────────────────────────────────────────

    def _transition(self, doc: Document, target: ProcessingStatus, patch: dict) -> Document:
        if not doc.status.can_transition_to(target):
            raise InvalidTransitionError(f"{doc.status.value} → {target.value} is not allowed")
        patch = dict(patch)
        patch.setdefault("events", [])
        patch["events"] = patch["events"] + [_event("status_changed", **{"from": doc.status.value, "to": target.value})]
        updated = self._persist(self._store.update_status, doc.id, doc.status, target, patch)
        logger.info(f"Document {doc.id}: {doc.status.value} → {target.value}")
        return updated

    def _step(self, doc: Document, step: str, patch: dict | None = None) -> Document:
        steps = list(doc.metadata.get("steps_completed", []))
        if step not in steps:
            steps.append(step)
        patch = {**(patch or {}), "steps_completed": steps, "last_step": step, "last_step_at": self._iso()}
        return self._persist(self._store.update_status, doc.id, doc.status, doc.status, patch)

    def _reset(self, doc: Document, force: bool, reason: str) -> Document:
        previous = list(doc.metadata.get("previous_errors", []))
        if doc.metadata.get("error"):
            previous.append({k: doc.metadata.get(k) for k in FAILURE_KEYS if k != "traceback"})
        patch = {
            "stage": "queued",
            "steps_completed": [],
            "retry_count": int(doc.metadata.get("retry_count", 0)) + 1,
            "previous_errors": previous,
            "force_reanalysis": force,
            "last_reset_at": self._iso(),
            "events": [_event("reset", reason=reason, previous_status=doc.status.value)],
        }
        updated = self._persist(
            self._store.update_status, doc.id, doc.status, ProcessingStatus.PENDING, patch, FAILURE_KEYS
        )
        logger.info(f"Document {doc.id} reset to pending ({reason})")
        return updated

    def _fail(self, doc: Document, error: PipelineError, stage_latencies: dict) -> PipelineRun:
        logger.error(f"Document {doc.id} failed at {doc.metadata.get('stage')}: [{error.code.value}] {error.message}")
        patch = self._failure_patch(doc, error.code, error.message, include_trace=True)
        patch["stage_latencies"] = stage_latencies
        try:
            doc = self._persist(self._store.update_status, doc.id, doc.status, ProcessingStatus.FAILED, patch)
        except StaleStatusError:
            doc = self._persist(self._store.get, doc.id)
        except PersistenceError:
            # The client-side stuck heuristic is the fallback from here on.
            logger.critical(f"Could not record failure of document {doc.id}")
        return PipelineRun.from_document(doc, stage_latencies=stage_latencies)

    def _failure_patch(self, doc: Document, code: ErrorCode, message: str, include_trace: bool) -> dict:
        patch = {
            "error": code.value,
            "error_message": message,
            "failed_at": self._iso(),
            "failure_stage": doc.metadata.get("stage", doc.status.value),
            "failed_from": doc.status.value,
            "events": [_event("failed", error=code.value)],
        }
        if include_trace:
            trace = traceback.format_exc()
            if trace and trace.strip() != "NoneType: None":
                patch["traceback"] = trace
        return patch

    def _persist(self, fn, *args, **kwargs):
        """Retry store calls on PersistenceError with exponential backoff."""
        for attempt in range(1, self._max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except PersistenceError as e:
                if attempt == self._max_attempts:
                    logger.error(f"Persistence failed after {attempt} attempts: {e}")
                    raise
                delay = self._backoff * (2 ** (attempt - 1))
                logger.warning(f"Persistence attempt {attempt} failed, retrying in {delay:.2f}s: {e}")
                self._sleep(delay)

    def _iso(self) -> str:
        return self._now().isoformat()

    @staticmethod
    def _ms(t0: float) -> float:
        return round((time.perf_counter() - t0) * 1000, 2)
