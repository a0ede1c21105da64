"""Pipeline orchestrator: stages, failures, retries and the status contract."""

from datetime import timedelta

import pytest

from conftest import NOTES_TEXT, FakeOracle, RecordingSleep
from trustee_docs.core.entities.analysis_result import MANUAL_REVIEW_ISSUE
from trustee_docs.core.entities.document import PIPELINE_STEPS, ProcessingStatus, utc_now
from trustee_docs.core.errors import (
    ErrorCode,
    InvalidTransitionError,
    OracleParseError,
    PersistenceError,
)
from trustee_docs.core.use_cases.analyze_document import AnalysisOptions, AnalyzeDocumentUseCase
from trustee_docs.core.use_cases.generate_tasks import TaskGenerator
from trustee_docs.core.use_cases.recommend_folder import FolderRecommender
from trustee_docs.infrastructure.db.repository import DocumentRepository
from trustee_docs.infrastructure.extraction.pypdf_extractor import PyPdfTextExtractor


def status_path(document):
    return [(e["from"], e["to"]) for e in document.metadata["events"] if e["event"] == "status_changed"]


def make_orchestrator(store, storage, oracle, **kwargs):
    kwargs.setdefault("sleep", RecordingSleep())
    return AnalyzeDocumentUseCase(
        store=store,
        storage=storage,
        text_extractor=PyPdfTextExtractor(),
        oracle=oracle,
        task_generator=TaskGenerator(store),
        folder_recommender=FolderRecommender(store),
        **kwargs,
    )


class TestHappyPath:
    def test_financial_document_completes(self, services, upload, oracle):
        doc = upload().document
        run = services.orchestrator.execute(doc.id)

        assert run.success
        assert run.progress == 100
        assert oracle.calls == 1
        assert oracle.hints[0].form_number == "31"
        assert oracle.hints[0].financial

        stored = services.store.get(doc.id)
        assert stored.status == ProcessingStatus.COMPLETE
        assert stored.metadata["steps_completed"] == list(PIPELINE_STEPS)
        assert status_path(stored) == [
            ("pending", "processing"),
            ("processing", "processing_financial"),
            ("processing_financial", "complete"),
        ]
        assert stored.metadata["analysis_id"] == run.analysis.id
        assert stored.metadata["risk_count"] == 3
        assert stored.metadata["client_name"] == "John Smith"
        assert stored.metadata["fingerprint"]["sha256"] == doc.sha256
        assert "total_ms" in stored.metadata["stage_latencies"]

        analysis = services.store.get_current_analysis(doc.id)
        assert analysis.confidence == 92.0
        assert analysis.overall_risk == "high"
        assert [r.severity.value for r in analysis.risk_factors] == ["high", "medium", "low"]

        tasks = services.store.list_tasks(doc.id)
        assert len(tasks) == 2
        recommendation = services.store.get_pending_recommendation(doc.id)
        assert recommendation.folder_name == "Client - John Smith"

    def test_plain_document_skips_financial_stage(self, store, storage, upload):
        oracle = FakeOracle(payload={"form_type": "Meeting notes", "confidence": 40})
        orchestrator = make_orchestrator(store, storage, oracle)
        doc = upload(filename="meeting_notes.txt", text=NOTES_TEXT).document

        run = orchestrator.execute(doc.id)

        assert run.success
        assert status_path(store.get(doc.id)) == [("pending", "processing"), ("processing", "complete")]
        assert store.get_pending_recommendation(doc.id).folder_name == "Supporting Documents"
        assert store.list_tasks(doc.id) == []

    def test_non_pending_document_is_not_run(self, services, upload, oracle):
        doc = upload().document
        services.orchestrator.execute(doc.id)
        run = services.orchestrator.execute(doc.id)
        assert run.status == ProcessingStatus.COMPLETE
        assert run.analysis is not None
        assert oracle.calls == 1


class TestOracleFailures:
    def test_timeout_fails_document(self, store, storage, upload):
        oracle = FakeOracle(delay=0.5)
        orchestrator = make_orchestrator(store, storage, oracle, oracle_timeout_seconds=0.05)
        doc = upload().document

        run = orchestrator.execute(doc.id)

        assert run.status == ProcessingStatus.FAILED
        assert run.error == ErrorCode.ORACLE_TIMEOUT.value
        stored = store.get(doc.id)
        assert stored.metadata["failed_from"] == "processing_financial"
        assert stored.metadata["failure_stage"] == "financial_analysis"
        assert stored.progress >= 40
        assert store.get_current_analysis(doc.id) is None

    def test_retry_after_timeout_recovers(self, store, storage, upload):
        oracle = FakeOracle(delay=0.5)
        orchestrator = make_orchestrator(store, storage, oracle, oracle_timeout_seconds=0.05)
        doc = upload().document
        orchestrator.execute(doc.id)

        reset = orchestrator.retry(doc.id)
        assert reset.status == ProcessingStatus.PENDING
        assert "error" not in reset.metadata
        assert "failed_at" not in reset.metadata
        assert "failed_from" not in reset.metadata
        assert reset.metadata["retry_count"] == 1
        assert reset.metadata["previous_errors"][0]["error"] == "oracle_timeout"
        assert reset.metadata["previous_errors"][0]["failed_from"] == "processing_financial"
        assert reset.metadata["fingerprint"]["sha256"] == doc.sha256

        oracle.delay = 0
        run = orchestrator.execute(doc.id)
        assert run.success

    def test_parse_error_stores_degraded_result(self, store, storage, upload):
        oracle = FakeOracle(error=OracleParseError("not json", raw="<html>"))
        orchestrator = make_orchestrator(store, storage, oracle)
        doc = upload().document

        run = orchestrator.execute(doc.id)

        assert run.success
        assert run.analysis.degraded
        assert run.analysis.overall_risk == "medium"
        assert run.analysis.critical_issues == [MANUAL_REVIEW_ISSUE]
        assert store.get(doc.id).metadata["analysis_degraded"] is True

    @pytest.mark.parametrize("payload", [["not", "an", "object"], {"confidence": "very high"}])
    def test_schema_error_fails_document(self, store, storage, upload, payload):
        orchestrator = make_orchestrator(store, storage, FakeOracle(payload=payload))
        doc = upload().document

        run = orchestrator.execute(doc.id)

        assert run.status == ProcessingStatus.FAILED
        assert run.error == ErrorCode.ORACLE_SCHEMA_ERROR.value

    def test_unexpected_oracle_exception_is_provider_error(self, store, storage, upload):
        orchestrator = make_orchestrator(store, storage, FakeOracle(error=RuntimeError("503 from upstream")))
        doc = upload().document

        run = orchestrator.execute(doc.id)

        assert run.error == ErrorCode.ORACLE_PROVIDER_ERROR.value
        assert "503 from upstream" in run.error_message
        assert "traceback" in store.get(doc.id).metadata

    def test_missing_stored_object_is_upload_failure(self, services, upload, storage):
        doc = upload().document
        storage.delete(doc.storage_path)

        run = services.orchestrator.execute(doc.id)

        assert run.error == ErrorCode.UPLOAD_FAILURE.value
        assert services.store.get(doc.id).metadata["failed_from"] == "processing"


class TestMetadataLog:
    def test_keys_are_never_lost(self, storage, upload, engine):
        snapshots = []

        class RecordingStore(DocumentRepository):
            def update_status(self, *args, **kwargs):
                doc = super().update_status(*args, **kwargs)
                snapshots.append(set(doc.metadata))
                return doc

        orchestrator = make_orchestrator(RecordingStore(), storage, FakeOracle())
        doc = upload().document
        orchestrator.execute(doc.id)

        keys = [set(doc.metadata)] + snapshots
        assert len(keys) > 5
        for earlier, later in zip(keys, keys[1:]):
            assert earlier <= later

    def test_events_log_is_append_only(self, services, upload, store):
        doc = upload().document
        services.orchestrator.execute(doc.id)
        events = store.get(doc.id).metadata["events"]
        assert events[0]["event"] == "uploaded"
        assert [e["event"] for e in events].count("status_changed") == 3


class TestIdempotency:
    @staticmethod
    def comparable(analysis):
        data = analysis.to_dict()
        for key in ("id", "document_id", "created_at"):
            data.pop(key)
        return data

    def test_retry_reaches_same_result_as_first_success(self, store, storage, upload):
        clean = make_orchestrator(store, storage, FakeOracle())
        first = upload(filename="a.txt").document
        expected = clean.execute(first.id).analysis

        flaky_oracle = FakeOracle(delay=0.5)
        flaky = make_orchestrator(store, storage, flaky_oracle, oracle_timeout_seconds=0.05)
        second = upload(filename="b.txt", text="Proof of Claim\n" + "x" * 20).document
        assert flaky.execute(second.id).status == ProcessingStatus.FAILED
        flaky_oracle.delay = 0
        flaky.retry(second.id)
        retried = flaky.execute(second.id).analysis

        assert self.comparable(retried) == self.comparable(expected)

    def test_existing_analysis_skips_oracle(self, services, upload, oracle, store):
        doc = upload().document
        services.orchestrator.execute(doc.id)
        # Crash after the result was persisted but before completion
        store.update_status(doc.id, ProcessingStatus.COMPLETE, ProcessingStatus.FAILED, {"error": "internal_error"})

        services.orchestrator.retry(doc.id)
        run = services.orchestrator.execute(doc.id)

        assert run.success
        assert run.oracle_skipped
        assert oracle.calls == 1
        assert store.get(doc.id).metadata["oracle_skipped"] == "existing_analysis"

    def test_force_reanalysis_calls_oracle_again(self, services, upload, oracle, store):
        doc = upload().document
        first = services.orchestrator.execute(doc.id)

        run = services.orchestrator.invoke(doc.id, options=AnalysisOptions(force=True))

        assert run.success
        assert oracle.calls == 2
        assert run.analysis.id != first.analysis.id
        assert store.get_current_analysis(doc.id).id == run.analysis.id
        # Tasks from the same risks are not duplicated
        assert len(store.list_tasks(doc.id)) == 2

    def test_retry_complete_without_force_rejected(self, services, upload):
        doc = upload().document
        services.orchestrator.execute(doc.id)
        with pytest.raises(InvalidTransitionError):
            services.orchestrator.retry(doc.id)

    def test_retry_pending_is_noop(self, services, upload, store):
        doc = upload().document
        again = services.orchestrator.retry(doc.id)
        assert again.status == ProcessingStatus.PENDING
        assert "retry_count" not in again.metadata

    def test_invoke_by_storage_path(self, services, upload):
        doc = upload().document
        run = services.orchestrator.invoke("missing-id", storage_path=doc.storage_path)
        assert run.document_id == doc.id
        assert run.success

    def test_invoke_failed_reports_error(self, store, storage, upload):
        orchestrator = make_orchestrator(store, storage, FakeOracle(payload=["bad"]))
        doc = upload().document
        orchestrator.execute(doc.id)

        run = orchestrator.invoke(doc.id)

        assert not run.success
        assert run.error == ErrorCode.ORACLE_SCHEMA_ERROR.value


class TestAbortAndStaleWrites:
    def test_abort_pending_document(self, services, upload, oracle):
        doc = upload().document
        aborted = services.orchestrator.abort(doc.id)
        assert aborted.status == ProcessingStatus.FAILED
        assert aborted.metadata["error"] == "user_cancelled"

        run = services.orchestrator.execute(doc.id)
        assert run.status == ProcessingStatus.FAILED
        assert oracle.calls == 0

    def test_abort_complete_rejected(self, services, upload):
        doc = upload().document
        services.orchestrator.execute(doc.id)
        with pytest.raises(InvalidTransitionError):
            services.orchestrator.abort(doc.id)

    def test_abort_during_oracle_call_stops_run(self, store, storage, upload):
        holder = {}

        class AbortingOracle(FakeOracle):
            def analyze(self, content, hints):
                holder["orchestrator"].abort(holder["id"])
                return super().analyze(content, hints)

        oracle = AbortingOracle()
        orchestrator = make_orchestrator(store, storage, oracle)
        doc = upload().document
        holder.update(orchestrator=orchestrator, id=doc.id)

        run = orchestrator.execute(doc.id)

        assert run.status == ProcessingStatus.FAILED
        assert run.error == "user_cancelled"
        assert store.get_current_analysis(doc.id) is None
        assert store.list_tasks(doc.id) == []

    def test_recent_processing_cannot_be_retried(self, services, upload, store):
        doc = upload().document
        store.update_status(doc.id, ProcessingStatus.PENDING, ProcessingStatus.PROCESSING)
        with pytest.raises(InvalidTransitionError):
            services.orchestrator.retry(doc.id)

    def test_restart_skips_idle_check(self, services, upload, store):
        doc = upload().document
        store.update_status(doc.id, ProcessingStatus.PENDING, ProcessingStatus.PROCESSING_FINANCIAL)

        reset = services.orchestrator.retry(doc.id, restart=True)

        assert reset.status == ProcessingStatus.PENDING
        assert reset.metadata["previous_errors"][0]["error"] == "stalled_job"
        assert reset.metadata["events"][-1]["reason"] == "restart"
        assert services.orchestrator.execute(doc.id).success

    def test_restart_of_complete_document_still_needs_force(self, services, upload):
        doc = upload().document
        services.orchestrator.execute(doc.id)
        with pytest.raises(InvalidTransitionError):
            services.orchestrator.retry(doc.id, restart=True)

    def test_stalled_processing_is_reset(self, store, storage, upload):
        later = lambda: utc_now() + timedelta(seconds=300)
        orchestrator = make_orchestrator(store, storage, FakeOracle(), now=later)
        doc = upload().document
        store.update_status(doc.id, ProcessingStatus.PENDING, ProcessingStatus.PROCESSING_FINANCIAL)

        reset = orchestrator.retry(doc.id)

        assert reset.status == ProcessingStatus.PENDING
        assert reset.metadata["previous_errors"][0]["error"] == "stalled_job"
        assert orchestrator.execute(doc.id).success


class TestGeneratorsAndPersistence:
    def test_generator_failure_does_not_fail_document(self, store, storage, upload):
        class BrokenTasks:
            def generate(self, document, analysis):
                raise RuntimeError("task table locked")

        orchestrator = AnalyzeDocumentUseCase(
            store=store,
            storage=storage,
            text_extractor=PyPdfTextExtractor(),
            oracle=FakeOracle(),
            task_generator=BrokenTasks(),
            folder_recommender=FolderRecommender(store),
        )
        doc = upload().document

        run = orchestrator.execute(doc.id)

        assert run.success
        errors = store.get(doc.id).metadata["generator_errors"]
        assert errors == ["task_generator: task table locked"]
        assert store.get_pending_recommendation(doc.id) is not None

    def test_generate_tasks_option_off(self, services, upload, store):
        doc = upload().document
        services.orchestrator.execute(doc.id, AnalysisOptions(generate_tasks=False))
        assert store.list_tasks(doc.id) == []

    def test_persistence_retried_with_backoff(self, storage, upload, engine):
        class FlakyStore(DocumentRepository):
            failures = 2

            def save_analysis(self, analysis):
                if self.failures:
                    self.failures -= 1
                    raise PersistenceError("database is locked")
                return super().save_analysis(analysis)

        store = FlakyStore()
        sleep = RecordingSleep()
        orchestrator = make_orchestrator(store, storage, FakeOracle(), sleep=sleep, persistence_backoff_seconds=0.5)
        doc = upload().document

        run = orchestrator.execute(doc.id)

        assert run.success
        assert sleep.calls == [0.5, 1.0]

    def test_persistence_exhausted_fails_document(self, storage, upload, engine):
        class DownStore(DocumentRepository):
            def save_analysis(self, analysis):
                raise PersistenceError("database is locked")

        store = DownStore()
        orchestrator = make_orchestrator(store, storage, FakeOracle(), persistence_max_attempts=2)
        doc = upload().document

        run = orchestrator.execute(doc.id)

        assert run.status == ProcessingStatus.FAILED
        assert run.error == ErrorCode.PERSISTENCE_FAILURE.value


class TestFolderRecommendationReruns:
    def test_rejected_recommendation_stays_rejected_after_retry(self, storage, upload, engine):
        class CompleteWriteDown(DocumentRepository):
            down = True

            def update_status(self, document_id, expected, new, *args, **kwargs):
                if self.down and new == ProcessingStatus.COMPLETE:
                    raise PersistenceError("database is locked")
                return super().update_status(document_id, expected, new, *args, **kwargs)

        store = CompleteWriteDown()
        oracle = FakeOracle()
        orchestrator = make_orchestrator(store, storage, oracle)
        doc = upload().document

        first = orchestrator.execute(doc.id)
        assert first.status == ProcessingStatus.FAILED
        assert first.error == ErrorCode.PERSISTENCE_FAILURE.value

        recommendation = store.get_pending_recommendation(doc.id)
        store.update_recommendation(recommendation.id, "rejected")

        store.down = False
        orchestrator.retry(doc.id)
        run = orchestrator.execute(doc.id)

        assert run.success
        assert run.oracle_skipped
        assert oracle.calls == 1
        assert store.get_pending_recommendation(doc.id) is None
        assert store.get_recommendation(recommendation.id).status == "rejected"

    def test_pending_recommendation_keeps_its_id_across_reruns(self, services, upload, store):
        doc = upload().document
        services.orchestrator.execute(doc.id)
        before = store.get_pending_recommendation(doc.id)

        store.update_status(doc.id, ProcessingStatus.COMPLETE, ProcessingStatus.FAILED, {"error": "stalled_job"})
        services.orchestrator.retry(doc.id)
        services.orchestrator.execute(doc.id)

        assert store.get_pending_recommendation(doc.id).id == before.id

    def test_new_analysis_gets_a_new_recommendation(self, services, upload, store):
        doc = upload().document
        services.orchestrator.execute(doc.id)
        before = store.get_pending_recommendation(doc.id)

        services.orchestrator.retry(doc.id, force=True)
        run = services.orchestrator.execute(doc.id)

        after = store.get_pending_recommendation(doc.id)
        assert after.id != before.id
        assert after.analysis_id == run.analysis.id
