"""Task generation and folder recommendations."""

import pytest

from trustee_docs.core.entities.analysis_result import AnalysisResult, RiskFactor, Severity
from trustee_docs.core.entities.document import Document
from trustee_docs.core.errors import InvalidTransitionError
from trustee_docs.core.use_cases.generate_tasks import TaskGenerator, task_dedupe_key
from trustee_docs.core.use_cases.recommend_folder import SUPPORTING_FOLDER, FolderRecommender, suggest_folder


def risk(severity, description="Missing signature", reference="BIA s.124(2)"):
    return RiskFactor(type="compliance", severity=severity, description=description, regulatory_reference=reference)


def make_analysis(document_id="doc", **kwargs):
    return AnalysisResult(document_id=document_id, **kwargs)


class TestTaskGenerator:
    def test_threshold_and_idempotency(self, upload, store):
        doc = upload().document
        analysis = make_analysis(doc.id, risk_factors=[
            risk(Severity.HIGH),
            risk(Severity.MEDIUM, "No statement of account", "BIA s.124(4)(a)"),
            risk(Severity.LOW, "Address abbreviated", ""),
        ])
        generator = TaskGenerator(store, "medium")

        created = generator.generate(doc, analysis)
        assert [t.priority for t in created] == ["high", "medium"]
        assert created[0].title == "Compliance issue: Missing signature"
        assert created[0].regulatory_reference == "BIA s.124(2)"

        assert generator.generate(doc, analysis) == []
        assert len(store.list_tasks(doc.id)) == 2

    def test_high_threshold(self, upload, store):
        doc = upload().document
        analysis = make_analysis(doc.id, risk_factors=[risk(Severity.HIGH), risk(Severity.MEDIUM, "Other")])
        assert len(TaskGenerator(store, Severity.HIGH).generate(doc, analysis)) == 1

    def test_dedupe_key_is_stable(self):
        assert task_dedupe_key(risk(Severity.HIGH)) == task_dedupe_key(risk(Severity.LOW))
        assert task_dedupe_key(risk(Severity.HIGH)) != task_dedupe_key(risk(Severity.HIGH, "Other"))
        assert len(task_dedupe_key(risk(Severity.HIGH))) == 16


class TestSuggestFolder:
    def test_client_from_analysis_wins(self):
        doc = Document(id="d", owner_id="o", title="Form 31.pdf")
        suggestion = suggest_folder(doc, make_analysis(extracted_fields={"clientName": "John Smith"}, form_number="31"))
        assert suggestion.name == "Client - John Smith"
        assert suggestion.folder_type == "client"
        assert suggestion.confidence == 90.0

    def test_client_from_title(self):
        doc = Document(id="d", owner_id="o", title="Smith, John - statement.pdf")
        suggestion = suggest_folder(doc, None)
        assert suggestion.name == "Client - John Smith"
        assert suggestion.confidence == 80.0

    def test_form_number(self):
        doc = Document(id="d", owner_id="o", title="scan.pdf")
        suggestion = suggest_folder(doc, make_analysis(form_number="47"))
        assert suggestion.name == "Forms - Form 47"
        assert suggestion.folder_type == "form"

    def test_financial_keywords(self):
        doc = Document(id="d", owner_id="o", title="scan.pdf")
        suggestion = suggest_folder(doc, make_analysis(), "Monthly income and expenses with the bank balance")
        assert suggestion.name == "Financial Documents"
        assert suggestion.confidence == 75.0

    def test_fallback(self):
        doc = Document(id="d", owner_id="o", title="scan.pdf")
        suggestion = suggest_folder(doc, None, "Lunch menu")
        assert suggestion.name == SUPPORTING_FOLDER
        assert suggestion.confidence == 30.0


class TestFolderActions:
    @pytest.fixture
    def recommendation(self, upload, store):
        doc = upload().document
        return FolderRecommender(store).recommend(doc, make_analysis(doc.id, extracted_fields={"clientName": "John Smith"}))

    def test_accept_moves_document(self, services, store, recommendation):
        moved = services.folders.accept(recommendation.id)

        folder_id = moved.parent_folder_id
        assert folder_id is not None
        assert store.get_recommendation(recommendation.id).status == "accepted"
        assert store.get_or_create_folder(moved.owner_id, "Client - John Smith", "client").id == folder_id
        assert store.get(moved.id).metadata["events"][-1]["event"] == "folder_accepted"

    def test_accept_twice_rejected(self, services, recommendation):
        services.folders.accept(recommendation.id)
        with pytest.raises(InvalidTransitionError):
            services.folders.accept(recommendation.id)

    def test_undo_restores_previous_folder(self, services, store, recommendation):
        services.folders.accept(recommendation.id)
        restored = services.folders.undo(recommendation.id)
        assert restored.parent_folder_id is None
        assert store.get_recommendation(recommendation.id).status == "rejected"

    def test_reject_leaves_document_in_place(self, services, store, recommendation):
        rejected = services.folders.reject(recommendation.id)
        assert rejected.status == "rejected"
        assert store.get(recommendation.document_id).parent_folder_id is None
        with pytest.raises(InvalidTransitionError):
            services.folders.undo(recommendation.id)

    def test_new_recommendation_replaces_pending(self, store, upload, recommendation):
        doc = store.get(recommendation.document_id)
        newer = FolderRecommender(store).recommend(doc, make_analysis(doc.id, form_number="31"))
        assert store.get_pending_recommendation(doc.id).id == newer.id
