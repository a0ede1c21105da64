"""
Use Case: Folder Recommendation

Suggests exactly one destination folder for an analyzed document. A
recommendation is only a suggestion: the document moves when the trustee
accepts it, and an accepted move can be undone.
"""

import logging
from dataclasses import dataclass

from trustee_docs.core.entities.analysis_result import AnalysisResult
from trustee_docs.core.entities.document import Document
from trustee_docs.core.entities.work_item import FolderRecommendation
from trustee_docs.core.errors import InvalidTransitionError
from trustee_docs.core.interfaces.document_store import IDocumentStore
from trustee_docs.core.use_cases.classify_content import (
    detect_form_number,
    extract_client_name,
    financial_keywords_in,
)

logger = logging.getLogger(__name__)

SUPPORTING_FOLDER = "Supporting Documents"


@dataclass
class FolderSuggestion:
    name: str
    folder_type: str
    confidence: float
    reason: str


def suggest_folder(document: Document, analysis: AnalysisResult | None, text: str = "") -> FolderSuggestion:
    """
    Pick a folder by the first matching rule:
    client name → form number → financial keywords → supporting documents.
    """
    fields = analysis.extracted_fields if analysis else {}

    client = str(fields.get("clientName") or fields.get("debtorName") or "").strip()
    source = "analysis"
    if not client:
        client = extract_client_name(document.title, text)
        source = "document title"
    if client:
        return FolderSuggestion(
            name=f"Client - {client}",
            folder_type="client",
            confidence=90.0 if source == "analysis" else 80.0,
            reason=f"Client name '{client}' found in {source}",
        )

    form_number = (analysis.form_number if analysis else "") or detect_form_number(document.title, text[:5000])
    if form_number:
        return FolderSuggestion(
            name=f"Forms - Form {form_number}",
            folder_type="form",
            confidence=85.0,
            reason=f"Detected BIA Form {form_number}",
        )

    keywords = financial_keywords_in(f"{document.title}\n{text}")
    if keywords:
        return FolderSuggestion(
            name="Financial Documents",
            folder_type="financial",
            confidence=min(60.0 + 5 * len(keywords), 80.0),
            reason=f"Financial terms: {', '.join(keywords[:5])}",
        )

    return FolderSuggestion(
        name=SUPPORTING_FOLDER,
        folder_type="folder",
        confidence=30.0,
        reason="No client, form or financial markers found",
    )


class FolderRecommender:
    """
    Stores one pending recommendation per document; never moves anything.

    A re-run over the same analysis keeps whatever the trustee already
    decided; only a new analysis produces a new suggestion.
    """

    def __init__(self, store: IDocumentStore):
        self._store = store

    def recommend(self, document: Document, analysis: AnalysisResult | None, text: str = "") -> FolderRecommendation:
        if analysis is not None and analysis.id:
            existing = self._store.find_recommendation_for_analysis(document.id, analysis.id)
            if existing is not None:
                logger.info(f"Document {document.id} already has a {existing.status} recommendation for analysis {analysis.id}")
                return existing

        suggestion = suggest_folder(document, analysis, text)
        recommendation = self._store.save_recommendation(FolderRecommendation(
            document_id=document.id,
            folder_name=suggestion.name,
            folder_type=suggestion.folder_type,
            confidence=suggestion.confidence,
            reason=suggestion.reason,
            analysis_id=analysis.id if analysis else None,
        ))
        logger.info(f"Recommended '{suggestion.name}' for document {document.id} ({suggestion.confidence:.0f}%)")
        return recommendation


class FolderService:
    """Trustee-facing folder actions: accept, reject, move."""

    def __init__(self, store: IDocumentStore):
        self._store = store

    def accept(self, recommendation_id: str) -> Document:
        recommendation = self._store.get_recommendation(recommendation_id)
        if recommendation.status != "pending":
            raise InvalidTransitionError(f"Recommendation {recommendation_id} is already {recommendation.status}")

        document = self._store.get(recommendation.document_id)
        folder = self._store.get_or_create_folder(document.owner_id, recommendation.folder_name, recommendation.folder_type)
        self._store.update_recommendation(recommendation_id, "accepted", previous_folder_id=document.parent_folder_id)
        moved = self._store.set_parent_folder(document.id, folder.id)
        self._store.patch_metadata(document.id, {
            "events": [{"event": "folder_accepted", "folder_id": folder.id, "folder_name": folder.name}],
        })
        logger.info(f"Document {document.id} moved to folder '{folder.name}'")
        return moved

    def reject(self, recommendation_id: str) -> FolderRecommendation:
        recommendation = self._store.get_recommendation(recommendation_id)
        if recommendation.status != "pending":
            raise InvalidTransitionError(f"Recommendation {recommendation_id} is already {recommendation.status}")
        return self._store.update_recommendation(recommendation_id, "rejected")

    def move(self, document_id: str, folder_id: str | None) -> Document:
        """Manual move; `None` puts the document back at the root."""
        return self._store.set_parent_folder(document_id, folder_id)

    def undo(self, recommendation_id: str) -> Document:
        """Reverse an accepted recommendation."""
        recommendation = self._store.get_recommendation(recommendation_id)
        if recommendation.status != "accepted":
            raise InvalidTransitionError(f"Recommendation {recommendation_id} was not accepted")
        self._store.update_recommendation(recommendation_id, "rejected", recommendation.previous_folder_id)
        return self._store.set_parent_folder(recommendation.document_id, recommendation.previous_folder_id)
