"""
Use Case: Generate Follow-up Tasks

One task per risk factor at or above the severity threshold. Re-running on
the same analysis creates nothing new: every task carries a dedupe key and
the store skips keys it already holds for the document.
"""

import hashlib
import logging

from trustee_docs.core.entities.analysis_result import AnalysisResult, RiskFactor, Severity
from trustee_docs.core.entities.document import Document
from trustee_docs.core.entities.work_item import FollowUpTask
from trustee_docs.core.interfaces.document_store import IDocumentStore

logger = logging.getLogger(__name__)


def task_dedupe_key(risk: RiskFactor) -> str:
    raw = f"{risk.type}|{risk.description}|{risk.regulatory_reference}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


class TaskGenerator:
    """Turns risk factors into follow-up tasks for the trustee."""

    def __init__(self, store: IDocumentStore, severity_threshold: Severity | str = Severity.MEDIUM):
        self._store = store
        self._threshold = Severity.coerce(severity_threshold)

    def generate(self, document: Document, analysis: AnalysisResult) -> list[FollowUpTask]:
        """Returns only the tasks created by this call."""
        created = []
        for risk in analysis.risk_factors:
            if risk.severity.rank < self._threshold.rank:
                continue
            task = FollowUpTask(
                document_id=document.id,
                analysis_id=analysis.id,
                title=self._title(risk, document),
                description=risk.description,
                priority=risk.severity.value,
                severity=risk.severity.value,
                category=risk.type or "compliance",
                regulatory_reference=risk.regulatory_reference,
                solution=risk.recommendation,
                dedupe_key=task_dedupe_key(risk),
            )
            saved = self._store.add_task_if_absent(task)
            if saved is not None:
                created.append(saved)

        if created:
            logger.info(f"Created {len(created)} task(s) for document {document.id}")
        return created

    @staticmethod
    def _title(risk: RiskFactor, document: Document) -> str:
        label = (risk.type or "compliance").replace("_", " ").title()
        return f"{label} issue: {risk.description[:80]}" if risk.description else f"{label} issue in {document.title}"
