"""
Use Case: Document Versions

Listing and restoring stored revisions. Exactly one version is current;
restoring an older one points the document at its bytes and, by default,
queues a fresh analysis of them.
"""

import logging

from trustee_docs.core.entities.document import Document, DocumentVersion
from trustee_docs.core.interfaces.document_store import IDocumentStore

logger = logging.getLogger(__name__)


class ManageVersionsUseCase:

    def __init__(self, store: IDocumentStore, orchestrator=None):
        self._store = store
        self._orchestrator = orchestrator

    def list(self, document_id: str) -> list[DocumentVersion]:
        self._store.get(document_id)
        return self._store.list_versions(document_id)

    def switch(self, document_id: str, version_id: str, reanalyze: bool = True) -> Document:
        version = self._store.switch_version(document_id, version_id)
        logger.info(f"Document {document_id} now at version {version.version_number}")
        if reanalyze and self._orchestrator is not None:
            return self._orchestrator.prepare_for_new_content(
                document_id, reason=f"restored version {version.version_number}"
            )
        return self._store.get(document_id)
