"""
Use Case: Check Duplicates

Looks up documents of the same owner that match a fingerprint. A match is
never resolved silently: the candidates go back to the caller, who picks
replace / version / rename / cancel. A failing lookup fails open.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from trustee_docs.core.entities.document import Document
from trustee_docs.core.interfaces.document_store import IDocumentStore
from trustee_docs.core.use_cases.fingerprint import Fingerprint

logger = logging.getLogger(__name__)


class DuplicateDecision(str, Enum):
    PROCEED = "proceed"
    PROMPT = "prompt"


class Resolution(str, Enum):
    REPLACE = "replace"
    VERSION = "version"
    RENAME = "rename"
    CANCEL = "cancel"


@dataclass
class DuplicateCheck:
    """Transient candidate set. Never persisted."""
    decision: DuplicateDecision
    fingerprint: Fingerprint
    candidates: list[Document] = field(default_factory=list)
    lookup_failed: bool = False

    @property
    def is_duplicate(self) -> bool:
        return self.decision == DuplicateDecision.PROMPT


class DuplicateResolver:
    """Finds documents that match an incoming fingerprint."""

    def __init__(self, store: IDocumentStore):
        self._store = store

    def check(self, owner_id: str, fingerprint: Fingerprint) -> DuplicateCheck:
        try:
            if fingerprint.is_content_hash:
                candidates = self._store.find_duplicates(owner_id, sha256=fingerprint.sha256)
            else:
                candidates = self._store.find_duplicates(
                    owner_id,
                    title=fingerprint.filename,
                    size=fingerprint.size,
                    mime_type=fingerprint.mime_type,
                )
        except Exception as e:
            # A missed duplicate can be reconciled later; a blocked upload cannot.
            logger.warning(f"Duplicate check failed for owner {owner_id}, proceeding: {e}")
            return DuplicateCheck(DuplicateDecision.PROCEED, fingerprint, lookup_failed=True)

        if not candidates:
            return DuplicateCheck(DuplicateDecision.PROCEED, fingerprint)

        candidates = sorted(candidates, key=lambda d: d.created_at, reverse=True)
        logger.info(
            f"Duplicate of {fingerprint.filename} for owner {owner_id}: "
            f"{[d.id for d in candidates]}"
        )
        return DuplicateCheck(DuplicateDecision.PROMPT, fingerprint, candidates=candidates)


def renamed_title(title: str, taken) -> str:
    """
    First free "<stem>_copy[_N].<ext>" variant of a title.

    `taken` is a predicate telling whether a candidate title is in use.
    """
    stem, dot, ext = title.rpartition(".")
    if not dot:
        stem, ext = title, ""
    suffix = f".{ext}" if ext else ""

    candidate = f"{stem}_copy{suffix}"
    n = 2
    while taken(candidate):
        candidate = f"{stem}_copy_{n}{suffix}"
        n += 1
    return candidate
