"""
Entity: Document

A document uploaded by a trustee, its processing status and the additive
metadata log written by the pipeline. Pure model, no framework or database.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ProcessingStatus(str, Enum):
    """The single authoritative pipeline status, shared by every reader."""
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSING_FINANCIAL = "processing_financial"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETE, ProcessingStatus.FAILED)

    def can_transition_to(self, target: "ProcessingStatus") -> bool:
        return target in _TRANSITIONS[self]

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


# Forward transitions driven by the orchestrator. Resets back to PENDING
# (retry, replace, re-analysis) go through RESETTABLE instead.
_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.PENDING: frozenset({ProcessingStatus.PROCESSING, ProcessingStatus.FAILED}),
    ProcessingStatus.PROCESSING: frozenset({
        ProcessingStatus.PROCESSING_FINANCIAL,
        ProcessingStatus.COMPLETE,
        ProcessingStatus.FAILED,
    }),
    ProcessingStatus.PROCESSING_FINANCIAL: frozenset({ProcessingStatus.COMPLETE, ProcessingStatus.FAILED}),
    ProcessingStatus.COMPLETE: frozenset(),
    ProcessingStatus.FAILED: frozenset(),
}

RESETTABLE = frozenset({ProcessingStatus.FAILED, ProcessingStatus.COMPLETE})

# Ordered pipeline steps, recorded in metadata["steps_completed"].
PIPELINE_STEPS = (
    "storage_read",
    "text_extraction",
    "content_classification",
    "oracle_analysis",
    "result_persisted",
    "generators",
)

# Keys that only exist while a document is failed. Retry clears exactly these.
FAILURE_KEYS = ("error", "error_message", "failed_at", "failure_stage", "failed_from", "traceback")


def utc_now() -> datetime:
    """Naive UTC timestamp, the form the database columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


_STATUS_FLOOR = {
    ProcessingStatus.PENDING: 0,
    ProcessingStatus.PROCESSING: 10,
    ProcessingStatus.PROCESSING_FINANCIAL: 40,
}


@dataclass
class Document:
    """Domain entity: Document."""
    id: str
    owner_id: str
    title: str
    type: str = "application/octet-stream"
    size: int = 0
    storage_path: str | None = None
    sha256: str | None = None
    parent_folder_id: str | None = None
    status: ProcessingStatus = ProcessingStatus.PENDING
    metadata: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def progress(self) -> int:
        return derive_progress(self.status, self.metadata)


@dataclass
class DocumentVersion:
    """One stored revision of a document's bytes."""
    id: str
    document_id: str
    version_number: int
    storage_path: str
    is_current: bool = False
    size: int = 0
    sha256: str | None = None
    change_notes: str = ""
    created_by: str | None = None
    created_at: datetime = field(default_factory=utc_now)


def merge_metadata(existing: dict | None, patch: dict | None) -> dict:
    """
    Merge a patch into document metadata without losing earlier keys.

    Nested dicts are merged recursively and the "events" list is an
    append-only log. Any other value is replaced. Returns a new dict;
    neither argument is mutated.
    """
    merged = copy.deepcopy(existing) if existing else {}
    for key, value in (patch or {}).items():
        current = merged.get(key)
        if key == "events":
            merged[key] = list(current or []) + list(value or [])
        elif isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_metadata(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def derive_progress(status: ProcessingStatus | str, metadata: dict | None) -> int:
    """
    UI-only 0-100 projection of {status, metadata}.

    Never stored, always recomputable from the record alone.
    """
    status = ProcessingStatus(status)
    if status == ProcessingStatus.COMPLETE:
        return 100
    metadata = metadata or {}
    if status == ProcessingStatus.PENDING:
        return 0

    done = [s for s in metadata.get("steps_completed", []) if s in PIPELINE_STEPS]
    from_steps = int(95 * len(done) / len(PIPELINE_STEPS))

    if status == ProcessingStatus.FAILED:
        failed_from = metadata.get("failed_from")
        floor = _STATUS_FLOOR.get(ProcessingStatus(failed_from), 0) if failed_from else 0
        return max(floor, from_steps)

    return max(_STATUS_FLOOR[status], from_steps)
