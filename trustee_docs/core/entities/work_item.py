"""
Entities: follow-up tasks, folders and folder recommendations.

Downstream outputs of a completed analysis.
"""

from dataclasses import dataclass, field
from datetime import datetime

from trustee_docs.core.entities.document import utc_now


@dataclass
class FollowUpTask:
    document_id: str
    title: str
    description: str
    priority: str                    # "low", "medium", "high"
    severity: str
    dedupe_key: str
    analysis_id: str | None = None
    category: str = "compliance"
    regulatory_reference: str = ""
    solution: str = ""
    status: str = "open"
    id: str | None = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class Folder:
    id: str
    owner_id: str
    name: str
    folder_type: str = "folder"      # "client", "form", "financial", "folder"
    parent_id: str | None = None


@dataclass
class FolderRecommendation:
    document_id: str
    folder_name: str
    folder_type: str
    confidence: float                # 0-100
    reason: str
    status: str = "pending"          # "pending", "accepted", "rejected"
    previous_folder_id: str | None = None
    analysis_id: str | None = None     # analysis the suggestion was derived from
    id: str | None = None
    created_at: datetime = field(default_factory=utc_now)
