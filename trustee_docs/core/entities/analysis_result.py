"""
Entity: Analysis Result

Structured oracle output for one document: extracted fields, risk factors,
compliance flags and reasoning. At most one result per document is current.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from trustee_docs.core.entities.document import utc_now


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]

    @classmethod
    def coerce(cls, value) -> "Severity":
        """Accept provider spellings like "HIGH", "critical", "Moderate"."""
        if isinstance(value, cls):
            return value
        text = str(getattr(value, "value", value) or "").strip().lower()
        if text in ("critical", "severe", "high"):
            return cls.HIGH
        if text in ("medium", "moderate"):
            return cls.MEDIUM
        return cls.LOW


MANUAL_REVIEW_ISSUE = "Analysis output could not be parsed - manual review required"


@dataclass
class RiskFactor:
    """One risk or compliance issue found in a document."""
    type: str
    severity: Severity
    description: str
    recommendation: str = ""
    regulatory_reference: str = ""

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "description": self.description,
            "recommendation": self.recommendation,
            "regulatory_reference": self.regulatory_reference,
        }


@dataclass
class AnalysisResult:
    """Consolidated analysis of a document."""
    document_id: str
    id: str | None = None
    form_type: str = ""
    form_number: str = ""
    confidence: float = 0.0               # 0-100
    extracted_fields: dict = field(default_factory=dict)
    risk_factors: list[RiskFactor] = field(default_factory=list)
    overall_risk: str = "low"
    critical_issues: list[str] = field(default_factory=list)
    compliance_status: dict = field(default_factory=dict)
    reasoning: str = ""
    degraded: bool = False
    model: str = ""
    is_current: bool = True
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def degraded_for(cls, document_id: str, model: str = "", reason: str = "") -> "AnalysisResult":
        """Result persisted when the oracle answered with unparseable output."""
        return cls(
            document_id=document_id,
            overall_risk=Severity.MEDIUM.value,
            critical_issues=[MANUAL_REVIEW_ISSUE],
            compliance_status={"status": "unknown"},
            reasoning=reason or "Analysis parsing failed - manual review required",
            degraded=True,
            model=model,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "form_type": self.form_type,
            "form_number": self.form_number,
            "confidence": self.confidence,
            "extracted_fields": self.extracted_fields,
            "risk_factors": [r.to_dict() for r in self.risk_factors],
            "overall_risk": self.overall_risk,
            "critical_issues": self.critical_issues,
            "compliance_status": self.compliance_status,
            "reasoning": self.reasoning,
            "degraded": self.degraded,
            "model": self.model,
            "is_current": self.is_current,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
