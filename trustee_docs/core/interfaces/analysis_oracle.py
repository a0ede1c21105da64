"""
Contract: Analysis Oracle

The external AI service that reads a document and returns form type,
fields, risk factors and compliance status. Treated as a single fallible
RPC: implementations raise the typed Oracle* errors from core.errors.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from pydantic import BaseModel, Field, ValidationError, field_validator

from trustee_docs.core.entities.analysis_result import AnalysisResult, RiskFactor, Severity
from trustee_docs.core.errors import OracleSchemaError


@dataclass
class AnalysisHints:
    """What the pipeline already knows about the document."""
    title: str = ""
    mime_type: str = ""
    form_number: str = ""
    financial: bool = False
    include_risk_assessment: bool = True
    include_compliance_check: bool = True


class OracleRiskFactor(BaseModel):
    type: str = "compliance"
    severity: str = "low"
    description: str = ""
    recommendation: str = Field(default="", alias="solution")
    regulatory_reference: str = Field(default="", alias="regulation")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("recommendation", "regulatory_reference", "description", "type", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v


class OracleRiskAssessment(BaseModel):
    overall_risk: str = "low"
    risk_factors: list[OracleRiskFactor] = []
    critical_issues: list[str] = []

    model_config = {"extra": "ignore"}


class OraclePayload(BaseModel):
    """Wire schema every oracle answer must coerce into."""
    form_type: str = ""
    form_number: str = ""
    confidence: float = Field(default=0.0, ge=0, le=100)
    extracted_fields: dict = {}
    risk_assessment: OracleRiskAssessment = OracleRiskAssessment()
    compliance_status: dict = {}
    reasoning: str = ""

    model_config = {"extra": "ignore"}

    @field_validator("form_type", "form_number", "reasoning", mode="before")
    @classmethod
    def _stringify(cls, v):
        return "" if v is None else str(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _percent(cls, v):
        if isinstance(v, str):
            v = v.strip().rstrip("%") or 0
        v = float(v or 0)
        # Providers sometimes answer on a 0-1 scale.
        return v * 100 if 0 < v < 1 else v

    def to_analysis(self, document_id: str, model: str = "") -> AnalysisResult:
        risks = [
            RiskFactor(
                type=r.type or "compliance",
                severity=Severity.coerce(r.severity),
                description=r.description,
                recommendation=r.recommendation,
                regulatory_reference=r.regulatory_reference,
            )
            for r in self.risk_assessment.risk_factors
        ]
        return AnalysisResult(
            document_id=document_id,
            form_type=self.form_type,
            form_number=self.form_number,
            confidence=round(self.confidence, 1),
            extracted_fields=self.extracted_fields,
            risk_factors=risks,
            overall_risk=Severity.coerce(self.risk_assessment.overall_risk).value,
            critical_issues=list(self.risk_assessment.critical_issues),
            compliance_status=self.compliance_status,
            reasoning=self.reasoning,
            model=model,
        )


def coerce_payload(payload: dict, document_id: str, model: str = "") -> AnalysisResult:
    """Validate raw oracle output; schema mismatches raise OracleSchemaError."""
    if not isinstance(payload, dict):
        raise OracleSchemaError(f"Oracle payload must be an object, got {type(payload).__name__}")
    try:
        return OraclePayload.model_validate(payload).to_analysis(document_id, model=model)
    except ValidationError as e:
        raise OracleSchemaError(
            "Oracle payload does not match the analysis schema",
            details={"errors": e.errors(include_url=False, include_input=False)},
        ) from e


class IAnalysisOracle(ABC):
    """
    Port: Analysis Oracle

    Raises OracleTimeoutError, OracleMalformedInputError,
    OracleProviderError or OracleParseError. Never returns None.
    """

    model_name: str = ""

    @abstractmethod
    def analyze(self, content: str, hints: AnalysisHints) -> dict:
        """
        Analyze document text.

        Args:
            content: Extracted document text (may be empty).
            hints: Known document facts and requested analysis options.

        Returns:
            Raw payload dict, coerced by the caller through OraclePayload.
        """
        ...

    def ping(self) -> bool:
        """Liveness check; must be cheap and must not charge the provider."""
        return True
