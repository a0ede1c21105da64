"""
Pattern Analysis Oracle — deterministic extraction without an AI provider.

Regex field extraction plus a small BIA rules engine. Each rule is a pure
function returning a RiskFactor or None, easy to add, remove and test.
Used when no Gemini key is configured, and as a predictable oracle in tests.
"""

import logging
import re

from trustee_docs.core.entities.analysis_result import RiskFactor, Severity
from trustee_docs.core.errors import OracleMalformedInputError
from trustee_docs.core.interfaces.analysis_oracle import AnalysisHints, IAnalysisOracle
from trustee_docs.core.use_cases.classify_content import FORM_TITLES, detect_form_number

logger = logging.getLogger(__name__)

_NAME = r"([A-Za-z][A-Za-z .'\-]{1,60})"

FIELD_PATTERNS = {
    "clientName": re.compile(r"(?:debtor|client)(?:'s)?[ \t]*name[ \t:]*" + _NAME, re.I),
    "claimantName": re.compile(r"(?:claimant|creditor)[ \t]*name[ \t:]*" + _NAME, re.I),
    "trusteeName": re.compile(r"(?:trustee|LIT)[ \t]*(?:name)?[ \t]*:[ \t]*" + _NAME),
    "dateSigned": re.compile(r"(?:date[ \t]*signed|signed[ \t]*on|dated)[ \t:]*(\d{1,4}[/.\-]\d{1,2}[/.\-]\d{1,4})", re.I),
    "claimAmount": re.compile(r"(?:claim[ \t]*amount|total[ \t]*claim|amount[ \t]*of[ \t]*claim)[ \t:]*\$?[ \t]*([\d,]+(?:\.\d{2})?)", re.I),
    "estateNumber": re.compile(r"(?:estate|bankruptcy)[ \t]+(?:no\.?|number)[ \t:.]*([A-Za-z0-9\-]+)", re.I),
    "courtFileNumber": re.compile(r"court[ \t]+file[ \t]+(?:no\.?|number)[ \t:.]*([A-Za-z0-9\-]+)", re.I),
    "claimType": re.compile(
        r"claim(?:s|ed)?[ \t]+as[ \t]+(?:an?[ \t]+)?(unsecured|secured|preferred|priority|wage earner|farmer|fisherman|director)",
        re.I,
    ),
}

_SIGNATURE = re.compile(r"\b(?:signed|signature)\b", re.I)
_UNSIGNED = re.compile(r"\b(?:not signed|unsigned|signature:\s*$)", re.I | re.M)
_SUPPORTING = re.compile(r"\b(?:statement of account|affidavit|schedule [a-z]|attached|supporting documents?)\b", re.I)


def extract_fields(text: str, form_number: str = "") -> dict:
    fields = {"formNumber": form_number} if form_number else {}
    for name, pattern in FIELD_PATTERNS.items():
        match = pattern.search(text)
        if match:
            fields[name] = " ".join(match.group(1).split())
    return fields


# ─── RULES ─────────────────────────────────────────────

def rule_signature(text: str, fields: dict, form_number: str) -> RiskFactor | None:
    if form_number not in ("31", "47"):
        return None
    if _SIGNATURE.search(text) and not _UNSIGNED.search(text):
        return None
    return RiskFactor(
        type="compliance",
        severity=Severity.HIGH,
        description=f"Form {form_number} is not signed",
        recommendation="Obtain the signature before filing",
        regulatory_reference="BIA s.124(2)" if form_number == "31" else "BIA s.66.13(2)",
    )


def rule_claim_amount(text: str, fields: dict, form_number: str) -> RiskFactor | None:
    if form_number != "31" or fields.get("claimAmount"):
        return None
    return RiskFactor(
        type="missing_information",
        severity=Severity.HIGH,
        description="Proof of Claim does not state the claim amount",
        recommendation="Request the total amount claimed from the creditor",
        regulatory_reference="BIA s.124(4)",
    )


def rule_debtor_name(text: str, fields: dict, form_number: str) -> RiskFactor | None:
    if not form_number or fields.get("clientName"):
        return None
    return RiskFactor(
        type="missing_information",
        severity=Severity.MEDIUM,
        description="Debtor name could not be found in the document",
        recommendation="Confirm the debtor's full legal name",
        regulatory_reference="BIA Form requirements",
    )


def rule_estate_number(text: str, fields: dict, form_number: str) -> RiskFactor | None:
    if form_number not in ("31", "65", "76", "79") or fields.get("estateNumber"):
        return None
    return RiskFactor(
        type="missing_information",
        severity=Severity.LOW,
        description="Estate number is missing",
        recommendation="Add the estate number assigned by the Official Receiver",
        regulatory_reference="BIA General Rules s.3",
    )


def rule_unsecured_support(text: str, fields: dict, form_number: str) -> RiskFactor | None:
    if form_number != "31" or (fields.get("claimType") or "").lower() != "unsecured":
        return None
    if _SUPPORTING.search(text):
        return None
    return RiskFactor(
        type="compliance",
        severity=Severity.MEDIUM,
        description="Unsecured claim filed without a statement of account or supporting documents",
        recommendation="Ask the creditor for a statement of account supporting the claim",
        regulatory_reference="BIA s.124(4)(a)",
    )


RULES = (rule_signature, rule_claim_amount, rule_debtor_name, rule_estate_number, rule_unsecured_support)


class PatternAnalysisOracle(IAnalysisOracle):
    """Rule-based oracle producing the same payload shape as the AI adapter."""

    model_name = "pattern-rules-1.0"

    def analyze(self, content: str, hints: AnalysisHints) -> dict:
        text = content or ""
        if not text.strip() and not hints.title:
            raise OracleMalformedInputError("Nothing to analyze: empty text and no title")

        form_number = hints.form_number or detect_form_number(hints.title, text)
        fields = extract_fields(text, form_number)

        risks: list[RiskFactor] = []
        if hints.include_risk_assessment:
            for rule in RULES:
                result = rule(text, fields, form_number)
                if result is not None:
                    risks.append(result)

        overall = max((r.severity for r in risks), key=lambda s: s.rank, default=Severity.LOW)
        critical = [r.description for r in risks if r.severity == Severity.HIGH]
        found = sum(1 for k in FIELD_PATTERNS if fields.get(k))
        confidence = min(95.0, 40.0 + (20.0 if form_number else 0.0) + 7.0 * found) if text.strip() else 10.0

        compliance = {}
        if hints.include_compliance_check:
            compliance = {
                "status": "non_compliant" if critical else ("needs_review" if risks else "compliant"),
                "rules_checked": len(RULES),
                "rules_failed": len(risks),
            }

        logger.debug(f"Pattern analysis of {hints.title!r}: form={form_number or '-'} risks={len(risks)}")
        return {
            "form_type": FORM_TITLES.get(form_number, ""),
            "form_number": form_number,
            "confidence": confidence,
            "extracted_fields": fields,
            "risk_assessment": {
                "overall_risk": overall.value,
                "risk_factors": [
                    {
                        "type": r.type,
                        "severity": r.severity.value,
                        "description": r.description,
                        "solution": r.recommendation,
                        "regulation": r.regulatory_reference,
                    }
                    for r in risks
                ],
                "critical_issues": critical,
            },
            "compliance_status": compliance,
            "reasoning": f"{found} field(s) matched, {len(risks)} of {len(RULES)} rules flagged",
        }
