"""
Gemini Analysis Oracle — AI extraction of BIA form data and risks.

Receives extracted document text + hints and produces the structured
analysis payload (fields, risk factors, compliance status).

Uses the new `google-genai` SDK (not deprecated `google-generativeai`).
"""
import json
import logging
import time

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from trustee_docs.core.errors import (
    OracleMalformedInputError,
    OracleParseError,
    OracleProviderError,
    OracleTimeoutError,
)
from trustee_docs.core.interfaces.analysis_oracle import AnalysisHints, IAnalysisOracle

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 30000

OUTPUT_FORMAT = """Output JSON format:
{
    "form_type": "Name of the form, e.g. Proof of Claim",
    "form_number": "31",
    "confidence": 0 to 100,
    "extracted_fields": {"clientName": "", "...": ""},
    "risk_assessment": {
        "overall_risk": "low" | "medium" | "high",
        "risk_factors": [
            {
                "type": "compliance" | "missing_information" | "financial" | "deadline",
                "severity": "low" | "medium" | "high",
                "description": "Specific description of what is wrong or missing",
                "regulation": "Specific BIA section, e.g. BIA s.124(2)",
                "solution": "How to resolve this specific issue"
            }
        ],
        "critical_issues": ["..."]
    },
    "compliance_status": {"status": "compliant" | "non_compliant" | "needs_review", "notes": ""},
    "reasoning": "Step-by-step analysis reasoning"
}"""

BASE_PROMPT = """You are an expert in Canadian bankruptcy and insolvency (BIA) document analysis, working for a Licensed Insolvency Trustee.

IMPORTANT: Respond ONLY with a JSON object, no markdown, no backticks, no extra text.
IMPORTANT: You are analyzing a REAL document, NOT documentation ABOUT a form.
Extract ONLY what is actually in the document. If a field is not present, use "Not provided" instead of inventing content.
"""

FORM_31_PROMPT = """The document is Form 31 (Proof of Claim). Extract:
- debtorName, creditorName, creditorAddress
- claimAmount (exact dollar figure), claimType (unsecured, secured, preferred, ...)
- securityDescription (if the claim is secured), estateNumber
- supportingDocuments, isSigned, dateSigned
Flag missing signatures, missing claim amounts, secured claims without a security valuation
and unsecured claims without a statement of account (BIA s.124)."""

FORM_47_PROMPT = """The document is Form 47 (Consumer Proposal). Extract:
- clientName, clientAddress, administratorName, filingDate
- proposalPayment (monthly), proposalDuration, totalAssets, totalLiabilities
- monthlyIncome, monthlyExpenses
- whether the debtor, the administrator and a witness have signed
Flag missing signatures, proposals longer than 5 years (BIA s.66.12(5)) and
payments that do not fit the stated income and expenses."""

GENERIC_PROMPT = """Extract:
1. The specific form type/number (if detectable)
2. Client/debtor name as it appears in the document (clientName)
3. Any dates mentioned (filing dates, signature dates)
4. Any monetary amounts mentioned
5. Any risks or compliance issues visible in the document"""


def strip_fences(raw: str) -> str:
    """Remove a surrounding ``` / ```json markdown block."""
    raw = raw.strip()
    if raw.startswith("```"):
        lines = raw.split("\n")
        raw = "\n".join(lines[1:])  # remove first line
        if raw.rstrip().endswith("```"):
            raw = raw.rstrip()[:-3]
        raw = raw.strip()
    return raw


class GeminiAnalysisOracle(IAnalysisOracle):
    """Gemini-powered analysis of trustee documents."""

    def __init__(self, api_key: str, model_name: str = "gemini-2.0-flash", timeout_seconds: float = 60.0):
        self.model_name = model_name
        self.client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
        )

    def analyze(self, content: str, hints: AnalysisHints) -> dict:
        """
        Analyze document text with Gemini.

        Args:
            content: Extracted document text.
            hints: Title, MIME type, detected form number and options.

        Returns:
            Raw payload dict (validated later against OraclePayload).
        """
        if not (content or "").strip() and not hints.title:
            raise OracleMalformedInputError("Nothing to analyze: empty text and no title")

        t0 = time.perf_counter()
        prompt = self._build_prompt(content, hints)

        try:
            response = self.client.models.generate_content(
                model=self.model_name,
                contents=[prompt],
                config={
                    "temperature": 0.1,
                    "max_output_tokens": 2048,
                    "response_mime_type": "application/json",
                },
            )
        except httpx.TimeoutException as e:
            raise OracleTimeoutError(f"Gemini request timed out: {e}") from e
        except genai_errors.ClientError as e:
            if e.code == 400:
                raise OracleMalformedInputError(f"Gemini rejected the request: {e}") from e
            raise OracleProviderError(f"Gemini error {e.code}: {e}") from e
        except genai_errors.APIError as e:
            raise OracleProviderError(f"Gemini error {e.code}: {e}") from e
        except httpx.HTTPError as e:
            raise OracleProviderError(f"Gemini transport error: {e}") from e

        raw = strip_fences(response.text or "")
        latency = (time.perf_counter() - t0) * 1000
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise OracleParseError(f"JSON parse error: {e}", raw=raw[:2000]) from e
        if not isinstance(data, dict):
            raise OracleParseError(f"Expected a JSON object, got {type(data).__name__}", raw=raw[:2000])

        logger.info(f"Gemini analysis done in {latency:.0f}ms ({self.model_name})")
        return data

    def _build_prompt(self, content: str, hints: AnalysisHints) -> str:
        """Build the prompt with document data."""
        parts = [BASE_PROMPT]

        if hints.form_number == "31":
            parts.append(FORM_31_PROMPT)
        elif hints.form_number == "47":
            parts.append(FORM_47_PROMPT)
        else:
            parts.append(GENERIC_PROMPT)

        if not hints.include_risk_assessment:
            parts.append("Do not assess risks: return an empty risk_factors list.")
        if hints.include_compliance_check:
            parts.append("Check compliance with the Bankruptcy and Insolvency Act and cite sections.")
        parts.append(OUTPUT_FORMAT)

        parts.append("\n## Document")
        parts.append(f"  Title: {hints.title}")
        parts.append(f"  Type: {hints.mime_type}")
        if hints.form_number:
            parts.append(f"  Detected form: {hints.form_number}")
        if hints.financial:
            parts.append("  Contains financial figures")

        text = (content or "").strip()
        parts.append("\n## Text")
        parts.append(text[:MAX_CONTENT_CHARS] if text else "(no extractable text, use the title only)")
        return "\n".join(parts)
