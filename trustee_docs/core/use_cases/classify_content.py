"""
Content classification helpers shared by the pipeline and the folder
recommender: form-number detection, financial keyword matching and client
name extraction.
"""

import re
from dataclasses import dataclass, field

FORM_TITLES = {
    "31": "Proof of Claim",
    "47": "Consumer Proposal",
    "65": "Notice of Intention",
    "76": "Statement of Affairs",
    "79": "Statement of Affairs (Non-Business)",
}

# Forms that always carry financial figures.
FINANCIAL_FORMS = frozenset({"31", "47", "65", "76", "79"})

_FORM_ALIASES = (
    (re.compile(r"proof\s+of\s+claim", re.I), "31"),
    (re.compile(r"consumer\s+proposal", re.I), "47"),
    (re.compile(r"statement\s+of\s+affairs", re.I), "76"),
)

_FORM_NUMBER = re.compile(r"\bform[\s_\-]*(?:no\.?|number)?[\s_\-:#]*(\d{1,3})\b", re.I)

FINANCIAL_KEYWORDS = (
    "claim amount",
    "total claim",
    "assets",
    "liabilities",
    "income",
    "expenses",
    "surplus",
    "creditor",
    "proposal payment",
    "balance",
    "debt",
    "bank statement",
    "tax return",
    "payroll",
)

_MONEY = re.compile(r"\$\s?\d[\d,]*(?:\.\d{2})?")

_CLIENT_PREFIX = re.compile(r"^(?:client|debtor)[\s_\-]+(.+)$", re.I)
_LAST_FIRST = re.compile(r"^([A-Za-z'\-]+),\s*([A-Za-z'\-]+)")
_TEXT_CLIENT = re.compile(r"(?:debtor|client)(?:'s)?\s*name[\s:]+([A-Za-z][A-Za-z .'\-]{1,40})", re.I)
_TITLE_NOISE = re.compile(r"[\s_\-]*(?:form[\s_\-]*\d+|file|folder|docs?|documents?)$", re.I)


@dataclass
class ContentClassification:
    form_number: str = ""
    form_title: str = ""
    financial: bool = False
    financial_keywords: list[str] = field(default_factory=list)
    has_amounts: bool = False

    def to_metadata(self) -> dict:
        return {
            "form_number": self.form_number,
            "form_type": self.form_title,
            "financial_content_detected": self.financial,
            "financial_keywords": self.financial_keywords,
        }


def detect_form_number(*texts: str) -> str:
    for text in texts:
        if not text:
            continue
        for pattern, number in _FORM_ALIASES:
            if pattern.search(text):
                return number
        match = _FORM_NUMBER.search(text)
        if match:
            return match.group(1).lstrip("0") or "0"
    return ""


def financial_keywords_in(text: str) -> list[str]:
    lowered = (text or "").lower()
    return [k for k in FINANCIAL_KEYWORDS if k in lowered]


def classify_content(title: str, text: str) -> ContentClassification:
    """Decide whether a document carries financial or risk-bearing content."""
    form_number = detect_form_number(title, text[:5000] if text else "")
    keywords = financial_keywords_in(f"{title}\n{text}")
    has_amounts = bool(_MONEY.search(text or ""))
    financial = form_number in FINANCIAL_FORMS or len(keywords) >= 2 or (has_amounts and bool(keywords))
    return ContentClassification(
        form_number=form_number,
        form_title=FORM_TITLES.get(form_number, ""),
        financial=financial,
        financial_keywords=keywords,
        has_amounts=has_amounts,
    )


def extract_client_name(title: str, text: str = "") -> str:
    """Client name from a "Last, First" or "client_<name>" title, else from the text."""
    stem = (title or "").rsplit(".", 1)[0].strip()

    match = _LAST_FIRST.match(stem)
    if match:
        last, first = match.groups()
        return f"{first.title()} {last.title()}"

    match = _CLIENT_PREFIX.match(stem)
    if match:
        name = _TITLE_NOISE.sub("", match.group(1)).replace("_", " ").replace("-", " ").strip()
        if name:
            return name.title()

    match = _TEXT_CLIENT.search(text or "")
    if match:
        return " ".join(match.group(1).split()).title()
    return ""
