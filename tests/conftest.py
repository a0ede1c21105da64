"""Shared fixtures: in-memory database, tmp storage, fake oracles and the API client."""

import copy
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from trustee_docs.api.dependencies import build_services, get_services
from trustee_docs.config.settings import Settings
from trustee_docs.core.interfaces.analysis_oracle import IAnalysisOracle
from trustee_docs.infrastructure.db.database import configure_engine, init_db
from trustee_docs.infrastructure.db.repository import DocumentRepository
from trustee_docs.infrastructure.storage.local_storage import LocalStorageService

OWNER = "trustee-1"

FORM31_TEXT = """FORM 31
Proof of Claim
Debtor name: John Smith
Creditor name: Acme Bank
Estate number: 31-123456
Claim amount: $12,500.00
The creditor claimed as unsecured creditor.
"""

NOTES_TEXT = "Notes from the meeting with the team about scheduling next week."

FORM31_PAYLOAD = {
    "form_type": "Proof of Claim",
    "form_number": "31",
    "confidence": 0.92,
    "extracted_fields": {"clientName": "John Smith", "claimAmount": "12,500.00"},
    "risk_assessment": {
        "overall_risk": "HIGH",
        "risk_factors": [
            {
                "type": "compliance",
                "severity": "high",
                "description": "Form 31 is not signed",
                "regulation": "BIA s.124(2)",
                "solution": "Obtain the creditor's signature",
            },
            {
                "type": "missing_information",
                "severity": "medium",
                "description": "No statement of account attached",
                "regulation": "BIA s.124(4)(a)",
                "solution": "Request a statement of account",
            },
            {
                "type": "formatting",
                "severity": "low",
                "description": "Creditor address abbreviated",
                "regulation": None,
                "solution": None,
            },
        ],
        "critical_issues": ["Form 31 is not signed"],
    },
    "compliance_status": {"status": "non_compliant"},
    "reasoning": "Signature block empty.",
}


class FakeOracle(IAnalysisOracle):
    """Scriptable oracle: returns `payload`, or raises `error`, after `delay` seconds."""

    model_name = "fake-oracle"

    def __init__(self, payload=None, error: Exception | None = None, delay: float = 0.0):
        self.payload = FORM31_PAYLOAD if payload is None else payload
        self.error = error
        self.delay = delay
        self.calls = 0
        self.hints = []
        self.healthy = True

    def analyze(self, content, hints):
        self.calls += 1
        self.hints.append(hints)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.payload)

    def ping(self) -> bool:
        return self.healthy


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    configure_engine(engine)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return DocumentRepository()


@pytest.fixture
def storage(tmp_path):
    return LocalStorageService(tmp_path / "storage")


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        storage_dir=str(tmp_path / "storage"),
        gemini_api_key="",
        oracle_timeout_seconds=5.0,
        persistence_backoff_seconds=0.5,
        allowed_mime_types=["application/pdf", "text/plain"],
    )


@pytest.fixture
def services(settings, store, storage, oracle, sleep):
    return build_services(settings, store=store, storage=storage, oracle=oracle, sleep=sleep)


@pytest.fixture
def upload(services):
    """Upload helper returning the UploadOutcome."""
    def _upload(filename="claim.txt", text=FORM31_TEXT, owner=OWNER, mime_type="text/plain", **kwargs):
        data = text.encode("utf-8") if isinstance(text, str) else text
        return services.uploads.execute(owner_id=owner, filename=filename, data=data, mime_type=mime_type, **kwargs)
    return _upload


@pytest.fixture
def client(services, engine):
    from trustee_docs.api.main import app

    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
