"""
Error taxonomy for the ingestion and analysis pipeline.

Every failure the pipeline can record carries an ErrorCode. The code is what
lands in document metadata (`error`) and what the API returns as `code`.
"""

from enum import Enum


class ErrorCode(str, Enum):
    UPLOAD_FAILURE = "upload_failure"
    DUPLICATE_CONFLICT = "duplicate_conflict"
    ORACLE_TIMEOUT = "oracle_timeout"
    ORACLE_PROVIDER_ERROR = "oracle_provider_error"
    ORACLE_PARSE_ERROR = "oracle_parse_error"
    ORACLE_MALFORMED_INPUT = "oracle_malformed_input"
    ORACLE_SCHEMA_ERROR = "oracle_schema_error"
    PERSISTENCE_FAILURE = "persistence_failure"
    USER_CANCELLED = "user_cancelled"
    STALLED_JOB = "stalled_job"
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"
    INTERNAL_ERROR = "internal_error"


class PipelineError(Exception):
    """Base class for all typed pipeline failures."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str = "", details: dict | None = None):
        super().__init__(message or self.code.value)
        self.message = message or self.code.value
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message, "details": self.details}


class UploadFailureError(PipelineError):
    """Storage write or read failed."""
    code = ErrorCode.UPLOAD_FAILURE


class InvalidUploadError(UploadFailureError):
    """The file itself is rejected before any storage write."""


class OracleError(PipelineError):
    """Base for failures raised by an analysis oracle."""
    code = ErrorCode.ORACLE_PROVIDER_ERROR


class OracleTimeoutError(OracleError):
    code = ErrorCode.ORACLE_TIMEOUT


class OracleProviderError(OracleError):
    code = ErrorCode.ORACLE_PROVIDER_ERROR


class OracleMalformedInputError(OracleError):
    code = ErrorCode.ORACLE_MALFORMED_INPUT


class OracleParseError(OracleError):
    """The oracle answered, but not with valid structured data."""
    code = ErrorCode.ORACLE_PARSE_ERROR

    def __init__(self, message: str = "", raw: str = "", details: dict | None = None):
        super().__init__(message, details)
        self.raw = raw


class OracleSchemaError(OracleError):
    """Structured oracle output that cannot be coerced into an Analysis Result."""
    code = ErrorCode.ORACLE_SCHEMA_ERROR


class PersistenceError(PipelineError):
    code = ErrorCode.PERSISTENCE_FAILURE


class UserCancelledError(PipelineError):
    code = ErrorCode.USER_CANCELLED


class DocumentNotFoundError(PipelineError):
    code = ErrorCode.NOT_FOUND


class InvalidTransitionError(PipelineError):
    code = ErrorCode.INVALID_TRANSITION


class StaleStatusError(InvalidTransitionError):
    """Compare-and-set status write lost: the row no longer has the expected status."""
