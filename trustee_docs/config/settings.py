"""
Application Settings.

All configuration comes from .env / environment variables.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    # --- App ---
    env: str = "development"
    debug: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # --- Database ---
    database_url: str = "sqlite:///trustee_docs.db"

    # --- Storage ---
    storage_backend: str = "local"          # "local" | "minio"
    storage_dir: str = "data/storage"
    minio_endpoint: str = "localhost:9000"
    minio_access_key: str = ""
    minio_secret_key: str = ""
    minio_bucket: str = "documents"
    minio_secure: bool = False

    # --- Upload ---
    fingerprint_mode: str = "content_hash"  # "content_hash" | "metadata"
    max_upload_bytes: int = 50 * 1024 * 1024
    allowed_mime_types: list[str] = [
        "application/pdf",
        "text/plain",
        "text/csv",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "image/png",
        "image/jpeg",
    ]

    # --- Oracle (Gemini) ---
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    llm_enabled: bool = True
    oracle_timeout_seconds: float = 60.0

    # --- Pipeline ---
    persistence_max_attempts: int = 3
    persistence_backoff_seconds: float = 0.5
    stall_reset_seconds: float = 90.0
    task_severity_threshold: str = "medium"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    """Settings singleton."""
    return Settings()
