from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backend.db import normalize_database_url


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    environment: str = Field(default="development", alias="ENVIRONMENT")
    mock_mode: bool = Field(default=False, alias="MOCK_MODE")

    # Document database
    database_url: str | None = Field(default=None, alias="DATABASE_URL")
    journal_container: str = Field(default="journals", alias="JOURNAL_CONTAINER")

    # Text analytics (sentiment)
    text_analytics_endpoint: str | None = Field(default=None, alias="TEXT_ANALYTICS_ENDPOINT")
    text_analytics_key: str | None = Field(default=None, alias="TEXT_ANALYTICS_KEY")
    text_analytics_language: str = Field(default="en", alias="TEXT_ANALYTICS_LANGUAGE")

    # Attachment blobs
    blob_storage_path: Path | None = Field(default=None, alias="BLOB_STORAGE_PATH")
    blob_public_base_url: str | None = Field(default=None, alias="BLOB_PUBLIC_BASE_URL")
    max_attachment_bytes: int = Field(default=5 * 1024 * 1024, alias="MAX_ATTACHMENT_BYTES")

    # Telemetry
    telemetry_pushgateway_url: str | None = Field(default=None, alias="TELEMETRY_PUSHGATEWAY_URL")
    telemetry_job: str = Field(default="lifetrack-journal", alias="TELEMETRY_JOB")

    # Auth
    jwt_secret: str | None = Field(default=None, alias="JWT_SECRET")
    jwt_audience: str | None = Field(default=None, alias="JWT_AUDIENCE")
    trust_client_user_id: bool = Field(default=False, alias="TRUST_CLIENT_USER_ID")

    log_file: Path = Field(
        default=Path("logs/lifetrack.log"), alias="LOG_FILE", validate_default=True
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    request_timeout_seconds: float = Field(default=10.0, alias="REQUEST_TIMEOUT_SECONDS")
    retry_attempts: int = Field(default=3, alias="RETRY_ATTEMPTS")
    write_rate_limit: int = Field(default=30, alias="WRITE_RATE_LIMIT")

    version: str = Field(default_factory=lambda: Settings._load_version())

    @staticmethod
    def _load_version() -> str:
        version_env = os.getenv("VERSION")
        if version_env:
            return version_env
        version_file = Path("VERSION")
        if version_file.exists():
            return version_file.read_text(encoding="utf-8").strip()
        return "0.0.0"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @field_validator("environment", mode="before")
    @classmethod
    def _validate_environment(cls, value: str | None) -> str:
        allowed = {"production", "development", "test"}
        if not value:
            return "development"
        normalized = str(value).lower()
        if normalized not in allowed:
            return "development"
        return normalized

    @field_validator("log_file", mode="before")
    @classmethod
    def _validate_log_file(cls, value: Path | str) -> Path:
        path = Path(value)
        if not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: str | None) -> str:
        if not value:
            return "INFO"
        return str(value).upper()

    @field_validator("retry_attempts", "write_rate_limit", mode="before")
    @classmethod
    def _validate_positive(cls, value: int | str | None) -> int:
        if value is None:
            return 1
        return max(int(value), 1)

    @field_validator("text_analytics_endpoint", "blob_public_base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        if not value:
            return None
        return str(value).rstrip("/")

    @field_validator("database_url", mode="before")
    @classmethod
    def _validate_database_url(cls, value: str | None) -> str | None:
        if not value:
            return None
        return normalize_database_url(str(value))


def load_settings(**overrides: object) -> Settings:
    """Build the settings object once at process start.

    The result is passed explicitly to ``create_app`` and from there to every
    component that needs configuration.
    """

    return Settings(**overrides)
