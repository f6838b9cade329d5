"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_LOCAL_DATA_DIR = BASE_DIR / "data"
DEFAULT_SERVERLESS_DATA_DIR = Path("/tmp/capstone")


TRUTHY_VALUES = {"1", "true", "yes", "on"}


def _is_truthy(value: str | None) -> bool:
    return bool(value and value.strip().lower() in TRUTHY_VALUES)


def _running_serverless() -> bool:
    return bool(os.getenv("VERCEL") or os.getenv("VERCEL_ENV") or _is_truthy(os.getenv("CAPSTONE_SERVERLESS")))


def _default_data_dir() -> str:
    if _running_serverless():
        return str(DEFAULT_SERVERLESS_DATA_DIR)
    return str(DEFAULT_LOCAL_DATA_DIR)


class Settings(BaseSettings):
    """Runtime configuration for the capstone document service."""

    model_config = SettingsConfigDict(env_prefix="CAPSTONE_", extra="ignore")

    app_name: str = "Capstone Documents API"
    environment: str = "development"
    log_level: str = "INFO"

    data_dir: str = Field(
        default_factory=_default_data_dir,
        validation_alias=AliasChoices("CAPSTONE_DATA_DIR", "DATA_DIR"),
    )
    sqlite_path: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CAPSTONE_SQLITE_PATH", "SQLITE_PATH"),
    )
    max_upload_mb: int = 25

    # CORS configuration
    cors_allow_origins: str = Field(
        default="*",
        validation_alias=AliasChoices("CAPSTONE_CORS_ALLOW_ORIGINS", "CORS_ALLOW_ORIGINS"),
    )

    # Object storage
    storage_backend: str = "local"
    s3_bucket: str | None = None
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_endpoint_url: str | None = None
    s3_region: str | None = None

    # Job broker
    queue_backend: str = "redis"
    redis_url: str = Field(
        default="redis://127.0.0.1:6379/0",
        validation_alias=AliasChoices("CAPSTONE_REDIS_URL", "REDIS_URL"),
    )
    queue_name: str = "originality-check"
    redis_probe_timeout_seconds: float = 2.0
    redis_connect_attempts: int = 5
    redis_backoff_base_ms: int = 200
    redis_backoff_cap_ms: int = 3000
    queue_reprobe_interval_seconds: float = 30.0
    queue_drain_timeout_seconds: float = 30.0
    queue_visibility_timeout_seconds: int = 1800

    # Originality worker
    worker_concurrency: int = 2
    task_time_limit_seconds: int = 600
    originality_stale_after_seconds: float = 3600.0
    slow_job_seconds: float = 20.0

    # Title duplicate detection
    title_similarity_threshold: float = 0.65
    title_weight: float = 0.7
    keyword_weight: float = 0.3

    # Originality scoring
    originality_min_text_chars: int = 50
    originality_corpus_limit: int = 100
    originality_min_match_percentage: int = 5
    originality_max_matches: int = 10
    originality_shingle_size: int = 3
    originality_max_tokens: int = 250

    @model_validator(mode="after")
    def _set_sqlite_path(self) -> "Settings":
        if not self.sqlite_path:
            self.sqlite_path = str(Path(self.data_dir) / "capstone.db")
        return self

    @property
    def sqlite_url(self) -> str:
        return f"sqlite:///{self.sqlite_path}"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @property
    def cors_origin_list(self) -> list[str]:
        if self.cors_allow_origins.strip() == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]


settings = Settings()
