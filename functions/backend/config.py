"""
Configuration and settings for the SEO automation backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service and its workers."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    public_base_url: str = Field(default="http://localhost:8000")

    # Database (the managed Postgres behind the data store)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # Managed auth provider
    supabase_url: Optional[str] = Field(default=None, env="SUPABASE_URL")
    supabase_service_role_key: Optional[str] = Field(
        default=None, env="SUPABASE_SERVICE_ROLE_KEY"
    )

    # Completion service
    completion_provider: Literal["openai", "gemini"] = Field(
        default="openai", env="COMPLETION_PROVIDER"
    )
    # Unset means each provider's own default model.
    completion_model: Optional[str] = Field(default=None, env="COMPLETION_MODEL")
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY")
    gemini_api_key: Optional[str] = Field(default=None, env="GEMINI_API_KEY")

    # S3-compatible storage for site backups
    backup_bucket: Optional[str] = Field(default=None, env="BACKUP_BUCKET")
    backup_endpoint: Optional[str] = Field(default=None, env="BACKUP_ENDPOINT")
    backup_region: Optional[str] = Field(default=None, env="BACKUP_REGION")
    aws_access_key_id: Optional[str] = Field(
        default=None, env="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )
    backup_url_ttl_seconds: int = Field(default=7 * 24 * 3600)

    # Alert queue (Redis)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    alert_queue_key: str = Field(default="seo:alerts", env="ALERT_QUEUE_KEY")

    # Bearer key for cron and service triggers (/automated-rescan, /send-scan-alert)
    internal_api_key: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, env="USE_IN_MEMORY_BACKENDS"
    )

    # Rescan scheduler
    scheduler_lease_seconds: int = Field(default=900, env="SCHEDULER_LEASE_SECONDS")
    scheduler_max_failures: int = Field(default=5, env="SCHEDULER_MAX_FAILURES")
    scheduler_retry_base_seconds: int = Field(
        default=3600, env="SCHEDULER_RETRY_BASE_SECONDS"
    )

    # Outbound HTTP
    http_timeout_seconds: float = Field(default=30.0, env="HTTP_TIMEOUT_SECONDS")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
