"""
Configuration management with Pydantic Settings
Loads from .env file with validation and defaults
"""

from datetime import time
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with validation"""

    # Environment
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./meetflow.db",
        description="Database connection URL"
    )

    # Security
    secret_key: str = Field(..., description="JWT secret used to verify caller tokens")
    encryption_key: Optional[str] = Field(
        None,
        description="Fernet key for dialer access tokens at rest"
    )
    cron_secret: Optional[str] = Field(None, description="Shared secret for the retention trigger")

    # Object storage
    storage_backend: str = Field(default="local", description="local or supabase")
    local_storage_path: str = Field(
        default="/tmp/meetflow/recordings",
        description="Root directory for the local storage backend"
    )
    supabase_url: Optional[str] = Field(None, description="Supabase project URL")
    supabase_service_key: Optional[str] = Field(None, description="Supabase service role key")
    recordings_bucket: str = Field(default="call-recordings", description="Recordings bucket")
    signed_url_ttl_seconds: int = Field(default=3600, description="Signed URL lifetime")

    # Recording acquisition
    max_recording_bytes: int = Field(
        default=100 * 1024 * 1024,
        description="Content-length ceiling for downloaded recordings"
    )
    http_timeout_seconds: float = Field(default=30.0, description="Timeout for provider and storage calls")
    http_max_retries: int = Field(default=3, description="Retries for retryable I/O failures")
    http_retry_delay_seconds: float = Field(default=1.0, description="Initial backoff delay")

    # Scoring and transcription
    openai_api_key: Optional[str] = Field(None, description="OpenAI API Key")
    openai_model: str = Field(default="gpt-4o", description="Model used for qualification scoring")
    transcription_model: str = Field(default="whisper-1", description="Model used for transcription")
    scoring_timeout_seconds: float = Field(default=60.0, description="Timeout for a scoring call")
    default_qualification_threshold: int = Field(default=70, description="Fallback qualification threshold")
    enable_transcription: bool = Field(default=False, description="Transcribe imported recordings")
    auto_score_after_transcription: bool = Field(
        default=False,
        description="Score recordings as soon as their transcript is ready"
    )

    # Retention
    recording_retention_days: int = Field(default=30, description="Days before a recording is purged")
    retention_batch_size: int = Field(default=100, description="Storage deletions per batch")
    enable_retention_scheduler: bool = Field(default=False, description="Run retention in-process")
    retention_run_time: time = Field(default=time(hour=2, minute=0), description="Daily run time")

    # Qualification state machine
    transition_max_attempts: int = Field(default=3, description="Optimistic lock retries per transition")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        if v not in ["development", "production", "testing"]:
            raise ValueError("Environment must be development, production, or testing")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        if v not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("Invalid log level")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v):
        if v not in ["local", "supabase"]:
            raise ValueError("Storage backend must be local or supabase")
        return v

    @field_validator("default_qualification_threshold")
    @classmethod
    def validate_threshold(cls, v):
        if not 0 <= v <= 100:
            raise ValueError("Qualification threshold must be between 0 and 100")
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    model_config = {
        "extra": "ignore",  # Ignore extra fields from .env
        "env_file": ".env",
        "case_sensitive": False
    }


@lru_cache
def get_settings() -> Settings:
    """Get application settings"""
    return Settings()
