"""Configuration management for the identity verification service."""

from typing import Optional
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )

    # Server configuration
    port: int = 8000
    host: str = "0.0.0.0"

    # Storage configuration
    storage_backend: str = "supabase"
    supabase_url: str = ""
    supabase_key: str = ""

    # Verification settings
    face_similarity_threshold: float = 80.0
    biometric_verifier_url: Optional[str] = None
    biometric_verifier_timeout: float = 10.0
    verifier_callback_secret: Optional[str] = None

    # Notification delivery
    notification_webhook_url: Optional[str] = None
    notification_timeout: float = 5.0

    # Per-user write lock
    lock_timeout_seconds: float = 5.0
    lock_retry_attempts: int = 3

    # Audit log
    audit_write_retries: int = 3
    audit_page_size_max: int = 500

    # Logging configuration
    log_level: str = "INFO"
    otlp_endpoint: Optional[str] = None

    @field_validator('storage_backend')
    @classmethod
    def validate_storage_backend(cls, v):
        v = v.lower()
        if v not in ("supabase", "memory"):
            raise ValueError('STORAGE_BACKEND must be "supabase" or "memory"')
        return v

    @field_validator('face_similarity_threshold')
    @classmethod
    def validate_face_similarity_threshold(cls, v):
        if not 0.0 <= v <= 100.0:
            raise ValueError('FACE_SIMILARITY_THRESHOLD must be between 0 and 100')
        return v

    @field_validator('lock_retry_attempts', 'audit_write_retries')
    @classmethod
    def validate_attempts(cls, v):
        if v < 1:
            raise ValueError('retry attempts must be at least 1')
        return v

    @model_validator(mode='after')
    def validate_supabase_credentials(self):
        if self.storage_backend == "supabase":
            if not self.supabase_url:
                raise ValueError('SUPABASE_URL environment variable is required')
            if not self.supabase_key:
                raise ValueError('SUPABASE_KEY environment variable is required')
        return self


# Global settings instance
settings = Settings()
