"""
Application configuration management using Pydantic Settings.
Loads environment variables and provides centralized configuration.
"""
from typing import List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Metadata
    APP_NAME: str = "CloudNest Storage Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"

    # Database
    DATABASE_URL: str = Field("sqlite:///./cloudnest.db")

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Quota
    DEFAULT_QUOTA_BYTES: int = 5 * 1024 * 1024 * 1024  # 5GB (free plan)
    QUOTA_WARNING_THRESHOLD: float = 0.9
    QUOTA_COUNT_SOFT_DELETED: bool = True

    # Upload admission policy
    MAX_FILE_SIZE: int = 100 * 1024 * 1024  # 100MB
    ALLOWED_MIME_TYPES: List[str] = []  # empty = allow all

    # Folder tree limits
    MAX_FOLDER_DEPTH: int = 10
    MAX_PATH_LENGTH: int = 1000

    # Backend health checking
    HEALTH_HEALTHY_THRESHOLD: int = 2
    HEALTH_UNHEALTHY_THRESHOLD: int = 3
    HEALTH_CHECK_INTERVAL_SECONDS: int = 60  # 0 disables the scheduler
    HEALTH_STALE_AFTER_SECONDS: int = 300
    HEALTH_PROBE_TIMEOUT_FACTOR: float = 0.25
    HEALTH_PROBE_MAX_TIMEOUT_SECONDS: float = 10.0
    HEALTH_PROBE_CONCURRENCY: int = 4

    # API Host
    API_HOST: str = Field("0.0.0.0")
    API_PORT: int = Field(8000)

    # Logging
    LOG_LEVEL: str = Field("INFO")
    LOG_FORMAT: str = Field("text")  # "text" or "json"

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+psycopg2://", "sqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v

    @field_validator("QUOTA_WARNING_THRESHOLD", "HEALTH_PROBE_TIMEOUT_FACTOR")
    @classmethod
    def validate_ratio(cls, v):
        """Ratios must lie in (0, 1]."""
        if not 0 < v <= 1:
            raise ValueError("ratio must be in (0, 1]")
        return v

    @field_validator("HEALTH_HEALTHY_THRESHOLD", "HEALTH_UNHEALTHY_THRESHOLD", "HEALTH_PROBE_CONCURRENCY")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("text", "json"):
            raise ValueError("LOG_FORMAT must be 'text' or 'json'")
        return v


# Global settings instance
settings = Settings()
