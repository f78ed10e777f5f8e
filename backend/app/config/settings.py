"""
Application settings with validation and type safety
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Validated configuration settings for production deployment
    All settings can be overridden via environment variables
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        # Allow extra fields for forward compatibility
        extra="ignore",
    )

    # GEMINI CONFIGURATION (REQUIRED)
    gemini_api_key: str = Field(
        ...,
        description="Google Gemini API key",
        min_length=1
    )

    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini REST API base URL"
    )

    gemini_analysis_model: str = Field(
        default="gemini-1.5-flash-latest",
        description="Model used for per-query analysis"
    )

    gemini_generation_model: str = Field(
        default="gemini-1.5-flash-latest",
        description="Model used for query generation"
    )

    # RETRY CONFIGURATION
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the first attempt for each Gemini call"
    )

    initial_delay_ms: int = Field(
        default=1000,
        gt=0,
        description="Backoff delay after the first failure"
    )

    max_delay_ms: int = Field(
        default=30000,
        gt=0,
        description="Backoff delay cap"
    )

    backoff_multiplier: float = Field(
        default=2.0,
        gt=1.0,
        description="Backoff growth factor per attempt"
    )

    request_timeout_seconds: float = Field(
        default=60.0,
        ge=1.0,
        le=300.0,
        description="Timeout for a single Gemini attempt"
    )

    # RATE LIMITS (Gemini Flash free tier)
    requests_per_minute: int = Field(default=15, gt=0)
    tokens_per_minute: int = Field(default=1_000_000, gt=0)
    requests_per_day: int = Field(default=1500, gt=0)

    # BATCH CONFIGURATION
    analysis_batch_size: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Queries analyzed concurrently per batch"
    )

    inter_batch_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=10.0,
        description="Pause between analysis batches"
    )

    max_supplementary_generations: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Extra generation calls when a batch comes back short"
    )

    # MONITORING CONFIGURATION
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking"
    )

    environment: str = Field(
        default="production",
        description="Deployment environment (development/staging/production)"
    )

    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    # LOGGING CONFIGURATION
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG/INFO/WARNING/ERROR)"
    )

    log_format: str = Field(
        default="json",
        description="Log format (json/text)"
    )

    # VALIDATION
    @field_validator("gemini_api_key")
    @classmethod
    def validate_gemini_key(cls, v):
        """Reject blank or placeholder keys"""
        if not v or not v.strip():
            raise ValueError("GEMINI_API_KEY is required")
        if v in ("your_api_key_here", "your-api-key-here"):
            raise ValueError(
                "GEMINI_API_KEY contains a placeholder value. "
                "Get a key from https://aistudio.google.com/app/apikey"
            )
        return v.strip()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Ensure valid environment name"""
        valid_environments = {"development", "staging", "production", "test"}
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Ensure valid log level"""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v.lower() not in {"json", "text"}:
            raise ValueError("Log format must be 'json' or 'text'")
        return v.lower()

    @model_validator(mode="after")
    def validate_delays(self):
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        return self


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process"""
    return Settings()
