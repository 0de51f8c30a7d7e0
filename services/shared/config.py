"""Shared configuration management for the invoice engine.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="invoice-transcoding-engine",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Generation defaults
    default_currency: str = Field(
        default="EUR",
        description="Currency applied when an invoice carries none",
    )
    default_unit_code: str = Field(
        default="C62",
        description="UN/ECE Rec 20 unit code used when a line has none ('one')",
    )

    # Validation
    monetary_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        description="Tolerance for monetary identity checks",
    )
    external_validation_enabled: bool = Field(
        default=False,
        description="Run the external CLI validator after internal validation",
    )
    external_validator_path: str = Field(
        default="",
        description="Path to the external validator executable",
    )
    external_validator_scenarios: str = Field(
        default="",
        description="Path to the scenarios descriptor passed to the external validator",
    )
    external_validator_timeout: float = Field(
        default=60.0,
        description="Timeout in seconds for one external validator run",
    )

    # Extraction service (opaque collaborator)
    extraction_service_url: str = Field(
        default="http://localhost:8081",
        description="Base URL of the invoice extraction service",
    )
    extraction_timeout: float = Field(
        default=120.0,
        description="HTTP timeout for extraction calls in seconds",
    )
    extraction_max_retries: int = Field(
        default=3,
        ge=1,
        description="Maximum extraction attempts per segment (including the first)",
    )
    extraction_backoff_initial: float = Field(
        default=1.0,
        description="Initial backoff in seconds between extraction attempts",
    )
    extraction_backoff_max: float = Field(
        default=30.0,
        description="Upper bound for a single backoff wait in seconds",
    )

    # Batch processing
    batch_concurrency: int = Field(
        default=5,
        ge=1,
        description="Number of segments extracted concurrently per job",
    )
    max_pages_for_boundary_detection: int = Field(
        default=50,
        description="PDFs with more pages skip boundary detection and are treated as one invoice",
    )
    boundary_min_confidence: float = Field(
        default=0.5,
        ge=0,
        le=1,
        description="Boundary layouts below this confidence fall back to a single invoice",
    )
    batch_max_file_size_mb: int = Field(
        default=25,
        description="Maximum size of a single uploaded file",
    )
    batch_max_total_size_mb: int = Field(
        default=500,
        description="Maximum combined size of a batch upload",
    )
    batch_max_files: int = Field(
        default=100,
        description="Maximum number of files in one batch (after ZIP expansion)",
    )
    stale_pending_seconds: float = Field(
        default=10.0,
        description="Pending jobs older than this are re-enqueued by the recovery task",
    )
    stuck_processing_seconds: float = Field(
        default=600.0,
        description="Processing jobs not updated for this long are reset to pending",
    )
    job_ttl_seconds: int = Field(
        default=86400,
        description="Retention of batch job records in Redis",
    )

    # Queue configuration (arq / Redis)
    queue_enabled: bool = Field(
        default=False,
        description="Enable async batch processing via Redis queue",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    queue_max_jobs: int = Field(
        default=10,
        description="Maximum concurrent jobs per worker",
    )
    queue_job_timeout: int = Field(
        default=300,
        description="Job timeout in seconds",
    )

    # Credits
    credit_backend: Literal["memory", "redis"] = Field(
        default="redis",
        description="Credit ledger backend: memory (single process), redis (shared)",
    )
    credit_key_ttl_seconds: int = Field(
        default=7 * 86400,
        description="Retention of applied credit idempotency keys; keep above job_ttl_seconds",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
