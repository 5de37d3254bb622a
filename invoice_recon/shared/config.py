"""Shared configuration management for the reconciliation service.

Based on Pydantic Settings v2:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_EXTRACTION_MODE=live
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
    service_name: str = Field(
        default="invoice-reconciliation",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Extraction
    extraction_mode: Literal["live", "mock"] = Field(
        default="mock",
        description="live calls the analysis model, mock returns a deterministic sample",
    )
    extraction_provider: Literal["openai", "ollama"] = Field(
        default="openai",
        description="Analysis provider used in live mode",
    )
    openai_model: str = Field(
        default="gpt-4o",
        description="Vision-capable OpenAI model identifier",
    )
    analysis_max_tokens: int = Field(
        default=2000,
        description="Maximum output tokens for a single analysis",
        gt=0,
    )
    analysis_temperature: float = Field(
        default=0.1,
        description="Sampling temperature (kept low for repeatable extraction)",
        ge=0,
        le=2,
    )
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="llama3.2-vision:11b",
        description="Vision-capable Ollama model (e.g., llama3.2-vision, qwen2.5vl)",
    )
    extraction_timeout_seconds: float = Field(
        default=60.0,
        description="Upper bound for one analysis call, retries included",
        gt=0,
    )
    extraction_max_attempts: int = Field(
        default=3,
        description="Attempts for transient provider failures",
        ge=1,
    )
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Largest accepted document upload",
        gt=0,
    )

    # Comparison
    price_tolerance_pct: Decimal = Field(
        default=Decimal("0"),
        description="Unit price overage (percent of contracted price) ignored by the price check",
        ge=0,
    )
    price_high_severity_pct: Decimal = Field(
        default=Decimal("10"),
        description="Overage percent above which a price discrepancy is high severity",
        ge=0,
    )
    price_high_severity_amount: Decimal = Field(
        default=Decimal("500.00"),
        description="Overcharge amount above which a price discrepancy is high severity",
        ge=0,
    )
    tax_tolerance: Decimal = Field(
        default=Decimal("1.00"),
        description="Absolute tax difference accepted without a discrepancy",
        ge=0,
    )
    tax_medium_severity_amount: Decimal = Field(
        default=Decimal("10.00"),
        description="Tax difference above which the discrepancy is medium severity",
        ge=0,
    )
    rounding_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        description="Tolerance for subtotal + tax == total",
        ge=0,
    )
    match_similarity_floor: float = Field(
        default=0.5,
        description="Minimum description similarity for a line item to match a pricing term",
        ge=0,
        le=1,
    )
    review_confidence_threshold: float = Field(
        default=0.7,
        description="Confidence below which a report is flagged for manual review",
        ge=0,
        le=1,
    )

    # Jobs and queue
    queue_enabled: bool = Field(
        default=False,
        description="Run jobs on the arq Redis queue instead of in-process",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the job queue and job store",
    )
    queue_max_jobs: int = Field(
        default=10,
        description="Concurrent jobs per worker",
        gt=0,
    )
    queue_job_timeout: int = Field(
        default=300,
        description="Worker-level job timeout in seconds",
        gt=0,
    )
    job_ttl_seconds: int = Field(
        default=86400,
        description="Retention of job snapshots in Redis",
        gt=0,
    )
    poll_interval_seconds: float = Field(
        default=1.0,
        description="Suggested client polling interval for job status",
        gt=0,
    )

    # Export
    export_max_records: int = Field(
        default=50_000,
        description="Largest export accepted by validation",
        gt=0,
    )
    export_default_chunk_size: int = Field(
        default=1000,
        description="Rows written per chunk when the caller does not choose",
        gt=0,
    )
    export_max_chunk_size: int = Field(
        default=10_000,
        description="Largest chunk size a caller may request",
        gt=0,
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
