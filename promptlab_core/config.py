"""
Unified configuration for prompt-lab services.

Settings are loaded from the project's .env file and can be overridden by
environment variables. Generation parameters (model names, temperature,
max tokens) are not configured here: they come from each run record.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Unified settings for the evaluation pipeline and its workers.
    """

    # Service identification
    SERVICE_NAME: str = "prompt-lab"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL (result store)
    POSTGRES_DSN: str = "host=localhost port=5432 dbname=postgres user=postgres password=postgres"
    RESULTS_TABLE: str = "test_case_results"

    # Completion backend (OpenAI)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str | None = None
    COMPLETIONS_PER_PROMPT: int = 1

    # Embedding backend
    EMBEDDING_BACKEND: Literal["huggingface", "local"] = "huggingface"
    HUGGINGFACE_API_TOKEN: str = ""
    HUGGINGFACE_INFERENCE_URL: str = "https://api-inference.huggingface.co/pipeline/feature-extraction"
    EMBEDDING_DEVICE: str = "cpu"

    # Retry budgets
    COMPLETION_MAX_ATTEMPTS: int = 4
    COMPLETION_RETRY_DELAY_SECONDS: float = 5.0
    EMBEDDING_MAX_ATTEMPTS: int = 4
    EMBEDDING_RETRY_DELAY_SECONDS: float = 5.0
    ATTEMPT_TIMEOUT_SECONDS: float | None = 60.0
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Telemetry (OpenTelemetry)
    ENABLE_TELEMETRY: bool = False
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    OTEL_SERVICE_NAME: str | None = None
    # First /metrics port; each pool process serves on METRICS_PORT + its pool index
    METRICS_PORT: int | None = None

    # Redis / Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore"
    )


# Global settings instance
settings = Settings()  # type: ignore
