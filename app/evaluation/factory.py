"""
Factory for creating evaluation components from settings.

Concrete backends are chosen here, once, and injected into the evaluator.
"""

from __future__ import annotations

from loguru import logger

from app.evaluation.services.completion import OpenAICompletionClient
from app.evaluation.services.embedding import HuggingFaceEmbeddingClient, LocalEmbeddingClient
from app.evaluation.services.orchestrator import PromptEvaluator
from app.evaluation.services.result_store import PostgresResultStore
from promptlab_core.config import Settings, settings
from promptlab_core.domain.interfaces import CompletionClient, EmbeddingClient, ResultStore
from promptlab_core.infrastructure.postgres import Database
from promptlab_core.runtime.retry import RetryPolicy


def get_completion_client(config: Settings = settings) -> CompletionClient:
    """Create the OpenAI completion client."""
    return OpenAICompletionClient(
        api_key=config.OPENAI_API_KEY,
        base_url=config.OPENAI_BASE_URL,
        completions_per_prompt=config.COMPLETIONS_PER_PROMPT,
    )


def get_embedding_client(config: Settings = settings) -> EmbeddingClient:
    """
    Create the embedding client for the configured backend.

    Args:
        config: Settings; EMBEDDING_BACKEND is "huggingface" or "local".
    """
    if config.EMBEDDING_BACKEND == "local":
        logger.info(f"Using local sentence-transformers embeddings on {config.EMBEDDING_DEVICE}")
        return LocalEmbeddingClient(device=config.EMBEDDING_DEVICE)

    return HuggingFaceEmbeddingClient(
        api_token=config.HUGGINGFACE_API_TOKEN,
        base_url=config.HUGGINGFACE_INFERENCE_URL,
        timeout=config.HTTP_TIMEOUT_SECONDS,
    )


def get_result_store(database: Database, config: Settings = settings) -> ResultStore:
    """Create the PostgreSQL result store on a shared database handle."""
    return PostgresResultStore(database, table=config.RESULTS_TABLE)


def get_retry_policies(config: Settings = settings) -> tuple[RetryPolicy, RetryPolicy]:
    """Return (completion policy, embedding policy)."""
    completion_policy = RetryPolicy(
        max_attempts=config.COMPLETION_MAX_ATTEMPTS,
        delay_seconds=config.COMPLETION_RETRY_DELAY_SECONDS,
        attempt_timeout=config.ATTEMPT_TIMEOUT_SECONDS,
    )
    embedding_policy = RetryPolicy(
        max_attempts=config.EMBEDDING_MAX_ATTEMPTS,
        delay_seconds=config.EMBEDDING_RETRY_DELAY_SECONDS,
        attempt_timeout=config.ATTEMPT_TIMEOUT_SECONDS,
    )
    return completion_policy, embedding_policy


def get_evaluator(
    database: Database | None = None,
    config: Settings = settings,
    result_store: ResultStore | None = None,
) -> PromptEvaluator:
    """
    Create a fully configured PromptEvaluator.

    Args:
        database: Shared database handle (built from POSTGRES_DSN if omitted).
        config: Settings to read backends and retry budgets from.
        result_store: Overrides the PostgreSQL store (e.g. in-memory).
    """
    if result_store is None:
        result_store = get_result_store(database or Database(config.POSTGRES_DSN), config)

    completion_policy, embedding_policy = get_retry_policies(config)

    return PromptEvaluator(
        completion_client=get_completion_client(config),
        embedding_client=get_embedding_client(config),
        result_store=result_store,
        completion_policy=completion_policy,
        embedding_policy=embedding_policy,
    )
