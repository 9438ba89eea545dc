"""
Capability interfaces (Protocols) for prompt-lab.

The evaluation pipeline depends only on these contracts, so concrete
backends are injected at startup and replaced by test doubles in tests.
"""

from typing import Protocol, runtime_checkable

from promptlab_core.domain.models import TestResultRecord, TestResultsStatus


@runtime_checkable
class CompletionClient(Protocol):
    """Interface for text completion services."""

    async def get_completions(
        self, prompt: str, model: str, temperature: float, max_tokens: int
    ) -> list[str]:
        """
        Generate completions for a prompt.

        Args:
            prompt: The fully expanded prompt text.
            model: Completion model identifier.
            temperature: Sampling temperature.
            max_tokens: Maximum tokens per completion.

        Returns:
            list: Completion texts, in the order returned by the service.
        """
        ...


@runtime_checkable
class EmbeddingClient(Protocol):
    """Interface for embedding services."""

    async def embed(self, texts: list[str], model: str) -> list[list[float]]:
        """
        Embed texts, atomically.

        Args:
            texts: Texts to embed.
            model: Embedding model identifier.

        Returns:
            list: One vector per input text, same order, uniform dimension.
        """
        ...


@runtime_checkable
class ResultStore(Protocol):
    """Interface for persisted per-(run, test case) result records."""

    async def set_status(
        self,
        run_id: str,
        test_case_id: str,
        status: TestResultsStatus,
        message: str | None = None,
    ) -> None:
        """Persist a status (and error message for ERROR) before returning."""
        ...

    async def save_result(
        self, run_id: str, test_case_id: str, score: float, completions: list[str]
    ) -> None:
        """Persist a DONE record with its score and completions before returning."""
        ...

    async def get_result(self, run_id: str, test_case_id: str) -> TestResultRecord | None:
        """Read back one record, or None if nothing was written for the key."""
        ...
