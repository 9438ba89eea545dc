"""
CompletionClient backed by the OpenAI chat completions API.

The expanded prompt is sent as a single user message and every returned
choice becomes one completion. SDK failures are converted into ServiceErrors
so that retry logs and stored error messages carry a stable code.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import openai
from loguru import logger

from promptlab_core.domain.exceptions import CompletionError
from promptlab_core.runtime.errors import ErrorCode, RetryableError, error_for_status

if TYPE_CHECKING:
    from openai import AsyncOpenAI


class OpenAICompletionClient:
    """
    Completion service using OpenAI (or any OpenAI-compatible endpoint).

    Usage:
        client = OpenAICompletionClient(api_key=settings.OPENAI_API_KEY)
        completions = await client.get_completions(prompt, "gpt-4o-mini", 0.7, 256)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        completions_per_prompt: int = 1,
        client: "AsyncOpenAI | None" = None,
    ):
        """
        Initialize the completion client.

        Args:
            api_key: OpenAI API key.
            base_url: Optional custom API base URL.
            completions_per_prompt: Number of choices requested per call.
            client: Pre-built AsyncOpenAI client (skips construction).
        """
        if completions_per_prompt < 1:
            raise ValueError("completions_per_prompt must be >= 1")

        self._api_key = api_key
        self._base_url = base_url
        self.completions_per_prompt = completions_per_prompt
        self._client = client

    def _get_client(self) -> "AsyncOpenAI":
        if self._client is None:
            if not self._api_key:
                raise ValueError(
                    "OPENAI_API_KEY not configured. "
                    "Set it in .env or environment variables."
                )
            self._client = openai.AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)
            logger.info("OpenAI client initialized")
        return self._client

    async def get_completions(
        self, prompt: str, model: str, temperature: float, max_tokens: int
    ) -> list[str]:
        """
        Generate completions for a prompt.

        Returns:
            list: One text per returned choice, ordered by choice index.

        Raises:
            RetryableError: On timeouts, connection errors, 429 and 5xx.
            TerminalError: On other API errors (bad request, auth).
            CompletionError: If the response has no usable text.
        """
        client = self._get_client()

        logger.debug(
            f"Requesting {self.completions_per_prompt} completion(s) from {model} "
            f"(temperature={temperature}, max_tokens={max_tokens})"
        )

        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
                n=self.completions_per_prompt,
            )
        except openai.APITimeoutError as e:
            raise RetryableError(
                code=ErrorCode.TIMEOUT,
                message_safe=f"Completion request to {model} timed out",
                cause=e,
            ) from e
        except openai.APIConnectionError as e:
            raise RetryableError(
                code=ErrorCode.CONNECTION_ERROR,
                message_safe="Failed to connect to the completion service",
                message_debug=str(e),
                cause=e,
            ) from e
        except openai.APIStatusError as e:
            raise error_for_status(
                e.status_code,
                f"Completion request to {model} failed with status {e.status_code}",
                body=str(e),
            ) from e

        choices = sorted(response.choices or [], key=lambda choice: choice.index)
        completions = [choice.message.content for choice in choices]

        if not completions or any(not text for text in completions):
            raise CompletionError(f"Model {model} returned an empty completion")

        logger.debug(f"Received {len(completions)} completion(s) from {model}")
        return completions

    async def close(self) -> None:
        """Release the underlying HTTP connections."""
        if self._client is not None:
            await self._client.close()
            self._client = None
