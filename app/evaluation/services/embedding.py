"""
EmbeddingClient implementations.

- HuggingFaceEmbeddingClient: hosted Hugging Face Inference API
  (feature-extraction pipeline) over a pooled httpx client.
- LocalEmbeddingClient: sentence-transformers models run in-process.

Both return exactly one vector per input text, in input order, with a uniform
dimension; anything else fails the whole call.
"""

from __future__ import annotations

import asyncio
from typing import Any

import numpy as np
from loguru import logger

from promptlab_core.domain.exceptions import EmbeddingError
from promptlab_core.infrastructure.embeddings import SentenceTransformerCache
from promptlab_core.runtime.http_client import ServiceHttpClient


def validate_embeddings(
    texts: list[str], embeddings: list[list[float]], model: str
) -> list[list[float]]:
    """
    Check that there is one non-empty vector per text and one dimension.

    Raises:
        EmbeddingError: If the response does not satisfy the contract.
    """
    if len(embeddings) != len(texts):
        raise EmbeddingError(
            f"Model {model} returned {len(embeddings)} embeddings for {len(texts)} texts"
        )

    dimensions = {len(vector) for vector in embeddings}
    if len(dimensions) > 1:
        raise EmbeddingError(f"Model {model} returned mixed dimensions: {sorted(dimensions)}")
    if 0 in dimensions:
        raise EmbeddingError(f"Model {model} returned an empty embedding")

    return embeddings


def _to_sentence_vector(item: Any, model: str) -> list[float]:
    """Reduce one feature-extraction output to a single vector."""
    try:
        array = np.asarray(item, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise EmbeddingError(f"Model {model} returned a malformed embedding") from e

    # Token-level features are mean-pooled into one sentence vector
    while array.ndim > 1:
        array = array.mean(axis=0)

    if array.ndim != 1:
        raise EmbeddingError(f"Model {model} returned a scalar instead of a vector")
    return array.tolist()


class HuggingFaceEmbeddingClient:
    """
    Embedding service using the Hugging Face Inference API.

    Usage:
        client = HuggingFaceEmbeddingClient(api_token=settings.HUGGINGFACE_API_TOKEN)
        vectors = await client.embed(["text1", "text2"], "sentence-transformers/all-MiniLM-L6-v2")
    """

    def __init__(
        self,
        api_token: str | None = None,
        base_url: str = "https://api-inference.huggingface.co/pipeline/feature-extraction",
        timeout: float = 30.0,
        http_client: ServiceHttpClient | None = None,
    ):
        self._http = http_client or ServiceHttpClient(
            base_url=base_url,
            timeout=timeout,
            api_token=api_token,
        )

    async def embed(self, texts: list[str], model: str) -> list[list[float]]:
        """
        Embed texts with a hosted model.

        Raises:
            RetryableError: On timeouts, connection errors, 429 and 5xx
                (including "model is loading").
            TerminalError: On other HTTP errors.
            EmbeddingError: If the response does not match the inputs.
        """
        if not texts:
            return []

        logger.debug(f"Requesting {len(texts)} embeddings from {model}")

        response = await self._http.post(
            model,
            json={"inputs": texts, "options": {"wait_for_model": True}},
        )

        try:
            payload = response.json()
        except ValueError as e:
            raise EmbeddingError(f"Model {model} returned a non-JSON response") from e

        if isinstance(payload, dict):
            raise EmbeddingError(
                f"Model {model} returned an error payload: {payload.get('error', payload)}"
            )
        if not isinstance(payload, list):
            raise EmbeddingError(f"Model {model} returned an unexpected payload")

        embeddings = [_to_sentence_vector(item, model) for item in payload]
        return validate_embeddings(texts, embeddings, model)

    async def close(self) -> None:
        await self._http.close()


class LocalEmbeddingClient:
    """
    Embedding service running sentence-transformers models in-process.

    Encoding is CPU-bound, so it runs in a worker thread to keep sibling
    evaluations on the event loop responsive.
    """

    def __init__(self, cache: SentenceTransformerCache | None = None, device: str = "cpu"):
        self._cache = cache or SentenceTransformerCache(device=device)

    async def embed(self, texts: list[str], model: str) -> list[list[float]]:
        if not texts:
            return []

        try:
            embeddings = await asyncio.to_thread(self._cache.encode, model, texts)
        except Exception as e:
            logger.error(f"Failed to generate embeddings with {model}: {e}")
            raise EmbeddingError(f"Failed to generate embeddings: {e}") from e

        return validate_embeddings(texts, embeddings, model)
