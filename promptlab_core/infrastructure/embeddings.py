"""
Embedding Model Infrastructure

Keeps one loaded sentence-transformers model per model id so that local
embedding requests for the same model reuse it.
"""
from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer


class SentenceTransformerCache:
    """
    Lazily loaded sentence-transformers models, keyed by model id.

    Usage:
        cache = SentenceTransformerCache(device="cpu")
        model = cache.get("sentence-transformers/all-MiniLM-L6-v2")
        vectors = model.encode(["text1", "text2"])
    """

    def __init__(self, device: str = "cpu"):
        self.device = device
        self._models: dict[str, "SentenceTransformer"] = {}
        self._lock = threading.Lock()

    def get(self, model_id: str) -> "SentenceTransformer":
        """Return the model for ``model_id``, loading it on first use."""
        with self._lock:
            model = self._models.get(model_id)
            if model is None:
                from sentence_transformers import SentenceTransformer

                logger.info(f"Loading embedding model: {model_id} on {self.device}")
                model = SentenceTransformer(model_id, device=self.device)
                logger.info(
                    f"Embedding model loaded. Dimension: {model.get_sentence_embedding_dimension()}"
                )
                self._models[model_id] = model
            return model

    def encode(self, model_id: str, texts: list[str]) -> list[list[float]]:
        """Embed texts with the given model, as lists of floats."""
        if not texts:
            return []

        embeddings = self.get(model_id).encode(
            texts,
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        return [emb.tolist() for emb in embeddings]
