"""
Vector scoring for evaluations.

Generated and reference completions are each reduced to one mean embedding,
and the two means are compared with cosine similarity.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from promptlab_core.domain.exceptions import (
    DegenerateVectorError,
    RangeViolationError,
    VectorShapeError,
)


def average_of_vectors(vectors: Sequence[Sequence[float]]) -> list[float]:
    """
    Element-wise arithmetic mean of equal-length vectors.

    Raises:
        VectorShapeError: If there are no vectors, a vector is empty, or
            lengths differ.
    """
    if len(vectors) == 0:
        raise VectorShapeError("Cannot average an empty set of vectors")

    lengths = {len(vector) for vector in vectors}
    if len(lengths) != 1:
        raise VectorShapeError(f"Vectors have mismatched lengths: {sorted(lengths)}")
    if 0 in lengths:
        raise VectorShapeError("Cannot average zero-length vectors")

    matrix = np.asarray(vectors, dtype=np.float64)
    return matrix.mean(axis=0).tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity dot(a, b) / (|a| * |b|).

    Raises:
        VectorShapeError: If the vectors are empty or differ in length.
        DegenerateVectorError: If either vector has zero magnitude.
    """
    if len(a) != len(b) or len(a) == 0:
        raise VectorShapeError(
            f"Cannot compare vectors of lengths {len(a)} and {len(b)}"
        )

    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        raise DegenerateVectorError("Cannot compute cosine similarity of a zero-magnitude vector")

    return float(np.dot(vec_a, vec_b) / (norm_a * norm_b))


def validate_score(score: float, tolerance: float = 1e-9) -> float:
    """
    Check that a similarity score is finite and within [-1, 1].

    Floating point error can push the similarity of (anti-)parallel vectors a
    hair past the bound; values within ``tolerance`` are clamped.

    Raises:
        RangeViolationError: If the score is non-finite or out of range.
    """
    if not math.isfinite(score):
        raise RangeViolationError(f"Cosine similarity score is not finite: {score}")
    if score > 1.0 + tolerance or score < -1.0 - tolerance:
        raise RangeViolationError(f"Cosine similarity score is out of range [-1, 1]: {score}")
    return min(1.0, max(-1.0, score))


def score_embeddings(
    generated: Sequence[Sequence[float]], reference: Sequence[Sequence[float]]
) -> float:
    """Cosine similarity between the mean generated and mean reference embeddings."""
    return cosine_similarity(average_of_vectors(generated), average_of_vectors(reference))
