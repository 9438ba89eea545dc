"""
Standard exceptions for prompt-lab.

This module defines the hierarchy of exceptions raised by the evaluation
pipeline and its collaborators.
"""


class PromptLabError(Exception):
    """Base exception for all prompt-lab errors."""
    pass


class PreconditionError(PromptLabError):
    """A required identifier is missing, so no result record can be keyed."""
    pass


class EvaluationError(PromptLabError):
    """Base exception for failures inside one evaluation."""
    pass


class CompletionError(EvaluationError):
    """The completion backend returned an unusable response."""
    pass


class EmbeddingError(EvaluationError):
    """The embedding backend returned an unusable response."""
    pass


class ScoringError(EvaluationError):
    """Base exception for vector scoring failures."""
    pass


class VectorShapeError(ScoringError):
    """Vectors are missing or their lengths do not match."""
    pass


class DegenerateVectorError(ScoringError):
    """A vector has zero magnitude, so its direction is undefined."""
    pass


class RangeViolationError(ScoringError):
    """A similarity score is non-finite or outside [-1, 1]."""
    pass


class EvaluationCancelledError(EvaluationError):
    """The evaluation was cancelled before it finished."""
    pass


class ResultStoreError(PromptLabError):
    """Base exception for result persistence errors."""
    pass


class InvalidStatusTransitionError(ResultStoreError):
    """A status write would move a record out of a terminal state."""
    pass
