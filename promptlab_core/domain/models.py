"""
Domain models for prompt evaluation.

This module defines the records the evaluation pipeline reads and writes:
- TestCase: A persona/context fixture with an utterance and reference completions
- PromptCandidate: A prompt template under evaluation
- PromptTestResults: A run evaluating one prompt across many test cases
- TestResultRecord: The persisted status/score of one (run, test case) pair

Field names are snake_case; the camelCase names used by the stored records
(e.g. ``goodCompletions``, ``llmModel``) are accepted and produced as aliases.
"""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class RecordModel(BaseModel):
    """Base model accepting both camelCase aliases and field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class TestResultsStatus(str, Enum):
    """Lifecycle of one test case evaluation within a run."""

    __test__ = False

    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self is not TestResultsStatus.IN_PROGRESS


class Bio(RecordModel):
    name: str = Field(min_length=1)
    age: int = Field(gt=0)
    about_me: str = Field(min_length=1)


class Context(RecordModel):
    tone: str = Field(min_length=1)
    setting: str = Field(min_length=1)
    conversation_type: str = Field(min_length=1)


class TestCase(RecordModel):
    """
    A fixture evaluated against prompt candidates.

    Immutable once created. ``id`` is only assigned once the test case has
    been persisted by the fixture catalog.
    """

    __test__ = False

    id: str | None = None
    date_created_utc: int | None = None
    bio: Bio
    context: Context
    utterance: str = Field(min_length=1)
    good_completions: list[str] = Field(min_length=1)

    @field_validator("good_completions")
    @classmethod
    def _completions_not_blank(cls, value: list[str]) -> list[str]:
        if any(not completion.strip() for completion in value):
            raise ValueError("good completions must not be blank")
        return value


class PromptCandidate(RecordModel):
    """A prompt template containing placeholder tokens such as ``{name}``."""

    id: str | None = None
    date_created_utc: int | None = None
    prompt: str


class TestResultRecord(RecordModel):
    """
    Persisted outcome of one test case within a run.

    Presence rules:
    - error_message is set iff status is ERROR
    - cosine_similarity_score and llm_completions are set iff status is DONE
    - a DONE score lies in [-1, 1]
    """

    __test__ = False

    status: TestResultsStatus
    error_message: str | None = None
    cosine_similarity_score: float | None = None
    llm_completions: list[str] | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _check_presence(self) -> "TestResultRecord":
        is_done = self.status is TestResultsStatus.DONE
        is_error = self.status is TestResultsStatus.ERROR

        if is_error != (self.error_message is not None):
            raise ValueError("error_message must be set exactly when status is ERROR")
        if is_done != (self.cosine_similarity_score is not None):
            raise ValueError("cosine_similarity_score must be set exactly when status is DONE")
        if is_done != (self.llm_completions is not None):
            raise ValueError("llm_completions must be set exactly when status is DONE")

        score = self.cosine_similarity_score
        if score is not None and not (math.isfinite(score) and -1.0 <= score <= 1.0):
            raise ValueError(f"cosine_similarity_score out of range [-1, 1]: {score}")
        return self


class PromptTestResults(RecordModel):
    """
    A run: one prompt candidate evaluated across many test cases with shared
    model and generation parameters.
    """

    id: str | None = None
    prompt_id: str | None = None
    date_created_utc: int | None = None
    llm_model: str = Field(min_length=1)
    embeddings_model: str = Field(min_length=1)
    temperature: float = Field(ge=0.0, le=2.0)
    max_tokens: int = Field(ge=1)
    test_results: dict[str, TestResultRecord] = Field(default_factory=dict)


class EvaluationReceipt(RecordModel):
    """
    Returned by the orchestrator once it has finished attempting an evaluation.

    It does not carry the evaluation outcome: read the result store for that.
    ``recorded`` is False only when no terminal status could be persisted.
    """

    run_id: str
    test_case_id: str
    recorded: bool
