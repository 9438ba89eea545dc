"""Shared fixtures for the prompt-lab test suite."""

import pytest

from promptlab_core.domain.models import PromptCandidate, PromptTestResults, TestCase
from promptlab_core.runtime.retry import RetryPolicy


@pytest.fixture
def sample_test_case() -> TestCase:
    return TestCase.model_validate(
        {
            "id": "case-1",
            "bio": {"name": "Alice", "age": 34, "aboutMe": "Loves hiking and jazz"},
            "context": {
                "tone": "friendly",
                "setting": "coffee shop",
                "conversationType": "small talk",
            },
            "utterance": "What are you up to this weekend?",
            "goodCompletions": [
                "Probably going on a hike, you?",
                "Heading to a jazz show on Saturday!",
            ],
        }
    )


@pytest.fixture
def sample_prompt() -> PromptCandidate:
    return PromptCandidate(
        id="prompt-1",
        prompt=(
            "You are {name}, {age}. About you: {about_me}. "
            "This is {conversation_type} in a {setting}, keep it {tone}. "
            "Reply to: {utterance}"
        ),
    )


@pytest.fixture
def sample_run() -> PromptTestResults:
    return PromptTestResults.model_validate(
        {
            "id": "run-1",
            "promptId": "prompt-1",
            "llmModel": "gpt-4o-mini",
            "embeddingsModel": "sentence-transformers/all-MiniLM-L6-v2",
            "temperature": 0.7,
            "maxTokens": 64,
        }
    )


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Production attempt budget without the wait between attempts."""
    return RetryPolicy(max_attempts=4, delay_seconds=0)
