"""
Bounded retry with a fixed inter-attempt delay.

Every failure of the wrapped operation is retried the same way: there is no
exponential growth, no jitter and no distinction between retryable and terminal
errors. Each attempt may be bounded by a timeout that counts toward the attempt
budget, and a cancellation event aborts pending retries.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from loguru import logger
from pydantic import BaseModel, Field

from promptlab_core.domain.exceptions import EvaluationCancelledError

from .errors import ErrorCode, RetryableError

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Total number of attempts (including the first one).
        delay_seconds: Fixed wait between a failed attempt and the next one.
        attempt_timeout: Optional bound in seconds for a single attempt.
    """

    max_attempts: int = Field(default=4, ge=1)
    delay_seconds: float = Field(default=5.0, ge=0)
    attempt_timeout: float | None = Field(default=None, gt=0)

    model_config = {"frozen": True}


# Used for both completion and embedding calls
DEFAULT_RETRY_POLICY = RetryPolicy()


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    delay_seconds: float,
    *,
    attempt_timeout: float | None = None,
    cancel_event: asyncio.Event | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
    description: str | None = None,
) -> T:
    """Run an async operation, retrying on any failure.

    Args:
        operation: Zero-argument callable returning an awaitable.
        max_attempts: Total number of attempts, at least 1.
        delay_seconds: Fixed wait between attempts, at least 0.
        attempt_timeout: Optional per-attempt timeout in seconds.
        cancel_event: Once set, no further attempt is started.
        on_retry: Optional callback called before each wait with
                  (attempt, exception, delay).
        description: Name used in log lines (defaults to the callable's name).

    Returns:
        The result of the first successful attempt.

    Raises:
        ValueError: If max_attempts or delay_seconds is out of range.
        EvaluationCancelledError: If cancel_event was set before success.
        Exception: The error of the final attempt, unchanged, once all
            attempts have failed.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
    if delay_seconds < 0:
        raise ValueError(f"delay_seconds must be >= 0, got {delay_seconds}")

    name = description or getattr(operation, "__name__", "operation")

    for attempt in range(max_attempts):
        _raise_if_cancelled(cancel_event, name)
        try:
            return await _run_attempt(operation, attempt_timeout, name)
        except EvaluationCancelledError:
            raise
        except Exception as e:
            if attempt + 1 >= max_attempts:
                # A cancellation that arrived during the last attempt takes precedence
                _raise_if_cancelled(cancel_event, name)
                logger.warning(
                    f"Max attempts ({max_attempts}) exhausted for {name}: {e}"
                )
                raise

            logger.info(
                f"Retry {attempt + 1}/{max_attempts} for {name} "
                f"in {delay_seconds:.2f}s: {e}"
            )
            if on_retry:
                on_retry(attempt, e, delay_seconds)

            await _wait(delay_seconds, cancel_event, name)

    raise RuntimeError(f"Retry loop exited unexpectedly in {name}")


async def _run_attempt(
    operation: Callable[[], Awaitable[T]],
    attempt_timeout: float | None,
    name: str,
) -> T:
    if attempt_timeout is None:
        return await operation()
    try:
        return await asyncio.wait_for(operation(), timeout=attempt_timeout)
    except asyncio.TimeoutError as e:
        raise RetryableError(
            code=ErrorCode.TIMEOUT,
            message_safe=f"{name} timed out after {attempt_timeout:.1f}s",
            cause=e,
        ) from e


async def _wait(delay_seconds: float, cancel_event: asyncio.Event | None, name: str) -> None:
    if cancel_event is None:
        await asyncio.sleep(delay_seconds)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay_seconds)
    except asyncio.TimeoutError:
        return
    _raise_if_cancelled(cancel_event, name)


def _raise_if_cancelled(cancel_event: asyncio.Event | None, name: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        logger.info(f"Cancellation requested, abandoning {name}")
        raise EvaluationCancelledError(f"Evaluation cancelled while running {name}")

