"""
Service runtime layer for prompt-lab.

This package provides shared infrastructure for calling flaky external services:
- ServiceError: Standardized errors with retry classification
- ServiceHttpClient: Pooled async HTTP client with auth headers
- RetryPolicy / run_with_retry: Bounded fixed-delay retry with cancellation
"""

from .errors import ErrorCode, RetryableError, ServiceError, TerminalError
from .http_client import ServiceHttpClient
from .retry import DEFAULT_RETRY_POLICY, RetryPolicy, run_with_retry

__all__ = [
    "ErrorCode",
    "ServiceError",
    "RetryableError",
    "TerminalError",
    "ServiceHttpClient",
    "DEFAULT_RETRY_POLICY",
    "RetryPolicy",
    "run_with_retry",
]
