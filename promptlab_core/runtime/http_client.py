"""
Shared async HTTP client for calls to hosted model APIs.

This module provides a pooled HTTP client that injects authentication headers
and converts transport and status failures into ServiceErrors. It performs a
single attempt per call: retrying is the caller's job (see run_with_retry).
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from .errors import ErrorCode, RetryableError, ServiceError, error_for_status


class ServiceHttpClient:
    """Shared HTTP client for a hosted model API.

    Features:
    - Connection pooling via httpx.AsyncClient
    - Bearer token injection
    - Timeout handling
    - Structured error conversion

    Example:
        client = ServiceHttpClient("https://api-inference.huggingface.co/models", api_token="hf_...")
        async with client:
            response = await client.post("sentence-transformers/all-MiniLM-L6-v2", json={...})
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        api_token: str | None = None,
        max_connections: int = 100,
        max_keepalive: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the HTTP client.

        Args:
            base_url: Base URL for all requests.
            timeout: Default timeout in seconds.
            api_token: Optional bearer token sent with every request.
            max_connections: Maximum total connections in pool.
            max_keepalive: Maximum keepalive connections.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._api_token = api_token
        self._transport = transport

        self._limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive,
            keepalive_expiry=30.0,
        )
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=self._limits,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ServiceHttpClient":
        await self._get_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _build_url(self, path: str) -> str:
        path = path.lstrip("/")
        return f"{self.base_url}/{path}"

    def _headers(self, extra: dict[str, str] | None) -> dict[str, str]:
        headers = dict(extra or {})
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Make one HTTP request.

        Args:
            method: HTTP method (GET, POST, etc.).
            path: Request path relative to base_url.
            **kwargs: Additional arguments passed to httpx.

        Returns:
            The HTTP response (status < 400).

        Raises:
            RetryableError: For timeouts, connection errors, 429 and 5xx.
            TerminalError: For other 4xx responses.
            ServiceError: For unexpected client-side errors.
        """
        client = await self._get_client()
        url = self._build_url(path)
        headers = self._headers(kwargs.pop("headers", None))

        try:
            response = await client.request(method=method, url=url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise RetryableError(
                code=ErrorCode.TIMEOUT,
                message_safe=f"{method} {path} timed out after {self.timeout}s",
                cause=e,
            ) from e
        except httpx.TransportError as e:
            raise RetryableError(
                code=ErrorCode.CONNECTION_ERROR,
                message_safe=f"Failed to connect for {method} {path}",
                message_debug=str(e),
                cause=e,
            ) from e
        except Exception as e:
            logger.error(f"Unexpected error during {method} {path}: {e}")
            raise ServiceError(
                code=ErrorCode.INTERNAL_ERROR,
                message_safe="Unexpected error during request",
                message_debug=str(e),
                cause=e,
            ) from e

        if response.status_code >= 400:
            raise error_for_status(
                response.status_code,
                f"{method} {path} failed with status {response.status_code}",
                body=response.text[:500] if response.text else None,
            )

        return response

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        """Make a POST request."""
        return await self.request("POST", path, **kwargs)
