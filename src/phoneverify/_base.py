"""Base HTTP client for provider API calls.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, NamedTuple
from urllib.parse import urljoin

import httpx

from .exceptions import (
    NetworkError,
    ProviderError,
    TimeoutError as ProviderTimeoutError,
    create_error_from_response,
    is_retryable_error,
)

logger = logging.getLogger(__name__)

# HTTP Error Status Constants
HTTP_SUCCESS_THRESHOLD = 400


class RequestConfig(NamedTuple):
    """Configuration for HTTP requests."""

    json_data: dict[str, Any] | None = None
    form_data: dict[str, str] | None = None
    params: dict[str, Any] | None = None
    timeout: float | None = None
    retries: int | None = None


class BaseClient:
    """Base HTTP client shared by the identity provider and the SMS gateway."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        retries: int = 3,
        *,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
    ) -> None:
        """Initialize base HTTP client.

        Args:
            base_url: The base URL of the API
            timeout: Request timeout in seconds
            retries: Number of retry attempts for retryable failures
            headers: Extra headers sent with every request
            auth: Optional HTTP basic auth credentials

        """
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.retries = retries

        client_headers = {"User-Agent": "phoneverify/1.0.0"}
        if headers:
            client_headers.update(headers)

        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers=client_headers,
            auth=auth,
        )

    async def __aenter__(self) -> BaseClient:
        """Async context manager entry.

        Returns:
            The client instance.

        """
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self._client.aclose()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def make_request(
        self,
        method: str,
        endpoint: str,
        *,
        config: RequestConfig | None = None,
    ) -> dict[str, Any]:
        """Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path
            config: Request configuration

        Returns:
            Parsed JSON response data.

        Raises:
            ProviderError: For error responses from the provider
            NetworkError: For network-related errors
            ProviderTimeoutError: For timeout errors

        """
        return await self._make_request_generic(
            method, endpoint, parser=lambda r: r.json(), config=config
        )

    async def _make_request_generic(
        self,
        method: str,
        endpoint: str,
        parser: Callable[[httpx.Response], Any],
        *,
        config: RequestConfig | None = None,
    ) -> Any:
        if config is None:
            config = RequestConfig()

        url = urljoin(self.base_url, endpoint.lstrip("/"))
        request_timeout = config.timeout or self.timeout
        request_retries = config.retries if config.retries is not None else self.retries

        last_error: ProviderError | None = None
        for attempt in range(request_retries + 1):
            try:
                return await self._attempt_request(
                    method, url, config, request_timeout, parser
                )
            except ProviderError as e:
                if not is_retryable_error(e) or attempt >= request_retries:
                    raise
                last_error = e
                logger.debug(
                    "Retrying %s %s after %s (attempt %d)",
                    method,
                    endpoint,
                    e.code,
                    attempt + 1,
                )

            # Exponential backoff for retries
            await asyncio.sleep(min(2**attempt, 10))

        raise last_error or ProviderError("Max retries exceeded")

    async def _attempt_request(
        self,
        method: str,
        url: str,
        config: RequestConfig,
        timeout: float,
        parser: Callable[[httpx.Response], Any],
    ) -> Any:
        """Attempt a single HTTP request.

        Returns:
            Parsed response.

        Raises:
            ProviderError: For error responses and transport failures.

        """
        try:
            response = await self._execute_request(method, url, config, timeout)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError("Request timeout") from e
        except httpx.NetworkError as e:
            raise NetworkError("Network error") from e

        if response.status_code >= HTTP_SUCCESS_THRESHOLD:
            error_info = self._parse_error_response(response)
            raise create_error_from_response(response.status_code, error_info)

        try:
            return parser(response)
        except ValueError as e:
            raise ProviderError(
                "Provider returned an invalid response",
                "INVALID_RESPONSE",
                status_code=response.status_code,
            ) from e

    async def _execute_request(
        self,
        method: str,
        url: str,
        config: RequestConfig,
        timeout: float,
    ) -> httpx.Response:
        """Execute the actual HTTP request.

        Returns:
            The HTTP response.

        """
        if config.form_data:
            return await self._client.request(
                method,
                url,
                data=config.form_data,
                params=config.params,
                timeout=timeout,
            )

        return await self._client.request(
            method,
            url,
            json=config.json_data,
            params=config.params,
            timeout=timeout,
        )

    @staticmethod
    def _parse_error_response(response: httpx.Response) -> dict[str, Any]:
        """Parse error response from the API.

        Returns:
            Parsed error data.

        """
        try:
            error_data = response.json()
        except ValueError:
            return {"message": response.text, "code": "UNKNOWN_ERROR"}
        if not isinstance(error_data, dict):
            return {"message": response.text, "code": "UNKNOWN_ERROR"}
        nested = error_data.get("error")
        if isinstance(nested, dict):
            return nested
        return error_data
