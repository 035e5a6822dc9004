import asyncio
import json
import time
from typing import Any, Dict, Optional

import aiohttp
from loguru import logger

from volbot.config import HTTP_TIMEOUT


class ApiClientError(Exception):
    """Base exception for API client errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ApiTimeoutError(ApiClientError):
    """Exception raised when an API request times out."""
    pass


class ApiBadResponseError(ApiClientError):
    """Exception raised when the API returns a non-success status code."""
    pass


class ApiRateLimitError(ApiBadResponseError):
    """Exception raised when the API answers HTTP 429."""
    pass


class AsyncApiClient:
    """Base client for the JSON/HTTP services the bot talks to."""

    def __init__(
        self,
        base_url: str,
        timeout: float = HTTP_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url: The base URL for the API
            timeout: Request timeout in seconds
            session: Shared aiohttp session (one is created lazily otherwise)
            headers: Headers sent with every request
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = headers or {}
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self):
        """Close the underlying session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _make_request(self, method: str, endpoint: str, raw: bool = False, **kwargs) -> Any:
        """
        Make an HTTP request to the API.

        Args:
            method: HTTP method (get, post, etc.)
            endpoint: API endpoint, appended to the base URL
            raw: Return the response body as bytes instead of decoded JSON
            **kwargs: Additional arguments passed to aiohttp

        Returns:
            The JSON response data, or the raw body when ``raw`` is set

        Raises:
            ApiTimeoutError: If the request times out
            ApiRateLimitError: If the API answers 429
            ApiBadResponseError: If the API returns another non-2xx status code
            ApiClientError: On transport or decoding failures
        """
        url = f"{self.base_url}{endpoint}"
        headers = {**self.headers, **kwargs.pop("headers", {})}
        start_time = time.time()

        logger.bind(method=method, url=url, params=kwargs.get("params")).debug(
            f"Making {method.upper()} request to {endpoint}"
        )

        try:
            async with self._get_session().request(method.upper(), url, headers=headers, **kwargs) as response:
                body = await response.read()
                elapsed = time.time() - start_time

                logger.bind(status_code=response.status, elapsed_time=elapsed, payload_size=len(body)).debug(
                    f"Received response from {endpoint} in {elapsed:.2f}s"
                )

                if response.status == 429:
                    logger.bind(endpoint=endpoint).warning(f"Rate limited by {url}")
                    raise ApiRateLimitError(f"{url} returned 429: too many requests", status_code=429)

                if not 200 <= response.status < 300:
                    text = body.decode("utf-8", errors="replace")
                    logger.bind(status_code=response.status, response_text=text).error(
                        f"API error: {response.status} {text}"
                    )
                    raise ApiBadResponseError(f"{url} returned {response.status}: {text}", status_code=response.status)

        except asyncio.TimeoutError:
            logger.bind(endpoint=endpoint, timeout=self.timeout).error(
                f"Request to {url} timed out after {self.timeout}s"
            )
            raise ApiTimeoutError(f"Request to {endpoint} timed out")

        except aiohttp.ClientError as e:
            logger.bind(endpoint=endpoint, error=str(e)).error(f"Request to {url} failed: {str(e)}")
            raise ApiClientError(f"Request failed: {str(e)}")

        if raw:
            return body

        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON response from {endpoint}: {str(e)}")
            raise ApiClientError(f"Failed to parse JSON response: {str(e)}")

    async def _rpc_call(self, endpoint: str, method: str, params: list) -> Any:
        """POST a JSON-RPC 2.0 call and return its ``result``."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        response = await self._make_request("post", endpoint, json=payload)

        if isinstance(response, dict) and response.get("error"):
            error = response["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            if code == 429 or "rate limit" in message.lower():
                raise ApiRateLimitError(f"{method} rate limited: {message}", status_code=429)
            raise ApiBadResponseError(f"{method} failed: {message}")

        if not isinstance(response, dict) or "result" not in response:
            raise ApiBadResponseError(f"{method} returned no result: {response}")

        return response["result"]
