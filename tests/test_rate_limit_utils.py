"""
Tests for rate limit detection and backoff.
"""

from types import SimpleNamespace

import asyncio

import httpx
import pytest

from volbot.api.http_client import ApiBadResponseError, ApiClientError, ApiTimeoutError
from volbot.solana.errors import RateLimitError
from volbot.utils.rate_limit_utils import (
    call_with_rate_limit_backoff,
    is_rate_limit_error,
    is_rate_limit_message,
    is_timeout_error,
)
from tests.conftest import FakeClock, rate_limited


class SolanaRpcException(Exception):
    """Shape of solana-py's transport wrapper."""


class HTTPStatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.response = SimpleNamespace(status_code=status_code)


def wrapped(status_code: int) -> Exception:
    try:
        try:
            raise HTTPStatusError("Client error", status_code)
        except HTTPStatusError as e:
            raise SolanaRpcException("get_signature_statuses failed") from e
    except SolanaRpcException as outer:
        return outer


class TestDetection:
    def test_typed_errors(self):
        assert is_rate_limit_error(rate_limited())
        assert is_rate_limit_error(RateLimitError("slow down", source="rpc"))

    def test_status_code(self):
        assert is_rate_limit_error(ApiBadResponseError("nope", status_code=429))
        assert not is_rate_limit_error(ApiBadResponseError("nope", status_code=500))

    def test_cause_chain(self):
        assert is_rate_limit_error(wrapped(429))
        assert not is_rate_limit_error(wrapped(503))

    def test_error_raised_while_handling_429_is_not_rate_limited(self):
        try:
            try:
                raise rate_limited()
            except ApiBadResponseError:
                raise KeyError("status")
        except KeyError as e:
            error = e

        assert error.__context__ is not None
        assert not is_rate_limit_error(error)

    def test_message_fallback(self):
        assert is_rate_limit_error(ApiClientError("Too Many Requests for url"))
        assert not is_rate_limit_error(ApiClientError("connection reset"))

    @pytest.mark.parametrize("message", ["Rate limit exceeded", "HTTP 429", "request throttled"])
    def test_messages(self, message):
        assert is_rate_limit_message(message)


class TestTimeoutDetection:
    @pytest.mark.parametrize("error", [
        asyncio.TimeoutError(),
        ApiTimeoutError("Request to /bundles timed out"),
        httpx.ReadTimeout("timed out"),
    ])
    def test_timeouts(self, error):
        assert is_timeout_error(error)

    def test_wrapped_timeout(self):
        try:
            try:
                raise httpx.ReadTimeout("timed out")
            except httpx.ReadTimeout as e:
                raise SolanaRpcException("send_raw_transaction failed") from e
        except SolanaRpcException as outer:
            assert is_timeout_error(outer)

    def test_other_errors(self):
        assert not is_timeout_error(ApiClientError("connection reset"))
        assert not is_timeout_error(wrapped(503))


class TestBackoff:
    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        clock = FakeClock()
        outcomes = [rate_limited(), rate_limited(), "ok"]

        async def operation():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = await call_with_rate_limit_backoff(operation, max_retries=3, base_delay=0.5, sleep=clock.sleep)

        assert result == "ok"
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        clock = FakeClock()

        async def operation():
            raise ApiClientError("connection reset")

        with pytest.raises(ApiClientError):
            await call_with_rate_limit_backoff(operation, max_retries=3, base_delay=1.0, sleep=clock.sleep)

        assert clock.sleeps == []
