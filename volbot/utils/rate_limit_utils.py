"""
Rate Limiting Utilities

This module classifies rate limiting errors raised by the RPC node, the
bundle relay and the HTTP services, so callers can back off instead of
treating a 429 as a failed transaction.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from loguru import logger

from volbot.api.http_client import ApiRateLimitError, ApiTimeoutError
from volbot.solana.errors import RateLimitError

T = TypeVar("T")

RATE_LIMIT_INDICATORS = [
    "rate limit",
    "too many requests",
    "429",
    "throttle",
]


def _status_code(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_rate_limit_error(error: BaseException) -> bool:
    """
    Check if an exception indicates rate limiting.

    solana-py wraps transport failures in ``SolanaRpcException`` and keeps the
    original httpx error as ``__cause__``, so the explicit cause chain is
    checked for a 429 response before falling back to the message text. An
    error merely raised while handling a 429 is not a rate limit.

    Args:
        error: The exception to check

    Returns:
        True if this appears to be a rate limiting error
    """
    current: Optional[BaseException] = error
    seen = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, (ApiRateLimitError, RateLimitError)):
            return True
        if _status_code(current) == 429:
            return True
        current = current.__cause__

    return is_rate_limit_message(str(error))


def is_timeout_error(error: BaseException) -> bool:
    """
    Check if an exception, or one of its explicit causes, is a timeout.

    A timed out send may still have reached the network.
    """
    current: Optional[BaseException] = error
    seen = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, (asyncio.TimeoutError, httpx.TimeoutException, ApiTimeoutError)):
            return True
        current = current.__cause__
    return False


def is_rate_limit_message(error_message: str) -> bool:
    """
    Check if an error message indicates rate limiting.

    Args:
        error_message: The error message to check

    Returns:
        True if this appears to be a rate limiting error
    """
    error_lower = error_message.lower()
    for indicator in RATE_LIMIT_INDICATORS:
        if indicator in error_lower:
            return True
    return False


async def call_with_rate_limit_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int,
    base_delay: float,
    operation_name: str = "request",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` and retry it when it is rate limited.

    The delay doubles on each hit (``base_delay * 2**hit``). Non rate-limit
    errors, and the rate-limit error after ``max_retries`` hits, are re-raised.
    """
    hits = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_rate_limit_error(e):
                raise
            hits += 1
            if hits >= max_retries:
                logger.warning(f"{operation_name} still rate limited after {hits} retries")
                raise
            delay = base_delay * (2 ** hits)
            logger.bind(operation=operation_name, retry=hits, delay=delay).warning(
                f"{operation_name} rate limited, retrying in {delay:.1f}s ({hits}/{max_retries})"
            )
            await sleep(delay)
