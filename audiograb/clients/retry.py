"""Retry utilities for provider API calls.

Provides exponential backoff retry logic for transient HTTP failures.
Only retries on connection errors and 5xx server errors. 4xx client
errors (bad token, unknown run, validation) are never retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

import httpx

log = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 1.0  # seconds
DEFAULT_BACKOFF_MAX = 30.0  # cap on backoff time

# Exceptions that trigger a retry
RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
)

# HTTP status codes that trigger a retry (server-side errors)
RETRYABLE_STATUS_CODES = {500, 502, 503, 504, 520, 521, 522, 523, 524}

Sleep = Callable[[float], Awaitable[None]]


async def retry_request(
    func: Callable[..., Awaitable[httpx.Response]],
    *args: Any,
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_base: float = DEFAULT_BACKOFF_BASE,
    backoff_max: float = DEFAULT_BACKOFF_MAX,
    sleep: Sleep = asyncio.sleep,
    **kwargs: Any,
) -> httpx.Response:
    """Await an httpx request coroutine with retry logic.

    Usage::

        response = await retry_request(client.get, "/v2/actor-runs/abc")

    A response with a retryable status is returned as-is once retries are
    exhausted so the caller can report it.
    """
    last_exception: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            response = await func(*args, **kwargs)
        except RETRYABLE_EXCEPTIONS as exc:
            last_exception = exc
            if attempt >= max_retries:
                raise
            delay = _compute_delay(attempt, backoff_base, backoff_max)
            log.debug(
                "Retrying request (%s, attempt %d/%d, backoff %.1fs)",
                exc.__class__.__name__,
                attempt + 1,
                max_retries,
                delay,
            )
            await sleep(delay)
            continue

        if response.status_code in RETRYABLE_STATUS_CODES and attempt < max_retries:
            delay = _compute_delay(attempt, backoff_base, backoff_max)
            log.debug(
                "Retrying request (HTTP %s, attempt %d/%d, backoff %.1fs)",
                response.status_code,
                attempt + 1,
                max_retries,
                delay,
            )
            await sleep(delay)
            continue

        return response

    if last_exception:
        raise last_exception
    raise RuntimeError("Retry logic exhausted")


def _compute_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff: base * 2^attempt, capped at cap."""
    return min(base * (2 ** attempt), cap)
