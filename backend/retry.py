"""Fixed-attempt retry for transient network failures."""

import asyncio
from typing import Awaitable, Callable, TypeVar

import httpx

from errors import RetryExhausted, TransientHTTPError

T = TypeVar("T")

TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.TransportError, TransientHTTPError)


async def with_retry(
    label: str,
    fn: Callable[[], Awaitable[T]],
    attempts: int = 3,
    backoff_sec: float = 10.0,
) -> T:
    """Await ``fn()`` until it succeeds or ``attempts`` transient failures pile up.

    Only timeouts, transport errors and 429/5xx responses are retried; anything
    else propagates on the first occurrence.
    """
    attempts = max(1, attempts)
    last_error: Exception = RuntimeError("no attempt made")
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except TRANSIENT_ERRORS as exc:
            last_error = exc
            if attempt < attempts:
                print(f"[retry] {label}: attempt {attempt} failed ({exc}). Retry in {backoff_sec:.0f}s")
                await asyncio.sleep(backoff_sec)
    raise RetryExhausted(label, attempts, last_error)
