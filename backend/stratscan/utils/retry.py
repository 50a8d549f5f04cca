"""
Strat Scanner — Retry Decorator

Backoff for exchange calls. Only transport-level failures (dropped
connections, timeouts) are retried; an HTTP error status goes straight back
to the caller, where the FTC engine turns it into an error state.
"""

from __future__ import annotations

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Type

import httpx
import structlog

log = structlog.get_logger(__name__)

TRANSIENT_ERRORS: tuple[Type[Exception], ...] = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait in between."""
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    multiplier: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        delay = self.base_delay * self.multiplier ** (attempt - 1)
        if self.jitter:
            delay *= random.uniform(0.5, 1.5)
        return min(delay, self.max_delay)


def with_retry(
    max_attempts: int = 3,
    retry_on: tuple[Type[Exception], ...] = TRANSIENT_ERRORS,
    **policy_kwargs: Any,
) -> Callable:
    """Retry a coroutine function on transient failures.

    Usage::

        @with_retry(max_attempts=3)
        async def fetch_candles(self, market_id, timeframe, count_back):
            ...
    """
    policy = RetryPolicy(max_attempts=max_attempts, **policy_kwargs)

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        name = func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except retry_on as exc:
                    if attempt >= policy.max_attempts:
                        log.error("retry.exhausted", func=name, attempts=attempt, error=str(exc))
                        raise
                    delay = policy.delay_for(attempt)
                    log.warning(
                        "retry.backoff",
                        func=name,
                        attempt=attempt,
                        delay=round(delay, 2),
                        error_type=type(exc).__name__,
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
