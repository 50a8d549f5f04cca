"""
Strat Scanner — Concurrency Limiter

Bounds how many outbound fetches run at once so a full FTC scan
(markets × 8 timeframes) never floods the exchange API.

Behaviour:
    - at most `max_concurrent` tasks run at any instant
    - extra tasks wait in a FIFO queue
    - whenever a running task settles (success or failure) the next queued
      task starts immediately
    - every caller receives only its own task's result or exception

Usage::

    limiter = ConcurrencyLimiter(max_concurrent=5)
    candles = await limiter.execute(lambda: client.fetch_candles(1, "1h", 20))

All bookkeeping runs on the event loop thread without awaiting between the
capacity check and the counter update, so interleaved completions cannot
lose updates.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class _QueuedTask:
    factory: Callable[[], Awaitable[Any]]
    future: asyncio.Future


class ConcurrencyLimiter:
    """FIFO, capacity-driven limiter for async work."""

    def __init__(self, max_concurrent: int = 5, name: str = "default"):
        """
        Args:
            max_concurrent: Maximum number of tasks running at once.
            name: Label used in log events.
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")

        self.name = name
        self.max_concurrent = max_concurrent

        self._running = 0
        self._queue: deque[_QueuedTask] = deque()
        self._workers: set[asyncio.Task] = set()

    async def execute(self, factory: Callable[[], Awaitable[T]]) -> T:
        """Run `factory()` once a slot is free and return its outcome.

        Args:
            factory: Zero-argument callable returning an awaitable.

        Returns:
            Whatever the awaitable returns; its exception is re-raised here.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._queue.append(_QueuedTask(factory, future))

        if self._running >= self.max_concurrent:
            log.debug(
                "limiter.queued",
                limiter=self.name,
                running=self._running,
                queued=len(self._queue),
            )

        self._drain()
        return await future

    def _drain(self) -> None:
        """Start queued tasks while capacity allows."""
        while self._running < self.max_concurrent and self._queue:
            item = self._queue.popleft()
            if item.future.done():
                # caller gave up while still queued
                continue
            self._running += 1
            worker = asyncio.ensure_future(self._run(item))
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)

    async def _run(self, item: _QueuedTask) -> None:
        try:
            result = await item.factory()
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            raise
        except Exception as exc:
            if not item.future.done():
                item.future.set_exception(exc)
        else:
            if not item.future.done():
                item.future.set_result(result)
        finally:
            self._running -= 1
            self._drain()

    def stats(self) -> dict[str, int]:
        """Point-in-time view of the limiter."""
        if any(item.future.done() for item in self._queue):
            # drop entries whose caller was cancelled while still queued
            self._queue = deque(item for item in self._queue if not item.future.done())
        return {
            "currently_running": self._running,
            "queue_length": len(self._queue),
            "max_concurrent": self.max_concurrent,
        }
