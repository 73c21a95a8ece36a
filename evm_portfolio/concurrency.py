"""Cancellation, rate limiting and batching helpers shared by the services."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Sequence, TypeVar

from asyncio_throttle import Throttler

from .exceptions import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """Cooperative cancellation handle passed down through a run.

    Unlike ``Task.cancel()``, cancelling a token does not tear down the whole
    task tree: guarded waits fail fast with ``OperationCancelled`` and callers
    decide how to record the aborted work.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._timer: asyncio.TimerHandle | None = None
        self.reason = ""

    @classmethod
    def with_timeout(cls, seconds: float) -> CancelToken:
        """Create a token that cancels itself after ``seconds``.

        Must be called from inside a running event loop.
        """
        token = cls()
        loop = asyncio.get_running_loop()
        token._timer = loop.call_later(
            seconds, token.cancel, f"deadline of {seconds:g}s exceeded"
        )
        return token

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "operation cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.debug("Cancel token fired: %s", reason)
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled(self.reason)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        On cancellation the inner task is cancelled and ``OperationCancelled``
        is raised immediately.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled(self.reason)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()

        await asyncio.gather(task, return_exceptions=True)
        raise OperationCancelled(self.reason)


class NetworkRateLimiter:
    """Per-network throttle for outbound balance batches.

    ``rate_per_second`` with ``burst`` behaves like a token bucket: up to
    ``burst`` permits are handed out per ``burst / rate_per_second`` seconds.
    One throttler is kept per chain id and shared by every wallet.
    """

    def __init__(self, rate_per_second: float, burst: int) -> None:
        if rate_per_second <= 0 or burst <= 0:
            raise ValueError("rate_per_second and burst must be positive")
        self.rate_per_second = rate_per_second
        self.burst = burst
        self._throttlers: dict[int, Throttler] = {}
        self._lock = threading.Lock()

    def _throttler(self, chain_id: int) -> Throttler:
        with self._lock:
            throttler = self._throttlers.get(chain_id)
            if throttler is None:
                throttler = Throttler(
                    rate_limit=self.burst, period=self.burst / self.rate_per_second
                )
                self._throttlers[chain_id] = throttler
            return throttler

    async def acquire(self, chain_id: int, cancel_token: CancelToken) -> None:
        """Wait for a permit on ``chain_id``; aborts when the token fires."""
        throttler = self._throttler(chain_id)

        async def _take() -> None:
            async with throttler:
                pass

        await cancel_token.guard(_take())


def batched(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive lists of at most ``size`` elements."""
    if size <= 0:
        raise ValueError(f"batch size must be positive, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]
