"""
Cooperative sliding-window rate limiter for Gemini requests

One instance is created per process and shared by every call site. Calls
are admitted strictly in FIFO order by a single admission loop; each admitted
call runs to completion before the next is considered.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, TypeVar

from .telemetry import rate_limiter_queue_length, rate_limiter_waits

logger = logging.getLogger(__name__)

T = TypeVar("T")

WINDOW_SECONDS = 60.0
SAFETY_MARGIN_SECONDS = 0.1
REQUEST_GAP_SECONDS = 0.2


@dataclass(frozen=True)
class RateLimitPolicy:
    """Provider limits; only requests_per_minute is enforced"""

    requests_per_minute: int = 15
    tokens_per_minute: int = 1_000_000
    requests_per_day: int = 1500

    def __post_init__(self):
        for name in ("requests_per_minute", "tokens_per_minute", "requests_per_day"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")


# Gemini Flash free tier
GEMINI_FLASH_LIMITS = RateLimitPolicy()


class GeminiRateLimiter:
    """
    FIFO admission queue throttled to a requests-per-minute ceiling

    The clock and sleep callables are injectable so tests can drive time.
    """

    def __init__(
        self,
        policy: RateLimitPolicy = GEMINI_FLASH_LIMITS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        window_seconds: float = WINDOW_SECONDS,
        request_gap_seconds: float = REQUEST_GAP_SECONDS,
    ):
        self.policy = policy
        self._clock = clock
        self._sleep = sleep
        self.window_seconds = window_seconds
        self.request_gap_seconds = request_gap_seconds

        self._queue: Deque[Tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._timestamps: Deque[float] = deque()
        self._processing = False
        self._worker: Optional[asyncio.Task] = None

    async def throttle(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Queue fn and wait for its outcome

        Args:
            fn: Zero-argument coroutine function to run once admitted

        Returns:
            Whatever fn returns; exceptions raised by fn propagate unchanged
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._queue.append((fn, future))
        rate_limiter_queue_length.set(len(self._queue))

        if not self._processing:
            self._processing = True
            self._worker = loop.create_task(self._process_queue())

        return await future

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    async def _process_queue(self) -> None:
        try:
            while self._queue:
                now = self._clock()
                self._prune(now)

                if len(self._timestamps) >= self.policy.requests_per_minute:
                    wait_time = self.window_seconds - (now - self._timestamps[0]) + SAFETY_MARGIN_SECONDS
                    rate_limiter_waits.inc()
                    logger.info(
                        f"Rate limit reached ({len(self._timestamps)}/{self.policy.requests_per_minute}), "
                        f"waiting {wait_time:.1f}s"
                    )
                    await self._sleep(wait_time)
                    continue

                fn, future = self._queue.popleft()
                rate_limiter_queue_length.set(len(self._queue))
                if future.cancelled():
                    # Caller gave up while queued; don't spend a slot on it
                    continue

                self._timestamps.append(self._clock())
                try:
                    result = await fn()
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                except Exception as e:
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)

                if self._queue:
                    await self._sleep(self.request_gap_seconds)
        finally:
            self._processing = False
            # Only reached with items left if the loop itself was cancelled
            while self._queue:
                _, future = self._queue.popleft()
                future.cancel()
            rate_limiter_queue_length.set(0)

    def get_status(self) -> Dict[str, int]:
        """Read-only diagnostic snapshot"""
        now = self._clock()
        recent = sum(1 for ts in self._timestamps if now - ts < self.window_seconds)
        return {
            "queue_length": len(self._queue),
            "requests_in_last_minute": recent,
            "requests_per_minute": self.policy.requests_per_minute,
        }

    async def close(self) -> None:
        """Cancel the admission loop and any calls still queued"""
        if self._worker and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
