"""
GrowSync Backend - Outbound Rate Limiter & Backoff Controller
==============================================================

What:  Serializes calls to the record store behind a minimum spacing and
       retries throttled calls with backoff.
How:   - Gate: one asyncio.Lock holding the monotonic time of the last call.
         Each caller waits its turn, sleeps off the rest of the interval, and
         stamps the clock before releasing the lock.
       - Backoff: a tenacity AsyncRetrying loop that only retries ThrottledError.
         The wait honors a positive server Retry-After; otherwise it is
         exponential (base, 2*base, 4*base ... capped at max_delay) scaled by a
         random factor in [0.5, 1.0).
Who:   One instance per process, shared by every job of every batch
       (built in the FastAPI lifespan, used by the upsert coordinator).

Throttled call timeline (max_retries=5, base=1s, no Retry-After):
    attempt 1 → 429 → sleep ~0.5-1s
    attempt 2 → 429 → sleep ~1-2s
    attempt 3 → 200 → result returned
Non-throttling errors leave the loop on the first attempt.
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from growsync.exceptions import ThrottledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


# ══════════════════════════════════════════════════════════════════════════
# Wait strategies
# ══════════════════════════════════════════════════════════════════════════


class wait_half_jitter(wait_base):
    """Scale another wait by a random factor in [0.5, 1.0)."""

    def __init__(self, wait: wait_base, rand: Callable[[], float] = random.random):
        self.wait = wait
        self.rand = rand

    def __call__(self, retry_state) -> float:
        return self.wait(retry_state) * (0.5 + self.rand() * 0.5)


class wait_retry_after(wait_base):
    """
    Use the throttling error's retry_after when the server sent a positive one,
    else defer to `fallback`.
    """

    def __init__(self, fallback: wait_base):
        self.fallback = fallback

    def __call__(self, retry_state) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None and retry_after > 0:
            return float(retry_after)
        return self.fallback(retry_state)


# ══════════════════════════════════════════════════════════════════════════
# Rate Limiter
# ══════════════════════════════════════════════════════════════════════════


class OutboundRateLimiter:
    """
    Minimum-interval gate plus throttling-aware retry for outbound calls.

    Args:
        min_interval: Seconds between the starts of two consecutive calls
        max_retries:  Retries after the first attempt (total attempts = max_retries + 1)
        base_delay:   First exponential backoff delay in seconds
        max_delay:    Cap for the exponential backoff delay
        sleep:        Awaitable sleep used for gate waits and backoff (tests inject a fake)
        clock:        Monotonic clock for the gate
        rand:         Source of jitter in [0, 1)
    """

    def __init__(
        self,
        min_interval: float = 0.334,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 32.0,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rand: Callable[[], float] = random.random,
    ):
        self.min_interval = min_interval
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._clock = clock
        self._wait = wait_retry_after(
            fallback=wait_half_jitter(
                wait_exponential(multiplier=base_delay, max=max_delay),
                rand=rand,
            )
        )
        self._lock = asyncio.Lock()
        self._last_call: Optional[float] = None

    async def _wait_turn(self) -> None:
        async with self._lock:
            now = self._clock()
            if self._last_call is not None:
                remaining = self.min_interval - (now - self._last_call)
                if remaining > 0:
                    await self._sleep(remaining)
                    now = self._clock()
            self._last_call = now

    async def schedule(self, call: Callable[[], Awaitable[T]]) -> T:
        """
        Run `call` through the gate, retrying while the store throttles.

        Every attempt (retries included) waits its turn at the gate.

        Raises:
            ThrottledError: Still throttled after max_retries retries (the last one)
            Exception:      Anything else `call` raises, on the first occurrence
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ThrottledError),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                await self._wait_turn()
                result = await call()
        return result
