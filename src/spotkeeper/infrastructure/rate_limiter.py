"""
Request pacing for the Spotify Web API.

Hey future me - a dedup run on a big playlist is a burst of page reads followed by a
string of removal batches. Spotify answers that kind of burst with 429s, and a 429 in
the middle of the removal phase means the user sees a half-cleaned playlist. So every
request spends one token from a shared bucket first.

How the bucket behaves:
- It starts full (burst_size tokens) and gains refill_per_second tokens per second
- A request takes one token, or sleeps until the next token arrives
- A 429 empties the bucket and sleeps for Retry-After (or the current penalty)
- Each 429 without Retry-After doubles the penalty; record_success() resets it

USAGE:
    limiter = get_spotify_limiter()

    async with limiter:
        response = await client.get(url)

    # after a 429:
    await limiter.handle_rate_limit_response(retry_after)
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimiterConfig:
    """Bucket and penalty settings.

    The defaults stay well under Spotify's rolling 30-second window. max_penalty_seconds
    is deliberately large: Spotify sends Retry-After values of several minutes and waiting
    less than that just earns another 429.
    """

    burst_size: int = 10
    refill_per_second: float = 2.0
    initial_penalty_seconds: float = 1.0
    penalty_multiplier: float = 2.0
    max_penalty_seconds: float = 600.0


@dataclass
class RateLimiter:
    """Token bucket shared by every request to one API."""

    name: str = "spotify"
    config: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    clock: Callable[[], float] = time.monotonic

    _tokens: float = field(default=0.0, init=False)
    _refilled_at: float = field(default=0.0, init=False)
    _penalty: float = field(default=0.0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    def __post_init__(self) -> None:
        self._tokens = float(self.config.burst_size)
        self._refilled_at = self.clock()
        self._penalty = self.config.initial_penalty_seconds

    @property
    def penalty_seconds(self) -> float:
        """Wait applied to the next 429 that carries no Retry-After."""
        return self._penalty

    def _refill(self) -> None:
        now = self.clock()
        self._tokens = min(
            float(self.config.burst_size),
            self._tokens + (now - self._refilled_at) * self.config.refill_per_second,
        )
        self._refilled_at = now

    # The lock is only held while touching the bucket. Waiters sleep outside it and
    # try again, so a long sleep never blocks a 429 handler from emptying the bucket.
    async def acquire(self) -> None:
        """Take one token, sleeping until one is available."""
        while True:
            async with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait = (1.0 - self._tokens) / self.config.refill_per_second
            logger.debug("RateLimiter[%s]: bucket empty, waiting %.2fs", self.name, wait)
            await asyncio.sleep(wait)

    async def handle_rate_limit_response(self, retry_after: int | None = None) -> float:
        """Empty the bucket and sleep after a 429.

        Args:
            retry_after: Retry-After header value in seconds, if Spotify sent one

        Returns:
            Seconds actually waited
        """
        async with self._lock:
            wait = float(retry_after) if retry_after is not None else self._penalty
            wait = min(wait, self.config.max_penalty_seconds)
            logger.warning(
                "RateLimiter[%s]: rate limited, waiting %.1fs before retrying", self.name, wait
            )
            if retry_after is None:
                self._penalty = min(
                    self._penalty * self.config.penalty_multiplier,
                    self.config.max_penalty_seconds,
                )
            self._tokens = 0.0
            self._refilled_at = self.clock()

        await asyncio.sleep(wait)
        return wait

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: Exception | None, exc_tb: object
    ) -> None:
        return None

    def record_success(self) -> None:
        """Reset the 429 penalty after a request that wasn't rate limited."""
        self._penalty = self.config.initial_penalty_seconds


# Spotify limits per app, not per HTTP client, so the whole process shares one bucket.
_spotify_limiter: RateLimiter | None = None


def get_spotify_limiter() -> RateLimiter:
    """Get the process-wide Spotify limiter."""
    global _spotify_limiter
    if _spotify_limiter is None:
        _spotify_limiter = RateLimiter(name="spotify")
    return _spotify_limiter


# Hey future me - tests run every case in a fresh event loop. The limiter's asyncio.Lock must
# not outlive the loop it was first contended in, so tests reset the singleton between cases.
def reset_spotify_limiter() -> None:
    """Drop the singleton so the next caller gets a fresh limiter."""
    global _spotify_limiter
    _spotify_limiter = None


__all__ = [
    "RateLimiter",
    "RateLimiterConfig",
    "get_spotify_limiter",
    "reset_spotify_limiter",
]
