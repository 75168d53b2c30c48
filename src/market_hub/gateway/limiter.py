"""Non-blocking per-provider token bucket."""

from __future__ import annotations

from datetime import datetime, timezone

from aiolimiter import AsyncLimiter


class TokenBucket:
    """Token bucket with capacity ``B`` refilled at ``R`` tokens per minute.

    Backed by ``aiolimiter.AsyncLimiter``: a leaky bucket of size ``B``
    draining at ``R/60`` per second admits exactly what a token bucket of
    capacity ``B`` refilling at ``R/60`` per second admits. Refill is lazy,
    computed on each check from the event loop clock.

    Unlike ``AsyncLimiter.acquire``, ``try_acquire`` never waits: an empty
    bucket is reported immediately so the caller can fail over.

    One instance must only be used from a single event loop.
    """

    def __init__(self, capacity: int, refill_per_minute: float) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if refill_per_minute <= 0:
            raise ValueError("refill_per_minute must be > 0")
        self.capacity = capacity
        self.refill_per_minute = refill_per_minute
        self._limiter = AsyncLimiter(
            max_rate=capacity,
            time_period=60.0 * capacity / refill_per_minute,
        )
        self._refilled_at: datetime | None = None

    async def try_acquire(self, amount: int = 1) -> bool:
        """Consume ``amount`` tokens if available. Returns False instead of blocking."""
        if amount > self.capacity:
            raise ValueError(f"cannot acquire {amount} tokens from a bucket of {self.capacity}")
        self._refilled_at = datetime.now(timezone.utc)
        if not self._limiter.has_capacity(amount):
            return False
        # Does not suspend: capacity was just confirmed on this loop tick
        await self._limiter.acquire(amount)
        return True

    def has_token(self, amount: int = 1) -> bool:
        """True when at least ``amount`` tokens are available (does not consume)."""
        return self._limiter.has_capacity(amount)

    @property
    def tokens(self) -> float:
        """Tokens currently available, after lazy refill."""
        try:
            self._limiter.has_capacity(0)
        except RuntimeError:
            # No running loop: report the last computed level
            pass
        return max(0.0, self.capacity - self._limiter._level)

    @property
    def refilled_at(self) -> datetime | None:
        return self._refilled_at

    def __repr__(self) -> str:
        return f"TokenBucket(capacity={self.capacity}, refill_per_minute={self.refill_per_minute})"
