"""Tests for market_hub.gateway.limiter."""

import asyncio

import pytest

from market_hub.gateway.limiter import TokenBucket


class TestTokenBucket:
    def test_rejects_bad_parameters(self):
        with pytest.raises(ValueError, match="capacity"):
            TokenBucket(capacity=0, refill_per_minute=60)
        with pytest.raises(ValueError, match="refill_per_minute"):
            TokenBucket(capacity=5, refill_per_minute=0)

    async def test_burst_never_exceeds_capacity(self):
        bucket = TokenBucket(capacity=3, refill_per_minute=60)
        granted = [await bucket.try_acquire() for _ in range(10)]
        assert granted == [True, True, True] + [False] * 7

    async def test_starts_full(self):
        bucket = TokenBucket(capacity=4, refill_per_minute=60)
        assert bucket.has_token()
        assert bucket.tokens == pytest.approx(4.0)

    async def test_has_token_does_not_consume(self):
        bucket = TokenBucket(capacity=1, refill_per_minute=60)
        assert bucket.has_token()
        assert bucket.has_token()
        assert await bucket.try_acquire()
        assert not bucket.has_token()

    async def test_acquire_several_tokens(self):
        bucket = TokenBucket(capacity=5, refill_per_minute=5)
        assert await bucket.try_acquire(3)
        assert bucket.has_token(2)
        assert not bucket.has_token(3)
        assert not await bucket.try_acquire(3)
        assert await bucket.try_acquire(2)
        assert not bucket.has_token()

    async def test_amount_above_capacity_rejected(self):
        bucket = TokenBucket(capacity=2, refill_per_minute=60)
        with pytest.raises(ValueError, match="cannot acquire 3"):
            await bucket.try_acquire(3)

    async def test_refills_over_time(self):
        # 600/min is 10 tokens per second
        bucket = TokenBucket(capacity=1, refill_per_minute=600)
        assert await bucket.try_acquire()
        assert not await bucket.try_acquire()
        await asyncio.sleep(0.15)
        assert await bucket.try_acquire()

    async def test_refilled_at_recorded(self):
        bucket = TokenBucket(capacity=1, refill_per_minute=60)
        assert bucket.refilled_at is None
        await bucket.try_acquire()
        assert bucket.refilled_at is not None

    def test_repr(self):
        assert repr(TokenBucket(2, 30)) == "TokenBucket(capacity=2, refill_per_minute=30)"
