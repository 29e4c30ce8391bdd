import pytest

from services.errors import RateLimitExceeded
from services.rate_limit import TokenBucketRateLimiter, UnlimitedRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


async def test_burst_then_refused():
    limiter = TokenBucketRateLimiter(burst=3, refill_seconds=10, clock=FakeClock())
    for _ in range(3):
        await limiter.acquire("student-1")
    with pytest.raises(RateLimitExceeded):
        await limiter.acquire("student-1")


async def test_tokens_refill_over_time():
    clock = FakeClock()
    limiter = TokenBucketRateLimiter(burst=2, refill_seconds=10, clock=clock)
    await limiter.acquire("a")
    await limiter.acquire("a")
    clock.now += 10
    await limiter.acquire("a")
    with pytest.raises(RateLimitExceeded):
        await limiter.acquire("a")
    clock.now += 1000
    await limiter.acquire("a")
    await limiter.acquire("a")


async def test_keys_are_independent():
    limiter = TokenBucketRateLimiter(burst=1, refill_seconds=60, clock=FakeClock())
    await limiter.acquire("a")
    await limiter.acquire("b")
    with pytest.raises(RateLimitExceeded):
        await limiter.acquire("a")


async def test_refilled_buckets_are_dropped():
    clock = FakeClock()
    limiter = TokenBucketRateLimiter(burst=2, refill_seconds=10, clock=clock)
    for key in ("a", "b", "c"):
        await limiter.acquire(key)
    assert set(limiter._buckets) == {"a", "b", "c"}

    clock.now += 10
    await limiter.acquire("d")
    # only the actor that just spent a token is still tracked
    assert set(limiter._buckets) == {"d"}


async def test_without_refill_the_burst_is_final():
    clock = FakeClock()
    limiter = TokenBucketRateLimiter(burst=1, refill_seconds=0, clock=clock)
    await limiter.acquire("a")
    clock.now += 1000
    with pytest.raises(RateLimitExceeded):
        await limiter.acquire("a")


async def test_unlimited():
    limiter = UnlimitedRateLimiter()
    for _ in range(100):
        await limiter.acquire("a")
