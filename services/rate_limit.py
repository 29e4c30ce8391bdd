import time
import asyncio
import logging

from services.errors import RateLimitExceeded

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class TokenBucketRateLimiter:
    """Token bucket keyed by actor id.

    Each actor starts with `burst` tokens; one token comes back every
    `refill_seconds`. Instances are injected, so tests and workers can use
    their own bucket tables.
    """

    def __init__(self, burst: int, refill_seconds: float, clock=time.monotonic):
        self.burst = burst
        self.refill_seconds = refill_seconds
        self.clock = clock
        self._buckets = {}
        self._lock = asyncio.Lock()

    def _refill(self, key):
        now = self.clock()
        tokens, updated = self._buckets.get(key, (float(self.burst), now))
        if self.refill_seconds > 0:
            tokens = min(float(self.burst), tokens + (now - updated) / self.refill_seconds)
        return tokens, now

    def _evict_full(self, now):
        # a bucket that has refilled completely is the same as no bucket
        full = [
            key for key, (tokens, updated) in self._buckets.items()
            if self.refill_seconds > 0 and tokens + (now - updated) / self.refill_seconds >= self.burst
        ]
        for key in full:
            del self._buckets[key]

    async def acquire(self, key: str):
        async with self._lock:
            tokens, now = self._refill(key)
            self._evict_full(now)
            if tokens < 1:
                self._buckets[key] = (tokens, now)
                retry_after = (1 - tokens) * self.refill_seconds
                logger.warning(f"Execution rate limit hit for {key}, retry in {retry_after:.1f}s")
                raise RateLimitExceeded(f"Too many executions, retry in {retry_after:.0f} seconds")
            self._buckets[key] = (tokens - 1, now)


class UnlimitedRateLimiter:
    async def acquire(self, key: str):
        return None
