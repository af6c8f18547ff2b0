"""In-memory per-client token buckets for the API."""

from __future__ import annotations

import math
import time
from collections import OrderedDict
from dataclasses import dataclass, field


@dataclass
class TokenBucket:
    capacity: int
    refill_rate: float  # tokens per second
    tokens: float = field(init=False)
    last: float = field(init=False)

    def __post_init__(self) -> None:
        self.tokens = float(self.capacity)
        self.last = time.monotonic()

    def allow(self, now: float) -> bool:
        elapsed = now - self.last
        if elapsed > 0:
            self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
            self.last = now
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False

    def retry_after(self) -> int:
        """Seconds until the next token is available."""
        return max(1, math.ceil((1 - self.tokens) / self.refill_rate))


@dataclass
class RateLimiter:
    """``requests`` per ``window_seconds`` for each client key, LRU-capped."""

    requests: int = 100
    window_seconds: float = 900.0
    max_clients: int = 1024
    buckets: OrderedDict[str, TokenBucket] = field(default_factory=OrderedDict)

    def check(self, client: str) -> int | None:
        """
        Consume one token for ``client``.

        Returns:
            None if allowed, otherwise the suggested Retry-After in seconds.
        """
        bucket = self.buckets.get(client)
        if bucket is None:
            bucket = TokenBucket(self.requests, self.requests / self.window_seconds)
            self.buckets[client] = bucket
            if len(self.buckets) > self.max_clients:
                self.buckets.popitem(last=False)
        else:
            self.buckets.move_to_end(client)
        if bucket.allow(time.monotonic()):
            return None
        return bucket.retry_after()
