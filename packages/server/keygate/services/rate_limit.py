"""Fixed-window request counter backed by Redis."""

from __future__ import annotations

import time
from typing import Callable

import redis.asyncio as redis


class FixedWindowRateLimiter:
    """Allow ``limit`` hits per key in each ``window_seconds`` window."""

    prefix = "ratelimit:"

    def __init__(
        self,
        client: redis.Redis,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = client
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock

    def window_key(self, key: str) -> str:
        window = int(self._clock() // self.window_seconds)
        return f"{self.prefix}{key}:{window}"

    async def hit(self, key: str) -> bool:
        """Count one request. Returns False once the window is exhausted."""
        window_key = self.window_key(key)
        count = await self._redis.incr(window_key)
        if count == 1:
            await self._redis.expire(window_key, self.window_seconds)
        return count <= self.limit

    def retry_after(self) -> int:
        elapsed = int(self._clock()) % self.window_seconds
        return self.window_seconds - elapsed
