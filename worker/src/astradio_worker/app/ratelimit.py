"""Per-client sliding-window rate limiting for the compose endpoint."""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Tuple

from loguru import logger


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int = 30
    window_seconds: int = 60


class RateLimitExceeded(Exception):
    """Raised when a client exceeds its request budget."""

    def __init__(self, message: str, retry_after: int = 60):
        self.message = message
        self.retry_after = retry_after
        super().__init__(message)


class SlidingWindowRateLimiter:
    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._requests: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._requests)

    async def check(self, client: str) -> Tuple[bool, Dict[str, int]]:
        """Record a request for ``client`` when it fits the window."""

        async with self._lock:
            now = self._clock()
            window_start = now - self.config.window_seconds
            if now - self._last_sweep >= self.config.window_seconds:
                self._sweep(window_start)
                self._last_sweep = now

            requests = self._requests.setdefault(client, deque())
            while requests and requests[0] <= window_start:
                requests.popleft()

            if len(requests) >= self.config.max_requests:
                retry_after = max(1, math.ceil(requests[0] + self.config.window_seconds - now))
                return False, {"remaining": 0, "retry_after": retry_after}

            requests.append(now)
            return True, {"remaining": self.config.max_requests - len(requests), "retry_after": 0}

    async def enforce(self, client: str) -> None:
        allowed, info = await self.check(client)
        if not allowed:
            logger.warning("Rate limit exceeded for {}; retry in {}s", client, info["retry_after"])
            raise RateLimitExceeded("Too many requests", retry_after=info["retry_after"])

    async def cleanup(self) -> None:
        """Drop clients with no requests left in the current window."""

        async with self._lock:
            now = self._clock()
            self._sweep(now - self.config.window_seconds)
            self._last_sweep = now

    def _sweep(self, window_start: float) -> None:
        idle = []
        for client, requests in self._requests.items():
            while requests and requests[0] <= window_start:
                requests.popleft()
            if not requests:
                idle.append(client)
        for client in idle:
            del self._requests[client]

    async def reset(self, client: str | None = None) -> None:
        async with self._lock:
            if client is None:
                self._requests.clear()
            else:
                self._requests.pop(client, None)
