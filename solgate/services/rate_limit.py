"""Per-identity fixed-window action limiter kept in process memory."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass

from solgate.logging import logger
from solgate.services.exceptions import RateLimitExceeded


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(
        self,
        *,
        max_actions: int,
        window_seconds: float,
        eviction_interval_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_actions = max_actions
        self.window_seconds = window_seconds
        self.eviction_interval = eviction_interval_seconds
        self._clock = clock
        self._windows: dict[Hashable, _Window] = {}
        self._lock = asyncio.Lock()
        self._last_eviction = clock()

    async def allow(self, identity: Hashable) -> bool:
        async with self._lock:
            now = self._clock()
            if now - self._last_eviction >= self.eviction_interval:
                self._evict(now)

            window = self._windows.get(identity)
            if window is None or now > window.reset_at:
                self._windows[identity] = _Window(count=1, reset_at=now + self.window_seconds)
                return True

            window.count += 1
            return window.count <= self.max_actions

    async def hit(self, identity: Hashable) -> None:
        if not await self.allow(identity):
            raise RateLimitExceeded(f"Too many actions for {identity}.")

    def _evict(self, now: float) -> int:
        stale = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in stale:
            del self._windows[key]
        self._last_eviction = now
        if stale:
            logger.debug("rate_limit_windows_evicted", count=len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)


__all__ = ["RateLimiter"]
