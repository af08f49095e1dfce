"""Request budgets for outbound API calls."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict, deque


class RateLimiter:
    """Sliding-window budget of ``rate`` requests per ``window`` seconds, tracked per host.

    Stripe enforces its limits per second, so the window defaults to one second.
    A ``rate`` of zero or less disables limiting.
    """

    def __init__(self, *, rate: float = 20.0, window: float = 1.0) -> None:
        self.rate = rate
        self.window = window
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._sent: dict[str, deque[float]] = defaultdict(deque)

    async def wait_for_host(self, host: str) -> None:
        if self.rate <= 0:
            return
        budget = max(int(self.rate * self.window), 1)
        async with self._locks[host]:
            sent = self._sent[host]
            self._expire(sent, time.monotonic())
            if len(sent) >= budget:
                await asyncio.sleep(sent[0] + self.window - time.monotonic())
                self._expire(sent, time.monotonic())
            sent.append(time.monotonic())

    def _expire(self, sent: deque[float], now: float) -> None:
        while sent and now - sent[0] >= self.window:
            sent.popleft()
