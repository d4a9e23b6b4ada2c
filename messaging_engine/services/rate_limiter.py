"""
Per-backend outbound rate limiting for model calls.

Each backend tier gets a fixed-window limiter: at most ``max_requests``
acquisitions inside any rolling ``window_sec``.  ``acquire()`` blocks the
caller until a slot frees; it never fails.
"""

import asyncio
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

import structlog

from messaging_engine.contracts import Backend
from messaging_engine.core import config

logger = structlog.get_logger(__name__)


class FixedWindowRateLimiter:
    """
    Async sliding-log limiter for one provider tier.

    Notes:
    - In-process state only; shared by every job in the process.
    - Timestamps older than the window are discarded on each acquire.
    - ``pending`` counts callers currently blocked waiting for a slot.
    """

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_sec: float = 60.0,
        *,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], "asyncio.Future"]] = None,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if window_sec <= 0:
            raise ValueError("window_sec must be > 0")
        self.name = name
        self.max_requests = max_requests
        self.window_sec = float(window_sec)
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock()
        self.pending = 0

    def _evict(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_sec:
            self._timestamps.popleft()

    async def acquire(self) -> None:
        self.pending += 1
        try:
            while True:
                async with self._lock:
                    now = self._clock()
                    self._evict(now)
                    if len(self._timestamps) < self.max_requests:
                        self._timestamps.append(now)
                        return
                    # Wait until the oldest slot leaves the window
                    sleep_for = self._timestamps[0] + self.window_sec - now
                logger.debug(
                    "rate_limit_wait",
                    limiter=self.name,
                    sleep_sec=round(sleep_for, 3),
                    pending=self.pending,
                )
                await self._sleep(max(0.001, sleep_for))
        finally:
            self.pending -= 1

    @property
    def in_window(self) -> int:
        self._evict(self._clock())
        return len(self._timestamps)

    def reset(self) -> None:
        self._timestamps.clear()


class RateLimiterRegistry:
    """Limiters keyed by backend tier (``claude``, ``gemini-pro`` ...)."""

    def __init__(self, limits: Optional[Dict[str, int]] = None, window_sec: Optional[float] = None):
        self._window = window_sec or config.RATE_LIMIT_WINDOW_SEC
        self._limits = limits or {
            "claude": config.CLAUDE_RPM,
            "gemini-flash": config.GEMINI_FLASH_RPM,
            "gemini-pro": config.GEMINI_PRO_RPM,
            "openai": config.OPENAI_RPM,
            "deep-research": config.DEEP_RESEARCH_RPM,
        }
        self._limiters: Dict[str, FixedWindowRateLimiter] = {}

    @staticmethod
    def tier_for(backend: Backend, model: str) -> str:
        if backend == Backend.ANTHROPIC:
            return "claude"
        if backend == Backend.GEMINI:
            return "gemini-pro" if "pro" in (model or "").lower() else "gemini-flash"
        if "deep-research" in (model or "").lower():
            return "deep-research"
        return "openai"

    def get(self, tier: str) -> FixedWindowRateLimiter:
        limiter = self._limiters.get(tier)
        if limiter is None:
            limiter = FixedWindowRateLimiter(
                tier, self._limits.get(tier, config.OPENAI_RPM), self._window
            )
            self._limiters[tier] = limiter
        return limiter

    def for_model(self, backend: Backend, model: str) -> FixedWindowRateLimiter:
        return self.get(self.tier_for(backend, model))

    def reset(self) -> None:
        for limiter in self._limiters.values():
            limiter.reset()


rate_limiters = RateLimiterRegistry()
