"""
Fixed-window rate limiter keyed by client identity.

Per identity:
  - no entry, or the window has ended → open a new window (count 0,
    reset_at = now + window)
  - increment count
  - count > max_requests → reject, retry after (reset_at − now)

The increment-and-compare runs under one lock, so two concurrent requests
can never both take the last slot. Ended windows are removed by ``sweep()``,
which the background sweeper calls on a fixed interval.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Any

import structlog

logger = structlog.get_logger()

Clock = Callable[[], float]


def client_address(request: Any) -> str:
    """Default identity: the caller's network address."""
    client = getattr(request, "client", None)
    return client.host if client else "unknown"


@dataclass(frozen=True)
class RateLimitConfig:
    window_ms: int = 60_000
    max_requests: int = 100
    key_generator: Callable[[Any], str] = client_address

    def __post_init__(self):
        if self.window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if self.max_requests <= 0:
            raise ValueError("max_requests must be positive")


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # Clock seconds when the window ends
    retry_after_seconds: float | None = None


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    def __init__(self, config: RateLimitConfig, clock: Clock = time.time):
        self.config = config
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = Lock()
        self._sweeper: asyncio.Task | None = None

    @property
    def window_seconds(self) -> float:
        return self.config.window_ms / 1000

    def identity(self, request: Any) -> str:
        return self.config.key_generator(request)

    def hit(self, identity: str) -> RateLimitDecision:
        """Count one request for ``identity`` and decide admission."""
        limit = self.config.max_requests
        with self._lock:
            now = self._clock()
            window = self._windows.get(identity)
            if window is None or now > window.reset_at:
                window = _Window(count=0, reset_at=now + self.window_seconds)
                self._windows[identity] = window
            window.count += 1
            count, reset_at = window.count, window.reset_at

        if count > limit:
            return RateLimitDecision(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_at=reset_at,
                retry_after_seconds=reset_at - now,
            )
        return RateLimitDecision(allowed=True, limit=limit, remaining=limit - count, reset_at=reset_at)

    def sweep(self) -> int:
        """Remove windows that have ended. Returns number removed."""
        with self._lock:
            now = self._clock()
            stale = [k for k, w in self._windows.items() if now > w.reset_at]
            for key in stale:
                del self._windows[key]
        return len(stale)

    def tracked_identities(self) -> int:
        with self._lock:
            return len(self._windows)

    # ── Background sweep ──

    def start_sweeper(self, interval_seconds: float) -> asyncio.Task:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(
                self._sweep_forever(interval_seconds), name="rate-limit-sweeper"
            )
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.sweep()
            if removed:
                logger.debug("rate_limit.swept", removed=removed)
