"""
Performance Layer — process-scoped owner of the response cache, the rate
limiter and the request timer.

Built once in the API lifespan: ``start()`` launches the background sweeps,
``stop()`` cancels them. Middlewares reach it through ``app.state.performance``.
"""

import asyncio
from dataclasses import dataclass

import structlog

from core.config import Settings
from performance.cache import ResponseCache
from performance.rate_limit import FixedWindowRateLimiter, RateLimitConfig
from performance.timing import RequestTimer

logger = structlog.get_logger()


@dataclass(frozen=True)
class CacheRoute:
    """GET requests under ``path_prefix`` are cached under ``key_prefix``."""

    path_prefix: str
    key_prefix: str
    ttl_seconds: float

    def matches(self, path: str) -> bool:
        return path == self.path_prefix or path.startswith(f"{self.path_prefix}/")


class PerformanceLayer:
    def __init__(
        self,
        cache: ResponseCache,
        rate_limiter: FixedWindowRateLimiter,
        timer: RequestTimer,
        cache_routes: tuple[CacheRoute, ...] = (),
        sweep_interval_seconds: float = 60.0,
    ):
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.timer = timer
        self.cache_routes = cache_routes
        self.sweep_interval_seconds = sweep_interval_seconds
        self._cache_sweeper: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "PerformanceLayer":
        return cls(
            cache=ResponseCache(default_ttl_seconds=settings.cache_default_ttl_seconds),
            rate_limiter=FixedWindowRateLimiter(
                RateLimitConfig(
                    window_ms=settings.rate_limit_window_ms,
                    max_requests=settings.rate_limit_max_requests,
                )
            ),
            timer=RequestTimer(slow_threshold_ms=settings.slow_request_threshold_ms),
            cache_routes=(
                CacheRoute("/api/v1/customers", "customers", settings.customers_cache_ttl_seconds),
                CacheRoute("/api/v1/inventory", "inventory", settings.inventory_cache_ttl_seconds),
            ),
            sweep_interval_seconds=settings.rate_limit_sweep_interval_seconds,
        )

    def cache_route_for(self, path: str) -> CacheRoute | None:
        return next((route for route in self.cache_routes if route.matches(path)), None)

    async def start(self) -> None:
        self.rate_limiter.start_sweeper(self.sweep_interval_seconds)
        if self._cache_sweeper is None:
            self._cache_sweeper = asyncio.get_running_loop().create_task(
                self._sweep_cache_forever(), name="cache-sweeper"
            )
        logger.info("performance.started", sweep_interval_seconds=self.sweep_interval_seconds)

    async def stop(self) -> None:
        await self.rate_limiter.stop_sweeper()
        if self._cache_sweeper is not None:
            self._cache_sweeper.cancel()
            try:
                await self._cache_sweeper
            except asyncio.CancelledError:
                pass
            self._cache_sweeper = None
        logger.info("performance.stopped")

    async def _sweep_cache_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            removed = self.cache.sweep()
            if removed:
                logger.debug("cache.swept", removed=removed)
