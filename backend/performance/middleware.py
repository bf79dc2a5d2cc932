"""
HTTP middlewares for the performance layer.

Registered on the app with ``app.middleware("http")``. Each one reads the
process-wide ``PerformanceLayer`` from ``request.app.state.performance``.

  - timing:     X-Response-Time on every response, slow requests logged
  - rate limit: X-RateLimit-* headers, 429 + Retry-After when exhausted
  - cache:      GET-only response cache for configured prefixes,
                X-Cache HIT|MISS, only 2xx JSON bodies stored
"""

import json
import math

import structlog
from fastapi.responses import JSONResponse
from starlette.requests import Request
from starlette.responses import Response

from performance.cache import build_key
from performance.service import PerformanceLayer

logger = structlog.get_logger()

RATE_LIMIT_MESSAGE = "Too many requests, please try again later"


def get_performance(request: Request) -> PerformanceLayer:
    return request.app.state.performance


def request_path(request: Request) -> str:
    """Full path plus query string, used as the cache key suffix."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


async def request_timing_middleware(request: Request, call_next):
    performance = get_performance(request)
    with performance.timer.measure(f"{request.method} {request_path(request)}") as timing:
        response = await call_next(request)
    response.headers["X-Response-Time"] = timing.header_value
    return response


async def rate_limit_middleware(request: Request, call_next):
    limiter = get_performance(request).rate_limiter
    identity = limiter.identity(request)
    decision = limiter.hit(identity)

    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_at)),
    }

    if not decision.allowed:
        retry_after = max(1, math.ceil(decision.retry_after_seconds))
        logger.info("rate_limit.rejected", identity=identity, path=request.url.path, retry_after=retry_after)
        return JSONResponse(
            status_code=429,
            content={"error": RATE_LIMIT_MESSAGE, "retry_after": retry_after},
            headers={**headers, "Retry-After": str(retry_after)},
        )

    response = await call_next(request)
    response.headers.update(headers)
    return response


async def response_cache_middleware(request: Request, call_next):
    performance = get_performance(request)
    route = performance.cache_route_for(request.url.path)
    if request.method != "GET" or route is None:
        return await call_next(request)

    key = build_key(route.key_prefix, request_path(request))
    cached = performance.cache.get(key)
    if cached is not None:
        ttl = performance.cache.ttl_remaining(key) or 0
        return JSONResponse(
            content=cached,
            headers={"X-Cache": "HIT", "X-Cache-TTL": str(math.floor(ttl * 1000))},
        )

    response = await call_next(request)
    is_json = response.headers.get("content-type", "").startswith("application/json")
    if not (200 <= response.status_code < 300 and is_json):
        response.headers["X-Cache"] = "MISS"
        return response

    body = b"".join([chunk async for chunk in response.body_iterator])
    performance.cache.set(key, json.loads(body), ttl_seconds=route.ttl_seconds)

    headers = dict(response.headers)
    headers.pop("content-length", None)
    headers["X-Cache"] = "MISS"
    return Response(
        content=body,
        status_code=response.status_code,
        headers=headers,
        media_type=response.media_type,
    )
