"""
OpsLens API — FastAPI Application Entry Point
"""

import re
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from alerts.engine import drain_background_tasks
from api.deps import get_performance
from core.config import get_settings
from performance.middleware import (
    rate_limit_middleware,
    request_timing_middleware,
    response_cache_middleware,
)
from performance.service import PerformanceLayer

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("OpsLens API starting up", version=settings.app_version)
    await app.state.performance.start()
    yield
    await app.state.performance.stop()
    await drain_background_tasks()
    logger.info("OpsLens API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="E-commerce operations analytics: fraud, customers and inventory",
    lifespan=lifespan,
)
app.state.performance = PerformanceLayer.from_settings(settings)

# Last registered runs first: timing → rate limit → cache → routes
app.middleware("http")(response_cache_middleware)
app.middleware("http")(rate_limit_middleware)
app.middleware("http")(request_timing_middleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from alerts.websocket import router as ws_router
from api.v1.routers import customers, inventory, transactions

app.include_router(transactions.router)
app.include_router(customers.router)
app.include_router(inventory.router)
app.include_router(ws_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}


# ─── Cache management ───────────────────────────────────────────────────────


@app.get("/api/v1/cache/stats")
async def cache_stats(performance: PerformanceLayer = Depends(get_performance)):
    stats = performance.cache.stats()
    return {
        "hits": stats.hits,
        "misses": stats.misses,
        "sets": stats.sets,
        "hit_rate": stats.hit_rate,
        "keys": stats.keys,
    }


@app.delete("/api/v1/cache/flush")
async def cache_flush(performance: PerformanceLayer = Depends(get_performance)):
    flushed = performance.cache.flush()
    return {"message": "Cache flushed", "keys": flushed}


@app.delete("/api/v1/cache/pattern/{pattern}")
async def cache_invalidate_pattern(pattern: str, performance: PerformanceLayer = Depends(get_performance)):
    try:
        deleted = performance.cache.invalidate_pattern(pattern)
    except re.error as exc:
        raise HTTPException(status_code=400, detail=f"Invalid pattern: {exc}")
    return {"message": f"Invalidated {deleted} cache entries", "deleted": deleted}
