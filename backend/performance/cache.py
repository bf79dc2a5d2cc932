"""
Response Cache — in-process keyed cache with per-entry TTL.

Keys are ``"{prefix}:{path}"`` where path is the full request path and
query string. Expired entries read as a miss and are dropped lazily on
access, or in bulk by ``sweep()``.

Thread-safe: every read and write holds the instance lock, so concurrent
set/get on the same key is last-writer-wins and never partial.
"""

import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Any

import structlog

logger = structlog.get_logger()

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    sets: int
    hit_rate: float
    keys: int


@dataclass
class _Entry:
    value: Any
    expires_at: float


def build_key(prefix: str, path: str) -> str:
    return f"{prefix}:{path}"


class ResponseCache:
    def __init__(self, default_ttl_seconds: float = 300, clock: Clock = time.monotonic):
        self._entries: dict[str, _Entry] = {}
        self._lock = Lock()
        self._clock = clock
        self.default_ttl_seconds = default_ttl_seconds
        self._hits = 0
        self._misses = 0
        self._sets = 0

    # ── Basic operations ──

    def get(self, key: str) -> Any | None:
        """Cached value, or None on miss (absent or expired)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at <= self._clock():
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)
            self._sets += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def flush(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("cache.flushed", keys=count)
        return count

    def keys(self) -> list[str]:
        now = self._clock()
        with self._lock:
            return [k for k, e in self._entries.items() if e.expires_at > now]

    def ttl_remaining(self, key: str) -> float | None:
        """Seconds until ``key`` expires, None when absent or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expires_at <= now:
                return None
            return entry.expires_at - now

    # ── Maintenance ──

    def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern`` (regex search). Returns count."""
        regex = re.compile(pattern)
        with self._lock:
            doomed = [k for k in self._entries if regex.search(k)]
            for key in doomed:
                del self._entries[key]
        logger.info("cache.invalidated", pattern=pattern, keys=len(doomed))
        return len(doomed)

    def sweep(self) -> int:
        """Drop expired entries. Returns number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            samples = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                sets=self._sets,
                hit_rate=self._hits / samples if samples else 0.0,
                keys=len(self._entries),
            )
