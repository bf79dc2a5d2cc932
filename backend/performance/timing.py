"""Wall-clock timing for request handling; slow calls are logged, never failed."""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()

SLOW_REQUEST_MS = 1000.0


@dataclass
class Timing:
    label: str
    duration_ms: float = 0.0

    @property
    def header_value(self) -> str:
        return f"{self.duration_ms:.2f}ms"


class RequestTimer:
    def __init__(self, slow_threshold_ms: float = SLOW_REQUEST_MS):
        self.slow_threshold_ms = slow_threshold_ms

    @contextmanager
    def measure(self, label: str) -> Iterator[Timing]:
        timing = Timing(label=label)
        start = time.perf_counter()
        try:
            yield timing
        finally:
            timing.duration_ms = (time.perf_counter() - start) * 1000
            if timing.duration_ms > self.slow_threshold_ms:
                logger.warning(
                    "request.slow",
                    label=label,
                    duration_ms=round(timing.duration_ms, 2),
                    threshold_ms=self.slow_threshold_ms,
                )
