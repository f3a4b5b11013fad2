"""
Operation latency tracking.

Every tracked operation is observed by a Prometheus histogram and kept
in a small in-process window so the JSON metrics endpoint can report
percentiles without scraping.
"""

import asyncio
import functools
import time
from collections import deque
from contextlib import asynccontextmanager, contextmanager
from statistics import mean, quantiles
from typing import Any, AsyncIterator, Callable, Iterator, TypeVar

import structlog
from prometheus_client import Histogram

logger = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

OPERATION_LATENCY = Histogram(
    "transcript_rag_operation_latency_seconds",
    "Latency of pipeline operations in seconds",
    ["operation"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

# Samples kept per operation for percentile reporting
WINDOW_SIZE = 1000


class OperationStats:
    """Rolling latency samples (seconds) for one operation."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self.samples: deque[float] = deque(maxlen=WINDOW_SIZE)

    @property
    def count(self) -> int:
        return len(self.samples)

    def percentile_ms(self, pct: int) -> float:
        """Percentile in milliseconds; a single sample is its own percentile."""
        if not self.samples:
            return 0.0
        if len(self.samples) == 1:
            return self.samples[0] * 1000
        return quantiles(self.samples, n=100, method="inclusive")[pct - 1] * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "p50_ms": round(self.percentile_ms(50), 2),
            "p95_ms": round(self.percentile_ms(95), 2),
            "p99_ms": round(self.percentile_ms(99), 2),
            "avg_ms": round(mean(self.samples) * 1000, 2) if self.samples else 0.0,
            "count": self.count,
        }


class LatencyTracker:
    """Process-wide registry of operation latency samples."""

    _instance: "LatencyTracker | None" = None
    _stats: dict[str, OperationStats]

    def __new__(cls) -> "LatencyTracker":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._stats = {}
        return cls._instance

    def record(self, operation: str, duration_seconds: float) -> None:
        if operation not in self._stats:
            self._stats[operation] = OperationStats(operation)
        self._stats[operation].samples.append(duration_seconds)
        OPERATION_LATENCY.labels(operation=operation).observe(duration_seconds)

    def get(self, operation: str) -> OperationStats | None:
        return self._stats.get(operation)

    def snapshot(self) -> list[dict[str, Any]]:
        return [stats.to_dict() for stats in self._stats.values()]

    def reset(self) -> None:
        self._stats.clear()


_tracker = LatencyTracker()


def get_tracker() -> LatencyTracker:
    """Get the process-wide latency tracker."""
    return _tracker


def _finish(operation: str, start: float, result: dict[str, float]) -> None:
    duration = time.perf_counter() - start
    result["duration_ms"] = duration * 1000
    _tracker.record(operation, duration)
    logger.debug(
        "operation_completed",
        operation=operation,
        duration_ms=round(duration * 1000, 2),
    )


@contextmanager
def track_latency_sync(operation: str) -> Iterator[dict[str, float]]:
    """Time a synchronous block; the yielded dict gets ``duration_ms``."""
    result: dict[str, float] = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        _finish(operation, start, result)


@asynccontextmanager
async def track_latency(operation: str) -> AsyncIterator[dict[str, float]]:
    """
    Time an async block; the yielded dict gets ``duration_ms``.

    Example:
        async with track_latency("ingest_embedding") as timing:
            vectors = await embeddings.embed_texts(texts)
        logger.info("embedded", ms=timing["duration_ms"])
    """
    result: dict[str, float] = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        _finish(operation, start, result)


def latency_tracked(operation: str | None = None) -> Callable[[F], F]:
    """Decorator form of the trackers; works on sync and async callables."""

    def decorator(func: F) -> F:
        op_name = operation or func.__name__

        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                async with track_latency(op_name):
                    return await func(*args, **kwargs)

            return async_wrapper  # type: ignore

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with track_latency_sync(op_name):
                return func(*args, **kwargs)

        return sync_wrapper  # type: ignore

    return decorator
