"""Performance monitoring for the schema selection function.

Tracks counts and average durations of schema operations (tree builds, filter
runs, source loads), cache hit rates, and how often large schemas caused the
service to yield to the event loop before computing.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from .schema_nodes import SchemaNode


@dataclass
class OperationMetrics:
    """Metrics of one kind of operation."""
    count: int = 0
    total_time: float = 0.0
    errors: int = 0

    @property
    def avg_time(self) -> float:
        return self.total_time / self.count if self.count else 0.0


@dataclass
class PerformanceMetrics:
    """Performance metrics for monitoring."""
    operations: dict[str, OperationMetrics] = field(default_factory=dict)
    cache_hits: int = 0
    cache_misses: int = 0
    deferrals: int = 0


def serialized_size(node: SchemaNode) -> int:
    """Size in bytes of a resolved schema serialized as JSON."""
    return len(json.dumps(node.to_dict(), separators=(",", ":")).encode("utf-8"))


class PerformanceMonitor:
    """Collects timing and cache metrics for schema operations."""

    def __init__(self, large_schema_threshold: int = 100_000):
        """Initialize the monitor.

        Args:
            large_schema_threshold: Serialized size in bytes above which a schema
                counts as large
        """
        self.large_schema_threshold = large_schema_threshold
        self.metrics = PerformanceMetrics()
        self.logger = logging.getLogger(__name__)

    def is_large(self, size: int) -> bool:
        """True if a serialized size in bytes exceeds the threshold."""
        if size > self.large_schema_threshold:
            self.logger.debug(f"Large schema detected: {size} bytes")
            return True
        return False

    def record(self, operation: str, duration: float, error: bool = False) -> None:
        metrics = self.metrics.operations.setdefault(operation, OperationMetrics())
        metrics.count += 1
        metrics.total_time += duration
        if error:
            metrics.errors += 1

    @contextmanager
    def track(self, operation: str) -> Iterator[None]:
        """Time the enclosed block as one ``operation``."""
        start_time = time.time()
        try:
            yield
        except Exception:
            self.record(operation, time.time() - start_time, error=True)
            raise
        duration = time.time() - start_time
        self.record(operation, duration)
        self.logger.debug(f"{operation} completed in {duration:.3f}s")

    def measure_performance(self, func: Callable) -> Callable:
        """Decorator to measure function performance.

        Args:
            func: Function to measure

        Returns:
            Decorated function with performance tracking
        """
        def wrapper(*args, **kwargs):
            with self.track(func.__name__):
                return func(*args, **kwargs)

        return wrapper

    def record_deferral(self) -> None:
        self.metrics.deferrals += 1

    def update_cache_metrics(self, hit: bool) -> None:
        """Update cache hit/miss metrics.

        Args:
            hit: True if cache hit, False if cache miss
        """
        if hit:
            self.metrics.cache_hits += 1
        else:
            self.metrics.cache_misses += 1

    def get_metrics(self) -> dict[str, Any]:
        """Get current performance metrics.

        Returns:
            Dictionary containing performance metrics
        """
        cache_total = self.metrics.cache_hits + self.metrics.cache_misses
        return {
            "operations": {
                name: {
                    "count": metrics.count,
                    "avg_time": metrics.avg_time,
                    "errors": metrics.errors,
                }
                for name, metrics in self.metrics.operations.items()
            },
            "cache_hit_rate": self.metrics.cache_hits / cache_total if cache_total else 0.0,
            "deferrals": self.metrics.deferrals,
            "large_schema_threshold": self.large_schema_threshold,
        }

    def reset_metrics(self) -> None:
        """Reset all performance metrics."""
        self.metrics = PerformanceMetrics()
        self.logger.info("Performance metrics reset")
