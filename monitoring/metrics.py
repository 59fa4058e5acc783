"""
Prometheus metrics for the cache optimization subsystem.
Tracks per content type hit/miss counts, operation latency, cache size,
memory pressure and warming outcomes.
"""

import threading
from typing import Optional

from prometheus_client import (
    Counter, Histogram, Gauge, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)


class CacheMetrics:
    """
    Cache performance and efficiency metrics.
    Uses a private registry unless one is supplied.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None, namespace: str = "cache_opt"):
        self.registry = registry or CollectorRegistry()
        self._lock = threading.Lock()

        self.cache_operations_total = Counter(
            f'{namespace}_operations_total',
            'Total cache operations',
            ['content_type', 'operation', 'result'],
            registry=self.registry
        )

        self.cache_hits_total = Counter(
            f'{namespace}_hits_total',
            'Cache hits by content type',
            ['content_type'],
            registry=self.registry
        )

        self.cache_misses_total = Counter(
            f'{namespace}_misses_total',
            'Cache misses by content type',
            ['content_type'],
            registry=self.registry
        )

        self.cache_operation_duration = Histogram(
            f'{namespace}_operation_duration_seconds',
            'Cache operation duration',
            ['content_type', 'operation'],
            buckets=[0.0001, 0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
            registry=self.registry
        )

        self.cache_entries_count = Gauge(
            f'{namespace}_entries_count',
            'Number of entries in cache',
            ['content_type'],
            registry=self.registry
        )

        self.memory_pressure = Gauge(
            f'{namespace}_memory_pressure_ratio',
            'Estimated cache memory pressure (0-1)',
            registry=self.registry
        )

        self.store_latency_seconds = Gauge(
            f'{namespace}_store_latency_seconds',
            'Last measured store round-trip latency',
            registry=self.registry
        )

        self.cache_warming_operations_total = Counter(
            f'{namespace}_warming_operations_total',
            'Cache warming query outcomes',
            ['strategy', 'status'],
            registry=self.registry
        )

    def record_cache_operation(self, content_type: str, operation: str,
                               result: str, duration_seconds: float):
        """Record cache operation metrics."""
        with self._lock:
            self.cache_operations_total.labels(
                content_type=content_type,
                operation=operation,
                result=result
            ).inc()

            self.cache_operation_duration.labels(
                content_type=content_type,
                operation=operation
            ).observe(duration_seconds)

            if result == "hit":
                self.cache_hits_total.labels(content_type=content_type).inc()
            elif result == "miss":
                self.cache_misses_total.labels(content_type=content_type).inc()

    def update_cache_size(self, content_type: str, entries_count: int):
        self.cache_entries_count.labels(content_type=content_type).set(entries_count)

    def update_health(self, memory_pressure: float, latency_ms: Optional[float] = None):
        self.memory_pressure.set(memory_pressure)
        if latency_ms is not None:
            self.store_latency_seconds.set(latency_ms / 1000)

    def record_cache_warming(self, strategy: str, status: str, count: int = 1):
        """Record warming outcomes for a strategy."""
        if count <= 0:
            return
        with self._lock:
            self.cache_warming_operations_total.labels(strategy=strategy, status=status).inc(count)

    def export(self) -> bytes:
        """Metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST
