"""
Monitoring for the cache optimization subsystem: Prometheus metrics and the
cache health monitor (monitoring.cache_health_monitor).
"""

from .metrics import CacheMetrics

__all__ = ['CacheMetrics']
