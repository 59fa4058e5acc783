"""
Cache Health Monitor
Health, diagnostics and optimization advice for the adaptive cache.

Features:
- Store latency, memory pressure, compression efficiency and TTL optimization
- SCAN-based per content type cache sizes
- Usage pattern cleanup with savings estimate
- Performance recommendations, prediction and optimization strategy
- Letter-graded performance score
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from redis.exceptions import RedisError

from caching.adaptive_ttl_manager import AdaptiveTTLManager
from caching.cache_operations import EnhancedCacheOperations, MemoryPressureLevel
from caching.redis_connection import ping_store
from caching.scan_utils import count_keys
from config import Settings, settings as default_settings
from monitoring.metrics import CacheMetrics
from utils.logging_config import log_performance

logger = logging.getLogger(__name__)

PATTERN_MEMORY_BYTES = 200
BYTES_PER_MB = 1024 * 1024


class CacheHealthMonitor:
    """Health and analytics surface over the cache facade and usage tracker."""

    def __init__(self, cache_operations: EnhancedCacheOperations, ttl_manager: AdaptiveTTLManager,
                 config: Optional[Settings] = None, metrics_collector: Optional[CacheMetrics] = None):
        self.cache_operations = cache_operations
        self.ttl_manager = ttl_manager
        self.settings = config or default_settings
        self.metrics_collector = metrics_collector

    @property
    def client(self):
        return self.cache_operations.client

    async def get_cache_sizes(self) -> Dict[str, int]:
        """Key count per content type, counted with SCAN."""
        if self.client is None:
            return {}

        sizes: Dict[str, int] = {}
        try:
            for cache_type in self.cache_operations.configs:
                pattern = f"{self.cache_operations.key_prefix(cache_type)}*"
                sizes[cache_type] = await count_keys(self.client, pattern, self.settings.cache_scan_batch_size)
        except (RedisError, OSError) as e:
            logger.error(f"Error getting cache sizes: {e}")

        return sizes

    async def get_memory_pressure(self) -> float:
        """Estimated bytes in use over the configured capacity, clamped to [0, 1]."""
        if self.client is None:
            return 0.0

        try:
            sizes = await self.get_cache_sizes()
            total_bytes = sum(sizes.values()) * self.settings.cache_avg_entry_bytes
            usage_mb = total_bytes / BYTES_PER_MB
            return min(usage_mb / max(self.settings.cache_capacity_mb, 1), 1.0)
        except (RedisError, OSError) as e:
            logger.error(f"Error estimating memory pressure: {e}")
            return 0.5

    def calculate_compression_efficiency(self) -> float:
        """Share of written bytes saved by compression across all content types."""
        total_saved = 0
        total_original = 0
        for metrics in self.cache_operations.metrics.values():
            stats = metrics.compression_stats
            total_saved += stats.space_saved
            total_original += stats.original_bytes

        return total_saved / total_original if total_original > 0 else 0.0

    def calculate_ttl_optimization(self) -> float:
        """Ratio of high-usage keys among tracked patterns."""
        usage_stats = self.ttl_manager.get_usage_stats()
        if usage_stats["total_patterns"] == 0:
            return 0.0
        return usage_stats["high_usage_keys"] / usage_stats["total_patterns"]

    async def health_check(self) -> Dict[str, Any]:
        unhealthy = {
            "healthy": False,
            "memory_pressure": 0.0,
            "compression_efficiency": 0.0,
            "ttl_optimization": 0.0,
        }

        if self.client is None:
            return {**unhealthy, "error": "Redis client not initialized"}

        ping = await ping_store(self.client)
        if not ping["healthy"]:
            return {**unhealthy, "error": ping["error"]}

        memory_pressure = await self.get_memory_pressure()
        if self.metrics_collector is not None:
            self.metrics_collector.update_health(memory_pressure, ping["latency_ms"])

        return {
            "healthy": True,
            "latency_ms": ping["latency_ms"],
            "memory_pressure": memory_pressure,
            "compression_efficiency": self.calculate_compression_efficiency(),
            "ttl_optimization": self.calculate_ttl_optimization(),
        }

    @log_performance("cache_pattern_cleanup")
    async def optimize(self) -> Dict[str, Any]:
        """Drop stale usage patterns and estimate what that saved."""
        patterns_cleaned_up = self.ttl_manager.cleanup_old_patterns(self.settings.cache_pattern_retention_hours)

        return {
            "patterns_cleaned_up": patterns_cleaned_up,
            "memory_saved_bytes_estimate": patterns_cleaned_up * PATTERN_MEMORY_BYTES,
            "performance_improvement_estimate": 0.05 if patterns_cleaned_up > 0 else 0.0,
        }

    async def get_detailed_metrics(self) -> Dict[str, Any]:
        return {
            "metrics": self.cache_operations.get_metrics(),
            "cache_size": await self.get_cache_sizes(),
            "health": await self.health_check(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def get_usage_statistics(self) -> Dict[str, Any]:
        metrics = self.cache_operations.metrics.values()
        total_hits = sum(m.hits for m in metrics)
        total_misses = sum(m.misses for m in metrics)
        usage_stats = self.ttl_manager.get_usage_stats()

        return {
            "total_requests": total_hits + total_misses,
            "total_hits": total_hits,
            "total_misses": total_misses,
            "hit_rate": total_hits / (total_hits + total_misses or 1),
            "ttl_patterns": usage_stats["total_patterns"],
            "high_usage_keys": usage_stats["high_usage_keys"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def _average_hit_rate(self) -> float:
        metrics = self.cache_operations.metrics
        if not metrics:
            return 0.0
        return sum(m.hit_rate for m in metrics.values()) / len(metrics)

    async def get_performance_recommendations(self, health: Optional[Dict[str, Any]] = None) -> List[str]:
        health = health or await self.health_check()
        recommendations = []

        if health["memory_pressure"] > MemoryPressureLevel.HIGH:
            recommendations.append(
                "High memory pressure detected. Consider increasing cache limits or "
                "implementing more aggressive TTL policies."
            )

        for cache_type, metrics in self.cache_operations.metrics.items():
            if metrics.hit_rate < 0.6:
                recommendations.append(
                    f"Low hit rate for {cache_type} cache ({metrics.hit_rate * 100:.1f}%). "
                    f"Consider warming cache or adjusting TTL settings."
                )

        if health["compression_efficiency"] < 0.3:
            recommendations.append(
                "Low compression efficiency. Consider adjusting compression thresholds "
                "or enabling compression for more cache types."
            )

        if health["ttl_optimization"] < 0.5:
            recommendations.append(
                "TTL optimization could be improved. Review usage patterns and consider adaptive TTL strategies."
            )

        latency = health.get("latency_ms")
        if latency and latency > 100:
            recommendations.append(
                f"High Redis latency detected ({latency:.0f}ms). Check Redis connection and server performance."
            )

        if not recommendations:
            recommendations.append("Cache performance is optimal. No recommendations at this time.")

        return recommendations

    async def predict_performance(self, hours_ahead: float = 24) -> Dict[str, Any]:
        """Projected hit rate and memory usage without maintenance."""
        health = await self.health_check()

        # 10% degradation over a week
        degradation_factor = 1 - (hours_ahead / 168) * 0.1
        predicted_hit_rate = max(self._average_hit_rate() * degradation_factor, 0.4)

        # 2% growth per day
        predicted_memory_usage = min(health["memory_pressure"] * 1.02 ** (hours_ahead / 24), 1.0)

        return {
            "predicted_hit_rate": predicted_hit_rate,
            "predicted_memory_usage": predicted_memory_usage,
            "confidence": max(1 - hours_ahead / 168, 0.5),
            "recommendations": await self.get_performance_recommendations(health),
        }

    async def generate_optimization_strategy(self) -> Dict[str, Any]:
        health = await self.health_check()

        immediate: List[str] = []
        short_term: List[str] = []
        long_term: List[str] = []

        if health["memory_pressure"] > MemoryPressureLevel.CRITICAL:
            immediate.append("Clear expired keys and run memory optimization")

        if self._average_hit_rate() < 0.5:
            immediate.append("Implement aggressive cache warming for high-priority queries")

        if health["compression_efficiency"] < 0.4:
            short_term.append("Optimize compression settings and thresholds")

        if health["ttl_optimization"] < 0.6:
            short_term.append("Implement adaptive TTL strategies based on usage patterns")

        long_term.append("Implement predictive cache warming based on user behavior patterns")
        long_term.append("Consider cache hierarchy with multiple tiers")
        long_term.append("Implement cache analytics dashboard for ongoing monitoring")

        latency = health.get("latency_ms")
        return {
            "immediate": immediate,
            "short_term": short_term,
            "long_term": long_term,
            "estimated_impact": {
                "hit_rate_improvement": len(immediate) * 0.1 + len(short_term) * 0.05 + len(long_term) * 0.02,
                "memory_reduction": 0.2 if health["memory_pressure"] > MemoryPressureLevel.HIGH else 0.1,
                "latency_improvement": 0.3 if latency and latency > 50 else 0.1,
            },
        }

    async def calculate_performance_score(self) -> Dict[str, Any]:
        """
        0-100 score: hit rate (40), store health (30) and average response
        time (30, losing a point per 10ms), with an A-F grade.
        """
        health = await self.health_check()
        patterns = self.ttl_manager.export_patterns().values()
        avg_response_time = (
            sum(p["avg_response_time_ms"] for p in patterns) / len(patterns) if patterns else 100.0
        )

        score = self._average_hit_rate() * 40
        score += 30 if health["healthy"] else 0
        score += max(0.0, 30 - avg_response_time / 10)

        if score >= 90:
            grade = "A"
        elif score >= 80:
            grade = "B"
        elif score >= 70:
            grade = "C"
        elif score >= 60:
            grade = "D"
        else:
            grade = "F"

        return {"score": round(score), "grade": grade}
