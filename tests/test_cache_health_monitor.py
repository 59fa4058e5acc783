"""
Tests for cache health, diagnostics and optimization advice.
"""
import pytest

from monitoring.cache_health_monitor import CacheHealthMonitor
from caching.cache_operations import EnhancedCacheOperations


class TestHealthCheck:

    @pytest.mark.asyncio
    async def test_healthy_store(self, health_monitor, metrics_collector):
        health = await health_monitor.health_check()

        assert health["healthy"] is True
        assert health["latency_ms"] >= 0
        assert health["memory_pressure"] == 0.0
        assert metrics_collector.registry.get_sample_value("cache_opt_memory_pressure_ratio") == 0.0

    @pytest.mark.asyncio
    async def test_unreachable_store(self, unavailable_cache_ops, ttl_manager, test_settings):
        monitor = CacheHealthMonitor(unavailable_cache_ops, ttl_manager, config=test_settings)

        health = await monitor.health_check()

        assert health["healthy"] is False
        assert "Connection refused" in health["error"]
        assert health["memory_pressure"] == 0.0

    @pytest.mark.asyncio
    async def test_no_client(self, ttl_manager, compression_manager, test_settings):
        ops = EnhancedCacheOperations(None, ttl_manager, compression_manager, config=test_settings)
        monitor = CacheHealthMonitor(ops, ttl_manager, config=test_settings)

        health = await monitor.health_check()

        assert health == {
            "healthy": False,
            "memory_pressure": 0.0,
            "compression_efficiency": 0.0,
            "ttl_optimization": 0.0,
            "error": "Redis client not initialized",
        }
        assert await monitor.get_cache_sizes() == {}


class TestSizesAndPressure:

    @pytest.mark.asyncio
    async def test_cache_sizes_per_prefix(self, health_monitor, fake_redis):
        for i in range(3):
            fake_redis.data[f"emb:opt:{i}"] = "{}"
        fake_redis.data["search:opt:x"] = "{}"
        fake_redis.data["someone:else"] = "{}"

        sizes = await health_monitor.get_cache_sizes()

        assert sizes == {"embedding": 3, "search": 1, "classification": 0, "contextual": 0}

    @pytest.mark.asyncio
    async def test_memory_pressure_from_entry_estimate(self, cache_ops, ttl_manager, fake_redis, test_settings):
        settings = test_settings.model_copy(update={"cache_capacity_mb": 1, "cache_avg_entry_bytes": 1024})
        monitor = CacheHealthMonitor(cache_ops, ttl_manager, config=settings)
        for i in range(256):
            fake_redis.data[f"ctx:opt:{i}"] = "{}"

        assert await monitor.get_memory_pressure() == pytest.approx(0.25)

        for i in range(256, 2048):
            fake_redis.data[f"ctx:opt:{i}"] = "{}"
        assert await monitor.get_memory_pressure() == 1.0


class TestEfficiency:

    @pytest.mark.asyncio
    async def test_compression_efficiency(self, health_monitor, cache_ops):
        await cache_ops.set_optimized("big", "y" * 40000, "contextual")

        efficiency = health_monitor.calculate_compression_efficiency()

        stats = cache_ops.metrics["contextual"].compression_stats
        assert 0 < efficiency < 1
        assert efficiency == pytest.approx(stats.space_saved / stats.original_bytes)

    def test_ttl_optimization(self, health_monitor, ttl_manager):
        for _ in range(21):
            ttl_manager.record_access("hot", "s", 1.0, True)
        ttl_manager.record_access("cold", "s", 1.0, True)

        assert health_monitor.calculate_ttl_optimization() == 0.5

    @pytest.mark.asyncio
    async def test_optimize_cleans_old_patterns(self, health_monitor, ttl_manager, pattern_ager):
        ttl_manager.record_access("old", "s", 1.0, True)
        ttl_manager.record_access("new", "s", 1.0, True)
        pattern_ager(ttl_manager, "old", 200)

        result = await health_monitor.optimize()

        assert result == {
            "patterns_cleaned_up": 1,
            "memory_saved_bytes_estimate": 200,
            "performance_improvement_estimate": 0.05,
        }
        assert ttl_manager.get_pattern("old") is None


class TestAdvice:

    @pytest.mark.asyncio
    async def test_recommendations_for_struggling_cache(self, health_monitor):
        health = {
            "healthy": True,
            "latency_ms": 250,
            "memory_pressure": 0.9,
            "compression_efficiency": 0.1,
            "ttl_optimization": 0.1,
        }

        recommendations = await health_monitor.get_performance_recommendations(health)

        assert any("memory pressure" in r for r in recommendations)
        assert any("Low hit rate for search" in r for r in recommendations)
        assert any("250ms" in r for r in recommendations)

    @pytest.mark.asyncio
    async def test_optimal_cache(self, health_monitor, cache_ops):
        for metrics in cache_ops.metrics.values():
            metrics.hit_rate = 0.95
        health = {
            "healthy": True,
            "latency_ms": 1,
            "memory_pressure": 0.1,
            "compression_efficiency": 0.6,
            "ttl_optimization": 0.8,
        }

        assert await health_monitor.get_performance_recommendations(health) == [
            "Cache performance is optimal. No recommendations at this time."
        ]

    @pytest.mark.asyncio
    async def test_predict_performance(self, health_monitor):
        prediction = await health_monitor.predict_performance(hours_ahead=168)

        assert prediction["predicted_hit_rate"] == 0.4
        assert prediction["confidence"] == 0.5
        assert prediction["recommendations"]

    @pytest.mark.asyncio
    async def test_optimization_strategy(self, health_monitor):
        strategy = await health_monitor.generate_optimization_strategy()

        assert "Implement aggressive cache warming for high-priority queries" in strategy["immediate"]
        assert len(strategy["long_term"]) == 3
        assert strategy["estimated_impact"]["memory_reduction"] == 0.1

    @pytest.mark.asyncio
    async def test_score_for_cold_cache(self, health_monitor):
        assert await health_monitor.calculate_performance_score() == {"score": 50, "grade": "F"}

    @pytest.mark.asyncio
    async def test_score_for_hot_cache(self, health_monitor, cache_ops):
        for metrics in cache_ops.metrics.values():
            metrics.hit_rate = 1.0

        assert await health_monitor.calculate_performance_score() == {"score": 90, "grade": "A"}

    @pytest.mark.asyncio
    async def test_detailed_metrics_and_usage(self, health_monitor, cache_ops):
        await cache_ops.set_optimized("q", {"a": 1}, "classification")
        await cache_ops.get_optimized("q", "classification")
        await cache_ops.get_optimized("missing", "classification")

        detailed = await health_monitor.get_detailed_metrics()
        usage = health_monitor.get_usage_statistics()

        assert detailed["cache_size"]["classification"] == 1
        assert detailed["health"]["healthy"]
        assert usage["total_requests"] == 2
        assert usage["hit_rate"] == 0.5
        assert usage["ttl_patterns"] == 2
