"""
Tests for the intelligent cache warmer: strategy passes and the background job.
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from caching.intelligent_cache_warmer import IntelligentCacheWarmer
from caching.warming_query_generator import FREQUENT_QUERIES
from utils.exceptions import StrategyNotFoundError


class TestWarmingPass:
    """execute_intelligent_warming."""

    @pytest.mark.asyncio
    async def test_runs_enabled_strategies_in_priority_order(self, warmer):
        results = await warmer.execute_intelligent_warming()

        assert [r.strategy for r in results] == [
            "usage_patterns", "frequency_analysis", "predictive_warming",
            "domain_specific", "proactive_refresh",
        ]
        frequency = results[1]
        assert frequency.total_queries == len(FREQUENT_QUERIES)
        assert frequency.successful == len(FREQUENT_QUERIES)
        assert frequency.estimated_impact.response_time_improvement == 50 * len(FREQUENT_QUERIES)

    @pytest.mark.asyncio
    async def test_disabled_strategies_not_run(self, warmer, strategy_manager):
        for name in ("usage_patterns", "predictive_warming", "domain_specific", "proactive_refresh"):
            strategy_manager.set_strategy_enabled(name, False)

        results = await warmer.execute_intelligent_warming()

        assert [r.strategy for r in results] == ["frequency_analysis"]

    @pytest.mark.asyncio
    async def test_failing_strategy_does_not_abort_pass(self, warmer, query_generator):
        original = query_generator.generate_for_strategy

        async def generate(name, config):
            if name == "frequency_analysis":
                raise RuntimeError("generator exploded")
            return await original(name, config)

        with patch.object(query_generator, "generate_for_strategy", side_effect=generate):
            results = await warmer.execute_intelligent_warming()

        by_name = {r.strategy: r for r in results}
        assert len(results) == 5
        assert by_name["frequency_analysis"].failed == 1
        assert by_name["frequency_analysis"].total_queries == 0
        assert by_name["domain_specific"].successful > 0

    @pytest.mark.asyncio
    async def test_second_pass_finds_entries_cached(self, warmer):
        await warmer.execute_intelligent_warming()
        results = await warmer.execute_intelligent_warming()

        frequency = next(r for r in results if r.strategy == "frequency_analysis")
        assert frequency.already_cached == len(FREQUENT_QUERIES)
        assert frequency.successful == 0

    @pytest.mark.asyncio
    async def test_history_and_metrics_recorded(self, warmer, execution, metrics_collector):
        await warmer.execute_intelligent_warming()

        assert len(execution.history) == 5
        assert metrics_collector.registry.get_sample_value(
            "cache_opt_warming_operations_total", {"strategy": "frequency_analysis", "status": "warmed"}
        ) == len(FREQUENT_QUERIES)
        assert warmer.get_status()["last_results"][1]["strategy"] == "frequency_analysis"


class TestSingleStrategy:

    @pytest.mark.asyncio
    async def test_execute_named_strategy(self, warmer):
        result = await warmer.execute_strategy("domain_specific")

        assert result.strategy == "domain_specific"
        assert result.successful == 15

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, warmer):
        with pytest.raises(StrategyNotFoundError):
            await warmer.execute_strategy("nope")

    @pytest.mark.asyncio
    async def test_warm_specific_queries(self, warmer, query_factory):
        queries = query_factory(3)
        queries.append(queries[0])

        result = await warmer.warm_specific_queries(queries)

        assert result.strategy == "manual"
        assert result.total_queries == 3
        assert result.successful == 3

    @pytest.mark.asyncio
    async def test_usage_patterns_warm_missed_requests(self, warmer, cache_ops, strategy_manager):
        strategy_manager.update_strategy("usage_patterns", config={"min_access_count": 2})
        for _ in range(2):
            await cache_ops.get_optimized("what is adaptive ttl", "search")

        result = await warmer.execute_strategy("usage_patterns")

        assert result.successful == 1
        assert await cache_ops.exists("what is adaptive ttl", "search")


class TestBackgroundJob:
    """start/stop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, warmer):
        await warmer.start()
        assert warmer.is_running

        await asyncio.sleep(0)
        await warmer.stop()

        assert not warmer.is_running
        assert not warmer.get_status()["active"]

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_task(self, warmer):
        await warmer.start()
        task = warmer._warming_task
        await warmer.start()

        assert warmer._warming_task is task
        await warmer.stop()

    @pytest.mark.asyncio
    async def test_disabled_by_configuration(self, strategy_manager, query_generator, execution, test_settings):
        settings = test_settings.model_copy(update={"warming_enabled": False})
        warmer = IntelligentCacheWarmer(strategy_manager, query_generator, execution, config=settings)

        await warmer.start()

        assert not warmer.is_running

    @pytest.mark.asyncio
    async def test_loop_runs_pass_then_waits(self, warmer):
        with patch.object(warmer, "execute_intelligent_warming", new=AsyncMock(return_value=[])) as run:
            await warmer.start()
            for _ in range(5):
                await asyncio.sleep(0)
            await warmer.stop()

        assert run.await_count == 1
