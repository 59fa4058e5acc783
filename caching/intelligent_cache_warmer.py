"""
Intelligent Cache Warmer
Runs warming strategies in priority order, either on demand or as a periodic
background job.

Features:
- Strategy pipeline: generate, validate, deduplicate, execute, estimate impact
- A failing strategy is reported and never aborts the pass
- Cancellable background loop; a cancelled pass leaves remaining candidates unwarmed
- Warming history for analytics and reports
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from caching.warming_execution import OUTCOMES, WarmingExecutionAnalytics
from caching.warming_query_generator import WarmingQueryGenerator
from caching.warming_strategy_manager import (
    StrategyExecutionResult, WarmingQuery, WarmingResult, WarmingStrategy, WarmingStrategyManager
)
from config import Settings, settings as default_settings
from monitoring.metrics import CacheMetrics
from utils.logging_config import PerformanceLogger

logger = logging.getLogger(__name__)
perf_logger = PerformanceLogger(__name__)


class IntelligentCacheWarmer:
    """Orchestrates warming strategies against the cache."""

    def __init__(self, strategy_manager: WarmingStrategyManager, query_generator: WarmingQueryGenerator,
                 execution: WarmingExecutionAnalytics, config: Optional[Settings] = None,
                 metrics_collector: Optional[CacheMetrics] = None):
        self.strategy_manager = strategy_manager
        self.query_generator = query_generator
        self.execution = execution
        self.settings = config or default_settings
        self.metrics_collector = metrics_collector

        self.warming_active = False
        self._warming_task: Optional[asyncio.Task] = None
        self._pass_lock = asyncio.Lock()
        self.last_results: List[WarmingResult] = []

    async def execute_intelligent_warming(self) -> List[WarmingResult]:
        """Run every enabled strategy once, lowest priority number first."""
        async with self._pass_lock:
            results = []
            with perf_logger.performance_context("intelligent_cache_warming"):
                # Snapshot taken once so the whole pass sees one configuration
                for strategy_name, strategy in self.strategy_manager.get_enabled_strategies():
                    try:
                        results.append(await self._run_strategy(strategy_name, strategy))
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.error(f"Cache warming strategy {strategy_name} failed: {e}")
                        results.append(WarmingResult(
                            strategy=strategy_name,
                            total_queries=0,
                            successful=0,
                            failed=1,
                            skipped=0,
                            already_cached=0,
                            execution_time_ms=0
                        ))

            self.last_results = results
            return results

    async def execute_strategy(self, strategy_name: str) -> WarmingResult:
        """Run a single strategy by name, regardless of whether it is enabled."""
        strategy = self.strategy_manager.require_strategy(strategy_name)
        return await self._run_strategy(strategy_name, strategy)

    async def _run_strategy(self, strategy_name: str, strategy: WarmingStrategy) -> WarmingResult:
        start_time = time.perf_counter()

        generated = await self.query_generator.generate_for_strategy(strategy_name, strategy.config)
        valid, invalid = self.query_generator.validate_queries(generated)
        if invalid:
            logger.info(f"Strategy {strategy_name}: dropped {len(invalid)} invalid warming queries")

        queries = self.query_generator.deduplicate_queries(valid, self.settings.warming_dedup_threshold)
        return await self._execute(strategy_name, queries, start_time)

    async def warm_specific_queries(self, queries: List[WarmingQuery]) -> WarmingResult:
        """Warm caller-supplied queries through the same validate/dedupe/execute path."""
        start_time = time.perf_counter()
        valid, _ = self.query_generator.validate_queries(queries)
        deduplicated = self.query_generator.deduplicate_queries(valid, self.settings.warming_dedup_threshold)
        return await self._execute("manual", deduplicated, start_time)

    async def _execute(self, strategy_name: str, queries: List[WarmingQuery], start_time: float) -> WarmingResult:
        execution_result: StrategyExecutionResult = await self.execution.execute_warming_queries(queries)
        execution_time_ms = (time.perf_counter() - start_time) * 1000

        impact = self.execution.estimate_warming_impact(queries, execution_result)
        self.execution.record_execution(strategy_name, queries, execution_result, execution_time_ms, impact)

        perf_logger.log_warming_result(
            strategy_name,
            len(queries),
            execution_result.warmed,
            execution_result.failed,
            execution_result.skipped,
            execution_result.already_cached,
            execution_time_ms=execution_time_ms
        )

        if self.metrics_collector is not None:
            for status in OUTCOMES:
                self.metrics_collector.record_cache_warming(strategy_name, status, getattr(execution_result, status))

        return WarmingResult(
            strategy=strategy_name,
            total_queries=len(queries),
            successful=execution_result.warmed,
            failed=execution_result.failed,
            skipped=execution_result.skipped,
            already_cached=execution_result.already_cached,
            execution_time_ms=execution_time_ms,
            estimated_impact=impact
        )

    # ------------------------------------------------------------------
    # Background job
    # ------------------------------------------------------------------

    async def start(self):
        """Start the periodic warming job."""
        if self.warming_active:
            logger.warning("Cache warming service already active")
            return

        if not self.settings.warming_enabled:
            logger.info("Cache warming disabled by configuration")
            return

        self.warming_active = True
        self._warming_task = asyncio.create_task(self._warming_loop())
        logger.info(f"Intelligent cache warming started (interval {self.settings.warming_interval_seconds}s)")

    async def stop(self):
        """Stop the periodic job, cancelling any pass in progress."""
        self.warming_active = False

        if self._warming_task:
            self._warming_task.cancel()
            await asyncio.gather(self._warming_task, return_exceptions=True)
            self._warming_task = None

        logger.info("Intelligent cache warming stopped")

    @property
    def is_running(self) -> bool:
        return self._warming_task is not None and not self._warming_task.done()

    async def _warming_loop(self):
        while self.warming_active:
            try:
                results = await self.execute_intelligent_warming()
                warmed = sum(r.successful for r in results)
                logger.info(f"Warming pass complete: {warmed} entries warmed across {len(results)} strategies")

                await asyncio.sleep(self.settings.warming_interval_seconds)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in warming loop: {e}")
                await asyncio.sleep(60)

    def get_status(self) -> Dict[str, Any]:
        return {
            "active": self.warming_active,
            "running": self.is_running,
            "interval_seconds": self.settings.warming_interval_seconds,
            "last_results": [r.to_dict() for r in self.last_results],
            "strategies": self.strategy_manager.get_strategy_statistics(),
            "performance": perf_logger.get_performance_summary(),
        }
