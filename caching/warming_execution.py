"""
Cache Warming Execution and Analytics
Runs warming queries against the cache and accounts for what they achieved.

Features:
- Bounded batch execution with inter-batch pause
- Producer-backed warming with placeholder population for non-embedding types
- Cost/benefit gate for low-priority entries under memory pressure
- Impact, ROI and break-even estimation
- Warming history with performance analysis, reports and schedule prediction
"""

import asyncio
import logging
import math
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, List, Optional, Callable

from caching.cache_operations import CachePriority, EnhancedCacheOperations, MemoryPressureLevel
from caching.adaptive_ttl_manager import AdaptiveTTLManager
from caching.producers import ProducerRegistry
from caching.warming_strategy_manager import StrategyExecutionResult, WarmingImpact, WarmingQuery
from config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

RESPONSE_TIME_SAVED_MS = 50
COST_SAVED_PER_ENTRY = 0.001
EXECUTION_COST_PER_MS = 0.00001
STORAGE_COST_PER_ENTRY = 0.0001
PRODUCTIVITY_VALUE_PER_MS = 0.00005
MAX_HISTORY_ENTRIES = 1000

OUTCOMES = ("warmed", "failed", "skipped", "already_cached")
TIME_OF_DAY_BUCKETS = (("00-06", 0, 6), ("06-12", 6, 12), ("12-18", 12, 18), ("18-24", 18, 24))


@dataclass
class WarmingHistoryEntry:
    """One recorded strategy execution."""
    strategy: str
    timestamp: datetime
    total_queries: int
    warmed: int
    failed: int
    skipped: int
    already_cached: int
    execution_time_ms: float
    hit_rate_improvement: float
    query_types: Dict[str, int] = field(default_factory=dict)
    query_values: Dict[str, float] = field(default_factory=dict)

    @property
    def attempts(self) -> int:
        return self.warmed + self.failed

    @property
    def success_rate(self) -> float:
        return self.warmed / self.attempts if self.attempts else 0.0


def placeholder_data(query: WarmingQuery) -> Dict[str, Any]:
    """Stand-in value for types warmed without a registered producer."""
    if query.type == "search":
        return {"documents": [], "metadata": {"result_count": 0, "search_time": 0}, "cached": True}
    if query.type == "classification":
        return {"type": "technical", "confidence": 0.8, "weights": {"github": 1.5, "web": 0.5}}
    if query.type == "contextual":
        return {"enhanced_query": query.text, "context": query.context}
    return {}


class WarmingExecutionAnalytics:
    """Executes warming queries and tracks warming effectiveness."""

    def __init__(self, cache_operations: EnhancedCacheOperations, ttl_manager: AdaptiveTTLManager,
                 producers: Optional[ProducerRegistry] = None, config: Optional[Settings] = None):
        self.cache_operations = cache_operations
        self.ttl_manager = ttl_manager
        self.producers = producers or ProducerRegistry()
        self.settings = config or default_settings

        self.batch_size = max(1, self.settings.warming_batch_size)
        self.batch_delay_seconds = self.settings.warming_batch_delay_seconds

        self.history: deque = deque(maxlen=MAX_HISTORY_ENTRIES)
        self._active_jobs = 0
        self._queued_queries = 0
        self._last_memory_pressure = 0.0

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_warming_queries(self, queries: List[WarmingQuery],
                                      on_progress: Optional[Callable[[int, int], None]] = None) -> StrategyExecutionResult:
        """Warm queries in batches. Every query lands in exactly one outcome bucket."""
        result = StrategyExecutionResult()
        if not queries:
            return result

        memory_pressure = await self.cache_operations.get_memory_pressure_estimate()
        self._last_memory_pressure = memory_pressure

        self._active_jobs += 1
        self._queued_queries += len(queries)
        completed = 0
        try:
            for start in range(0, len(queries), self.batch_size):
                batch = queries[start:start + self.batch_size]
                outcomes = await asyncio.gather(
                    *(self._process_single_query(query, memory_pressure) for query in batch),
                    return_exceptions=True
                )

                for outcome in outcomes:
                    if isinstance(outcome, BaseException):
                        logger.error(f"Query warming error: {outcome}")
                        outcome = "failed"
                    setattr(result, outcome, getattr(result, outcome) + 1)

                completed += len(batch)
                self._queued_queries -= len(batch)
                if on_progress:
                    on_progress(completed, len(queries))

                if start + self.batch_size < len(queries):
                    await asyncio.sleep(self.batch_delay_seconds)
        finally:
            self._active_jobs -= 1
            self._queued_queries -= len(queries) - completed

        return result

    async def _process_single_query(self, query: WarmingQuery, memory_pressure: float) -> str:
        if not self.should_warm_entry(query.priority, query.type, memory_pressure):
            return "skipped"

        try:
            if query.force_refresh:
                return await self._refresh_query(query)

            producer = self.producers.get(query.type)
            if producer is not None:
                _, was_cached = await producer.generate(query.text, self._producer_options(query))
                return "already_cached" if was_cached else "warmed"

            if await self.cache_operations.exists(query.text, query.type, context=query.context):
                return "already_cached"

            # Embeddings cannot be populated without a real producer
            if query.type == "embedding":
                logger.debug(f"No embedding producer registered, skipping {query.text[:50]!r}")
                return "skipped"

            stored = await self.cache_operations.set_optimized(
                query.text,
                placeholder_data(query),
                query.type,
                session_id=query.session_id,
                user_id=query.user_id,
                context=query.context,
                priority=query.priority
            )
            return "warmed" if stored.success else "failed"

        except Exception as e:
            logger.error(f"Query warming error for {query.text[:50]!r}: {e}")
            return "failed"

    async def _refresh_query(self, query: WarmingQuery) -> str:
        """Recompute a popular entry ahead of expiry. Requires a producer."""
        producer = self.producers.get(query.type)
        if producer is None:
            logger.debug(f"No {query.type} producer registered, leaving refresh candidate {query.text[:50]!r}")
            return "skipped"

        await producer.generate(query.text, self._producer_options(query))
        self.ttl_manager.clear_refresh_flag(
            self.cache_operations.generate_optimized_key(query.text, query.type, query.context)
        )
        return "warmed"

    @staticmethod
    def _producer_options(query: WarmingQuery) -> Dict[str, Any]:
        return {
            "session_id": query.session_id,
            "user_id": query.user_id,
            "context": query.context,
            "priority": query.priority,
            "force_refresh": query.force_refresh,
            "require_stored": True,
        }

    def should_warm_entry(self, priority: int, cache_type: str, memory_pressure: float) -> bool:
        """Cost/benefit gate: is an entry of this priority worth warming right now?"""
        if priority >= CachePriority.CRITICAL:
            return True

        # More selective under memory pressure
        if memory_pressure > MemoryPressureLevel.HIGH:
            return priority >= CachePriority.HIGH

        type_metrics = self.cache_operations.metrics.get(cache_type)
        if type_metrics and type_metrics.hit_rate < 0.6:
            return True

        return priority >= CachePriority.NORMAL

    async def warm_cache_intelligently(self, entries: List[Dict[str, Any]]) -> Dict[str, int]:
        """
        Warm pre-computed data directly. Each entry is a dict with key, data,
        type and optional priority, session_id, context. Highest priority first.
        """
        counts = {outcome: 0 for outcome in OUTCOMES}
        memory_pressure = await self.cache_operations.get_memory_pressure_estimate()

        for entry in sorted(entries, key=lambda e: e.get("priority", CachePriority.NORMAL), reverse=True):
            cache_type = entry["type"]
            priority = entry.get("priority", CachePriority.NORMAL)
            context = entry.get("context")
            try:
                if await self.cache_operations.exists(entry["key"], cache_type, context=context):
                    counts["already_cached"] += 1
                    continue

                if not self.should_warm_entry(priority, cache_type, memory_pressure):
                    counts["skipped"] += 1
                    continue

                stored = await self.cache_operations.set_optimized(
                    entry["key"], entry["data"], cache_type,
                    session_id=entry.get("session_id"), context=context, priority=priority
                )
                counts["warmed" if stored.success else "failed"] += 1

            except Exception as e:
                logger.error(f"Cache warming error: {e}")
                counts["failed"] += 1

        return counts

    # ------------------------------------------------------------------
    # Impact and cost/benefit
    # ------------------------------------------------------------------

    def estimate_warming_impact(self, queries: List[WarmingQuery], result: StrategyExecutionResult) -> WarmingImpact:
        total_value = sum(q.estimated_value for q in queries)
        success_rate = result.warmed / max(1, len(queries))

        return WarmingImpact(
            hit_rate_improvement=(total_value * success_rate) / 1000,
            response_time_improvement=result.warmed * RESPONSE_TIME_SAVED_MS,
            cost_savings=result.warmed * COST_SAVED_PER_ENTRY
        )

    def calculate_cost_benefit(self, queries: List[WarmingQuery], result: StrategyExecutionResult,
                               execution_time_ms: float) -> Dict[str, Any]:
        """ROI of a warming run and the continue/optimize/reduce/stop bucket."""
        execution_cost = execution_time_ms * EXECUTION_COST_PER_MS
        memory_cost = result.warmed * STORAGE_COST_PER_ENTRY
        total_cost = execution_cost + memory_cost

        response_time_improvement = result.warmed * RESPONSE_TIME_SAVED_MS
        total_benefit = result.warmed * COST_SAVED_PER_ENTRY + response_time_improvement * PRODUCTIVITY_VALUE_PER_MS

        roi = (total_benefit - total_cost) / total_cost if total_cost > 0 else 0.0

        cost_per_query = total_cost / max(len(queries), 1)
        benefit_per_warmed = total_benefit / max(result.warmed, 1)
        # None when nothing was warmed: no amount of queries breaks even
        break_even_queries = math.ceil(cost_per_query / benefit_per_warmed) if benefit_per_warmed > 0 else None

        if roi > 2:
            recommendation = "continue"
        elif roi > 0.5:
            recommendation = "optimize"
        elif roi > 0:
            recommendation = "reduce"
        else:
            recommendation = "stop"

        return {
            "total_cost": total_cost,
            "total_benefit": total_benefit,
            "roi": roi,
            "break_even_queries": break_even_queries,
            "recommendation": recommendation,
        }

    # ------------------------------------------------------------------
    # History and analytics
    # ------------------------------------------------------------------

    def record_execution(self, strategy: str, queries: List[WarmingQuery], result: StrategyExecutionResult,
                         execution_time_ms: float, impact: Optional[WarmingImpact] = None) -> WarmingHistoryEntry:
        query_types: Dict[str, int] = defaultdict(int)
        query_values: Dict[str, float] = defaultdict(float)
        for query in queries:
            query_types[query.type] += 1
            query_values[query.type] += query.estimated_value

        entry = WarmingHistoryEntry(
            strategy=strategy,
            timestamp=datetime.now(timezone.utc),
            total_queries=len(queries),
            warmed=result.warmed,
            failed=result.failed,
            skipped=result.skipped,
            already_cached=result.already_cached,
            execution_time_ms=execution_time_ms,
            hit_rate_improvement=(impact or self.estimate_warming_impact(queries, result)).hit_rate_improvement,
            query_types=dict(query_types),
            query_values=dict(query_values)
        )
        self.history.append(entry)
        return entry

    def _history_since(self, time_range_hours: float) -> List[WarmingHistoryEntry]:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=time_range_hours)
        return [entry for entry in self.history if entry.timestamp >= cutoff]

    async def analyze_warming_performance(self, time_range_hours: float = 24,
                                          latency_ms: Optional[float] = None) -> Dict[str, Any]:
        """Warming effectiveness over the recorded history in the time range."""
        entries = self._history_since(time_range_hours)
        memory_pressure = await self.cache_operations.get_memory_pressure_estimate()

        metrics = self.cache_operations.metrics
        avg_hit_rate = sum(m.hit_rate for m in metrics.values()) / len(metrics) if metrics else 0.0

        warmed = sum(e.warmed for e in entries)
        attempts = sum(e.attempts for e in entries)

        adjustments = []
        if avg_hit_rate < 0.7:
            adjustments.append("Increase warming frequency to improve hit rates")
        if memory_pressure > 0.8:
            adjustments.append("Reduce warming scope to manage memory pressure")
        if latency_ms is not None and latency_ms > 100:
            adjustments.append("Optimize warming queries to reduce system load")

        return {
            "total_warming_attempts": sum(e.total_queries for e in entries),
            "success_rate": warmed / attempts if attempts else 0.0,
            "average_execution_time_ms": (
                sum(e.execution_time_ms for e in entries) / len(entries) if entries else 0.0
            ),
            "cache_hit_rate_improvement": sum(e.hit_rate_improvement for e in entries),
            "memory_usage_impact": memory_pressure * 100,
            "recommended_adjustments": adjustments,
        }

    def generate_performance_report(self, time_range_hours: float = 168) -> Dict[str, Any]:
        """Summary, breakdowns and trends of warming runs in the time range."""
        entries = self._history_since(time_range_hours)

        by_strategy: Dict[str, Dict[str, int]] = defaultdict(lambda: {"attempts": 0, "warmed": 0})
        by_type_count: Dict[str, int] = defaultdict(int)
        by_type_value: Dict[str, float] = defaultdict(float)
        by_time: Dict[str, Dict[str, int]] = {label: {"count": 0, "warmed": 0, "attempts": 0}
                                              for label, _, _ in TIME_OF_DAY_BUCKETS}

        for entry in entries:
            by_strategy[entry.strategy]["attempts"] += entry.attempts
            by_strategy[entry.strategy]["warmed"] += entry.warmed

            for query_type, count in entry.query_types.items():
                by_type_count[query_type] += count
                by_type_value[query_type] += entry.query_values.get(query_type, 0.0)

            for label, start_hour, end_hour in TIME_OF_DAY_BUCKETS:
                if start_hour <= entry.timestamp.hour < end_hour:
                    by_time[label]["count"] += entry.total_queries
                    by_time[label]["warmed"] += entry.warmed
                    by_time[label]["attempts"] += entry.attempts

        total_warmed = sum(e.warmed for e in entries)
        total_attempts = sum(e.attempts for e in entries)
        average_success_rate = total_warmed / total_attempts if total_attempts else 0.0

        recommendations = []
        if not entries:
            recommendations.append("No warming runs recorded in this period")
        else:
            if average_success_rate < 0.8:
                recommendations.append("Investigate failing warming queries and producer errors")
            for name, stats in by_strategy.items():
                if stats["attempts"] and stats["warmed"] / stats["attempts"] < 0.5:
                    recommendations.append(f"Review configuration of strategy {name} (low success rate)")
            if sum(e.skipped for e in entries) > total_warmed:
                recommendations.append("Most queries were skipped; consider lowering warming scope")

        return {
            "summary": {
                "total_warming_jobs": len(entries),
                "average_success_rate": average_success_rate,
                "total_queries_warmed": total_warmed,
                "estimated_time_saved_ms": total_warmed * RESPONSE_TIME_SAVED_MS,
                "estimated_cost_savings": total_warmed * COST_SAVED_PER_ENTRY,
            },
            "breakdown": {
                "by_strategy": {
                    name: {
                        "attempts": stats["attempts"],
                        "success_rate": stats["warmed"] / stats["attempts"] if stats["attempts"] else 0.0,
                    }
                    for name, stats in by_strategy.items()
                },
                "by_query_type": {
                    query_type: {"count": count, "avg_value": by_type_value[query_type] / count}
                    for query_type, count in by_type_count.items()
                },
                "by_time_of_day": {
                    label: {
                        "count": stats["count"],
                        "success_rate": stats["warmed"] / stats["attempts"] if stats["attempts"] else 0.0,
                    }
                    for label, stats in by_time.items()
                },
            },
            "trends": {
                "hit_rate_improvement": [e.hit_rate_improvement for e in entries],
                "execution_time": [e.execution_time_ms for e in entries],
            },
            "recommendations": recommendations,
        }

    def get_warming_recommendations(self) -> Dict[str, Any]:
        recommendations = []
        for cache_type, metrics in self.cache_operations.metrics.items():
            if metrics.hit_rate < 0.7:
                recommendations.append(
                    f"Increase warming frequency for {cache_type} queries "
                    f"(current hit rate: {metrics.hit_rate * 100:.1f}%)"
                )
            if metrics.compression_stats.compression_rate < 0.5:
                recommendations.append(f"Enable compression for {cache_type} cache entries for memory savings")

        if not recommendations:
            recommendations.append("Cache performance is optimal - continue current warming strategy")

        usage_stats = self.ttl_manager.get_usage_stats()
        expected_queries = min(50, usage_stats["high_usage_keys"] * 2)

        return {
            "recommendations": recommendations,
            "next_warming_time": datetime.now(timezone.utc) + timedelta(seconds=self.settings.warming_interval_seconds),
            "expected_queries": expected_queries,
            "estimated_benefit": expected_queries * 0.02,
        }

    def get_real_time_metrics(self) -> Dict[str, Any]:
        recent = list(self.history)[-20:]
        total_queries = sum(e.total_queries for e in recent)
        total_time_s = sum(e.execution_time_ms for e in recent) / 1000
        warmed = sum(e.warmed for e in recent)
        attempts = sum(e.attempts for e in recent)

        return {
            "current_jobs": self._active_jobs,
            "queued_queries": self._queued_queries,
            "processing_rate": total_queries / total_time_s if total_time_s > 0 else 0.0,
            "success_rate": warmed / attempts if attempts else 0.0,
            "memory_pressure": self._last_memory_pressure,
            "last_completed_job": recent[-1].timestamp if recent else None,
        }

    @staticmethod
    def predict_optimal_schedule(historical_data: Optional[List[Dict[str, float]]] = None) -> Dict[str, Any]:
        """Hourly warming intensity from a demand profile (business-hours default)."""
        data = historical_data or [
            {"hour": hour, "demand": 0.8 if 9 <= hour <= 17 else 0.3}
            for hour in range(24)
        ]

        schedule = [
            {
                "hour": item["hour"],
                "intensity": min(item["demand"] * 1.5, 1.0),
                "expected_queries": round(item["demand"] * 50),
            }
            for item in data
        ]

        avg_demand = sum(item["demand"] for item in data) / len(data)

        return {
            "schedule": schedule,
            "peak_hours": [item["hour"] for item in data if item["demand"] > 0.7],
            "low_activity_hours": [item["hour"] for item in data if item["demand"] < 0.4],
            "recommended_batch_size": max(3, min(10, round(avg_demand * 10))),
        }
