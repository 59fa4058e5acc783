"""
Cache Warming Strategy Management
Warming strategies, their runtime configuration and the data types shared by
the warming pipeline.

Features:
- Five built-in strategies, lower priority number runs first
- Runtime enable/disable and config updates with per-strategy validation
- Recommended configuration derived from live system metrics
- Copy-on-write updates so a warming pass never sees a half-applied config
"""

import copy
import logging
import threading
from typing import Dict, Any, List, Optional, Tuple
from dataclasses import dataclass, field, replace

from utils.exceptions import StrategyNotFoundError, WarmingValidationError

logger = logging.getLogger(__name__)

QUERY_SOURCES = ("usage_pattern", "frequency_analysis", "predictive", "manual", "proactive_refresh")


@dataclass(frozen=True)
class WarmingStrategy:
    """A named warming strategy. Instances are never mutated in place."""
    name: str
    description: str
    priority: int
    enabled: bool
    config: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "priority": self.priority,
            "enabled": self.enabled,
            "config": dict(self.config),
        }


@dataclass
class WarmingQuery:
    """A candidate request to pre-compute and cache."""
    text: str
    type: str
    priority: int
    estimated_value: float
    source: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    context: Optional[str] = None
    # Bypass the already-cached check and recompute through a producer
    force_refresh: bool = False


@dataclass
class WarmingImpact:
    hit_rate_improvement: float = 0.0
    response_time_improvement: float = 0.0
    cost_savings: float = 0.0


@dataclass
class WarmingResult:
    """Outcome of one strategy execution."""
    strategy: str
    total_queries: int
    successful: int
    failed: int
    skipped: int
    already_cached: int
    execution_time_ms: float
    estimated_impact: WarmingImpact = field(default_factory=WarmingImpact)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "total_queries": self.total_queries,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "already_cached": self.already_cached,
            "execution_time_ms": self.execution_time_ms,
            "estimated_impact": {
                "hit_rate_improvement": self.estimated_impact.hit_rate_improvement,
                "response_time_improvement": self.estimated_impact.response_time_improvement,
                "cost_savings": self.estimated_impact.cost_savings,
            },
        }


@dataclass
class StrategyExecutionResult:
    warmed: int = 0
    failed: int = 0
    skipped: int = 0
    already_cached: int = 0

    @property
    def total(self) -> int:
        return self.warmed + self.failed + self.skipped + self.already_cached


def _default_strategies() -> Dict[str, WarmingStrategy]:
    return {
        "usage_patterns": WarmingStrategy(
            name="Usage Pattern Analysis",
            description="Warm cache based on historical usage patterns",
            priority=1,
            enabled=True,
            config={"min_access_count": 10, "lookback_hours": 168, "max_queries": 50}
        ),
        "frequency_analysis": WarmingStrategy(
            name="Query Frequency Analysis",
            description="Identify and cache frequently requested queries",
            priority=2,
            enabled=True,
            config={"frequency_threshold": 5, "time_window": 24, "max_queries": 30}
        ),
        "predictive_warming": WarmingStrategy(
            name="Predictive Cache Warming",
            description="Predict likely queries based on current trends",
            priority=3,
            enabled=True,
            config={"prediction_window": 4, "confidence_threshold": 0.7, "max_queries": 20}
        ),
        "domain_specific": WarmingStrategy(
            name="Domain-Specific Warming",
            description="Cache domain-specific queries based on current context",
            priority=4,
            enabled=True,
            config={"domains": ["technical", "business", "operational"], "queries_per_domain": 10}
        ),
        "proactive_refresh": WarmingStrategy(
            name="Proactive Refresh",
            description="Refresh entries nearing expiration with high usage",
            priority=5,
            enabled=True,
            config={"refresh_threshold": 0.8, "min_usage_count": 5}
        ),
    }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_positive(config: Dict[str, Any], name: str, errors: List[str]):
    value = config.get(name)
    if not _is_number(value) or value < 1:
        errors.append(f"{name} must be a positive number")


def _check_fraction(config: Dict[str, Any], name: str, errors: List[str]):
    value = config.get(name)
    if not _is_number(value) or value < 0 or value > 1:
        errors.append(f"{name} must be between 0 and 1")


class WarmingStrategyManager:
    """
    Registry of warming strategies.

    Every mutation builds a new WarmingStrategy and swaps it in under a lock;
    readers get whole snapshots.
    """

    def __init__(self, strategies: Optional[Dict[str, WarmingStrategy]] = None):
        self._strategies: Dict[str, WarmingStrategy] = dict(strategies or _default_strategies())
        self._lock = threading.Lock()

    def get_strategies(self) -> Dict[str, WarmingStrategy]:
        with self._lock:
            return dict(self._strategies)

    def get_enabled_strategies(self) -> List[Tuple[str, WarmingStrategy]]:
        """Enabled strategies sorted by priority (lowest first)."""
        with self._lock:
            enabled = [(name, s) for name, s in self._strategies.items() if s.enabled]
        return sorted(enabled, key=lambda item: item[1].priority)

    def get_strategy(self, name: str) -> Optional[WarmingStrategy]:
        with self._lock:
            return self._strategies.get(name)

    def require_strategy(self, name: str) -> WarmingStrategy:
        strategy = self.get_strategy(name)
        if strategy is None:
            raise StrategyNotFoundError(name)
        return strategy

    def update_strategy(self, name: str, priority: Optional[int] = None, enabled: Optional[bool] = None,
                        description: Optional[str] = None, config: Optional[Dict[str, Any]] = None,
                        validate: bool = True) -> bool:
        """Merge updates into a strategy. Config keys are merged, not replaced."""
        with self._lock:
            current = self._strategies.get(name)
            if current is None:
                return False

            merged_config = {**copy.deepcopy(current.config), **(config or {})}
            if validate and config:
                errors = self._validate(name, merged_config)
                if errors:
                    raise WarmingValidationError(f"Invalid config for strategy '{name}'", errors=errors)

            changes: Dict[str, Any] = {"config": merged_config}
            if priority is not None:
                changes["priority"] = priority
            if enabled is not None:
                changes["enabled"] = enabled
            if description is not None:
                changes["description"] = description

            self._strategies[name] = replace(current, **changes)

        logger.info(f"Updated warming strategy {name}")
        return True

    def set_strategy_enabled(self, name: str, enabled: bool) -> bool:
        with self._lock:
            current = self._strategies.get(name)
            if current is None:
                return False
            self._strategies[name] = replace(current, enabled=enabled)
        return True

    def add_strategy(self, name: str, strategy: WarmingStrategy) -> bool:
        with self._lock:
            if name in self._strategies:
                return False
            self._strategies[name] = replace(strategy, config=copy.deepcopy(strategy.config))
        return True

    def remove_strategy(self, name: str) -> bool:
        with self._lock:
            return self._strategies.pop(name, None) is not None

    def get_strategy_statistics(self) -> Dict[str, Any]:
        with self._lock:
            strategies = list(self._strategies.items())

        enabled = [(name, s) for name, s in strategies if s.enabled]
        average_priority = sum(s.priority for _, s in enabled) / len(enabled) if enabled else 0
        most_important = min(enabled, key=lambda item: item[1].priority)[0] if enabled else "none"

        return {
            "total_strategies": len(strategies),
            "enabled_strategies": len(enabled),
            "average_priority": average_priority,
            "most_important_strategy": most_important,
            "strategy_breakdown": {
                name: {"enabled": s.enabled, "priority": s.priority}
                for name, s in strategies
            },
        }

    def validate_strategy_config(self, name: str, config: Dict[str, Any]) -> Dict[str, Any]:
        """Validate a full config for a strategy. Returns {valid, errors}."""
        if self.get_strategy(name) is None:
            return {"valid": False, "errors": [f"Strategy '{name}' does not exist"]}

        errors = self._validate(name, config)
        return {"valid": not errors, "errors": errors}

    @staticmethod
    def _validate(name: str, config: Dict[str, Any]) -> List[str]:
        errors: List[str] = []

        if name == "usage_patterns":
            _check_positive(config, "min_access_count", errors)
            _check_positive(config, "lookback_hours", errors)
            _check_positive(config, "max_queries", errors)
        elif name == "frequency_analysis":
            _check_positive(config, "frequency_threshold", errors)
            _check_positive(config, "time_window", errors)
        elif name == "predictive_warming":
            _check_fraction(config, "confidence_threshold", errors)
        elif name == "domain_specific":
            domains = config.get("domains")
            if not isinstance(domains, (list, tuple)) or not domains:
                errors.append("domains must be a non-empty list")
            _check_positive(config, "queries_per_domain", errors)
        elif name == "proactive_refresh":
            _check_fraction(config, "refresh_threshold", errors)
            _check_positive(config, "min_usage_count", errors)

        return errors

    def get_recommended_configuration(self, memory_pressure: Optional[float] = None,
                                      hit_rate: Optional[float] = None,
                                      avg_response_time_ms: Optional[float] = None) -> Dict[str, Dict[str, Any]]:
        """Strategy adjustments suited to the current system state."""
        recommendations: Dict[str, Dict[str, Any]] = {}

        if memory_pressure is not None and memory_pressure > 0.8:
            # Conservative under memory pressure
            recommendations["usage_patterns"] = {"config": {"max_queries": 25, "min_access_count": 15}}
            recommendations["frequency_analysis"] = {"config": {"max_queries": 15}}
        elif hit_rate is not None and hit_rate < 0.6:
            # Aggressive when the cache is underperforming
            recommendations["usage_patterns"] = {"config": {"max_queries": 75, "min_access_count": 5}}
            recommendations["frequency_analysis"] = {"config": {"max_queries": 50, "frequency_threshold": 3}}

        if avg_response_time_ms is not None and avg_response_time_ms > 1000:
            recommendations.setdefault("usage_patterns", {})["priority"] = 1
            recommendations.setdefault("predictive_warming", {})["priority"] = 2

        return recommendations

    def apply_recommended_configuration(self, memory_pressure: Optional[float] = None,
                                        hit_rate: Optional[float] = None,
                                        avg_response_time_ms: Optional[float] = None) -> List[str]:
        """Apply recommended adjustments. Returns the names of updated strategies."""
        recommendations = self.get_recommended_configuration(memory_pressure, hit_rate, avg_response_time_ms)
        updated = []
        for name, changes in recommendations.items():
            if self.update_strategy(name, priority=changes.get("priority"), config=changes.get("config")):
                updated.append(name)
        if updated:
            logger.info(f"Applied recommended warming configuration to: {', '.join(updated)}")
        return updated
