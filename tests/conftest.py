"""
Pytest configuration and fixtures for the cache optimization test suite.
Provides an in-memory async Redis double, an unreachable Redis double and
pre-wired cache components.
"""
import fnmatch
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from caching.adaptive_ttl_manager import AdaptiveTTLManager
from caching.cache_operations import EnhancedCacheOperations
from caching.cache_system import build_cache_system
from caching.compression import CacheCompressionManager
from caching.intelligent_cache_warmer import IntelligentCacheWarmer
from caching.producers import ProducerRegistry
from caching.warming_execution import WarmingExecutionAnalytics
from caching.warming_query_generator import WarmingQueryGenerator
from caching.warming_strategy_manager import WarmingQuery, WarmingStrategyManager
from config import Settings
from monitoring.cache_health_monitor import CacheHealthMonitor
from monitoring.metrics import CacheMetrics


class FakeRedis:
    """Dict-backed stand-in for the redis.asyncio client (decode_responses=True)."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.expiry: Dict[str, int] = {}
        self.calls: Dict[str, int] = defaultdict(int)

    async def get(self, key: str) -> Optional[str]:
        self.calls["get"] += 1
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.calls["setex"] += 1
        self.data[key] = value
        self.expiry[key] = int(ttl)
        return True

    async def exists(self, *keys: str) -> int:
        self.calls["exists"] += 1
        return sum(1 for key in keys if key in self.data)

    async def delete(self, *keys: str) -> int:
        self.calls["delete"] += 1
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.expiry.pop(key, None)
                removed += 1
        return removed

    async def ttl(self, key: str) -> int:
        if key not in self.data:
            return -2
        return self.expiry.get(key, -1)

    async def expire(self, key: str, seconds: int) -> bool:
        if key not in self.data:
            return False
        self.expiry[key] = int(seconds)
        return True

    async def scan(self, cursor: int = 0, match: Optional[str] = None, count: Optional[int] = None):
        self.calls["scan"] += 1
        keys = sorted(self.data)
        step = count or 10
        window = keys[cursor:cursor + step]
        next_cursor = cursor + step if cursor + step < len(keys) else 0
        if match:
            window = [key for key in window if fnmatch.fnmatchcase(key, match)]
        return next_cursor, window

    async def ping(self) -> bool:
        return True

    async def dbsize(self) -> int:
        return len(self.data)


class UnavailableRedis:
    """Redis double whose every command fails as if the server were down."""

    def __getattr__(self, name: str):
        async def fail(*args, **kwargs):
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")
        return fail


@pytest.fixture
def test_settings():
    """Settings without a Redis URL and without warming delays."""
    return Settings(
        redis_url=None,
        warming_batch_delay_seconds=0,
        warming_interval_seconds=3600,
        cache_background_write_timeout=1.0,
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def unavailable_redis():
    return UnavailableRedis()


@pytest.fixture
def ttl_manager():
    return AdaptiveTTLManager()


@pytest.fixture
def compression_manager():
    return CacheCompressionManager()


@pytest.fixture
def metrics_collector():
    return CacheMetrics()


@pytest.fixture
def cache_ops(fake_redis, ttl_manager, compression_manager, test_settings, metrics_collector):
    return EnhancedCacheOperations(
        fake_redis, ttl_manager, compression_manager,
        config=test_settings, metrics_collector=metrics_collector
    )


@pytest.fixture
def unavailable_cache_ops(unavailable_redis, ttl_manager, compression_manager, test_settings):
    return EnhancedCacheOperations(unavailable_redis, ttl_manager, compression_manager, config=test_settings)


@pytest.fixture
def producers():
    return ProducerRegistry()


@pytest.fixture
def execution(cache_ops, ttl_manager, producers, test_settings):
    return WarmingExecutionAnalytics(cache_ops, ttl_manager, producers, config=test_settings)


@pytest.fixture
def query_generator(ttl_manager):
    return WarmingQueryGenerator(ttl_manager)


@pytest.fixture
def strategy_manager():
    return WarmingStrategyManager()


@pytest.fixture
def warmer(strategy_manager, query_generator, execution, test_settings, metrics_collector):
    return IntelligentCacheWarmer(
        strategy_manager, query_generator, execution,
        config=test_settings, metrics_collector=metrics_collector
    )


@pytest.fixture
def health_monitor(cache_ops, ttl_manager, test_settings, metrics_collector):
    return CacheHealthMonitor(cache_ops, ttl_manager, config=test_settings, metrics_collector=metrics_collector)


@pytest.fixture
def cache_system(fake_redis, test_settings):
    return build_cache_system(fake_redis, config=test_settings)


def make_queries(count: int, query_type: str = "search", priority: int = 6) -> List[WarmingQuery]:
    """Distinct warming queries for execution tests."""
    return [
        WarmingQuery(
            text=f"warming topic number {i} alpha{i} beta{i}",
            type=query_type,
            priority=priority,
            estimated_value=5,
            source="manual"
        )
        for i in range(count)
    ]


def age_pattern(ttl_manager: AdaptiveTTLManager, cache_key: str, hours: float):
    """Move a usage pattern's last access into the past."""
    ttl_manager.usage_patterns[cache_key].last_accessed = time.time() - hours * 3600


class RecordingProducer:
    """Producer double that records requests and returns a fixed value."""

    def __init__(self, result: Any = None, already_cached: bool = False, error: Optional[Exception] = None):
        self.result = result if result is not None else [0.1, 0.2, 0.3]
        self.already_cached = already_cached
        self.error = error
        self.requests: List[Dict[str, Any]] = []

    async def generate(self, text: str, options: Dict[str, Any]):
        self.requests.append({"text": text, **options})
        if self.error:
            raise self.error
        return self.result, self.already_cached


@pytest.fixture
def query_factory():
    return make_queries


@pytest.fixture
def producer_factory():
    return RecordingProducer


@pytest.fixture
def pattern_ager():
    return age_pattern
