"""
Cache system composition root.

Builds every cache optimization component once and wires them together.
This is the only place with get-or-create semantics; everything else receives
its collaborators through the constructor.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from caching.adaptive_ttl_manager import AdaptiveTTLManager
from caching.cache_operations import EnhancedCacheOperations
from caching.compression import CacheCompressionManager
from caching.intelligent_cache_warmer import IntelligentCacheWarmer
from caching.producers import ProducerRegistry
from caching.redis_connection import RedisConnectionManager
from caching.warming_execution import WarmingExecutionAnalytics
from caching.warming_query_generator import WarmingQueryGenerator
from caching.warming_strategy_manager import WarmingStrategyManager
from config import Settings, settings as default_settings
from monitoring.cache_health_monitor import CacheHealthMonitor
from monitoring.metrics import CacheMetrics
from utils.exceptions import StoreUnavailableError
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


@dataclass
class CacheSystem:
    """All cache optimization components, wired together."""
    settings: Settings
    connection: Optional[RedisConnectionManager]
    ttl_manager: AdaptiveTTLManager
    compression: CacheCompressionManager
    operations: EnhancedCacheOperations
    producers: ProducerRegistry
    strategies: WarmingStrategyManager
    query_generator: WarmingQueryGenerator
    execution: WarmingExecutionAnalytics
    warmer: IntelligentCacheWarmer
    health: CacheHealthMonitor
    metrics: CacheMetrics

    async def start(self):
        await self.warmer.start()

    def get_status(self) -> Dict[str, Any]:
        return {
            "connection": self.connection.get_connection_info() if self.connection else None,
            "store_available": self.operations.is_available(),
            "warming": self.warmer.get_status(),
            "producers": self.producers.content_types(),
        }

    async def close(self):
        """Stop warming, flush background writes and release the connection."""
        await self.warmer.stop()
        await self.operations.close()
        if self.connection is not None:
            await self.connection.close()


def build_cache_system(client, config: Optional[Settings] = None,
                       connection: Optional[RedisConnectionManager] = None) -> CacheSystem:
    """Wire the components around an existing (possibly None) Redis client."""
    config = config or default_settings

    metrics = CacheMetrics()
    ttl_manager = AdaptiveTTLManager()
    compression = CacheCompressionManager(thresholds=config.compression_thresholds)
    operations = EnhancedCacheOperations(client, ttl_manager, compression, config=config, metrics_collector=metrics)
    producers = ProducerRegistry()
    strategies = WarmingStrategyManager()
    query_generator = WarmingQueryGenerator(ttl_manager)
    execution = WarmingExecutionAnalytics(operations, ttl_manager, producers, config=config)
    warmer = IntelligentCacheWarmer(strategies, query_generator, execution, config=config, metrics_collector=metrics)
    health = CacheHealthMonitor(operations, ttl_manager, config=config, metrics_collector=metrics)

    return CacheSystem(
        settings=config,
        connection=connection,
        ttl_manager=ttl_manager,
        compression=compression,
        operations=operations,
        producers=producers,
        strategies=strategies,
        query_generator=query_generator,
        execution=execution,
        warmer=warmer,
        health=health,
        metrics=metrics
    )


async def create_cache_system(config: Optional[Settings] = None, require_store: bool = False) -> CacheSystem:
    """
    Connect to Redis (if configured) and build the cache system. Without a
    store every operation degrades to a miss, unless require_store is set.
    """
    config = config or default_settings
    setup_logging(config.log_level)

    connection = RedisConnectionManager(config)
    client = await connection.get_client()
    if client is None:
        if require_store:
            raise StoreUnavailableError(operation="connect")
        logger.warning("Cache store unavailable; cache operations will degrade to misses")
    return build_cache_system(client, config=config, connection=connection)


_cache_system: Optional[CacheSystem] = None


async def get_cache_system() -> CacheSystem:
    """Process-wide cache system, created on first use."""
    global _cache_system
    if _cache_system is None:
        _cache_system = await create_cache_system()
    return _cache_system


async def shutdown_cache_system():
    global _cache_system
    if _cache_system is not None:
        await _cache_system.close()
        _cache_system = None
