"""
Adaptive cache optimization: adaptive TTLs, content-aware compression,
usage tracking and predictive cache warming on top of Redis.

The wired-up system lives in caching.cache_system.
"""

from .adaptive_ttl_manager import (
    AdaptiveTTLManager,
    PerformanceMetrics,
    TTLPolicy,
    UsagePattern,
    DEFAULT_TTL_POLICIES
)
from .compression import (
    CacheCompressionManager,
    CompressedEntry,
    CompressionOptions
)
from .cache_operations import (
    CacheOperationResult,
    CachePriority,
    EnhancedCacheConfig,
    EnhancedCacheOperations,
    MemoryPressureLevel
)
from .producers import (
    CacheProducer,
    CachingProducer,
    ProducerRegistry
)
from .warming_strategy_manager import (
    StrategyExecutionResult,
    WarmingQuery,
    WarmingResult,
    WarmingStrategy,
    WarmingStrategyManager
)
from .warming_query_generator import WarmingQueryGenerator
from .warming_execution import WarmingExecutionAnalytics
from .intelligent_cache_warmer import IntelligentCacheWarmer

__all__ = [
    'AdaptiveTTLManager',
    'PerformanceMetrics',
    'TTLPolicy',
    'UsagePattern',
    'DEFAULT_TTL_POLICIES',
    'CacheCompressionManager',
    'CompressedEntry',
    'CompressionOptions',
    'CacheOperationResult',
    'CachePriority',
    'EnhancedCacheConfig',
    'EnhancedCacheOperations',
    'MemoryPressureLevel',
    'CacheProducer',
    'CachingProducer',
    'ProducerRegistry',
    'StrategyExecutionResult',
    'WarmingQuery',
    'WarmingResult',
    'WarmingStrategy',
    'WarmingStrategyManager',
    'WarmingQueryGenerator',
    'WarmingExecutionAnalytics',
    'IntelligentCacheWarmer'
]
