"""
Enhanced Cache Operations
Core get/set against Redis with content-aware compression, adaptive TTL and
usage tracking.

Store failures never reach the caller: reads degrade to a miss and writes
report failure in the returned CacheOperationResult.
"""

import asyncio
import copy
import hashlib
import json
import logging
import time
from typing import Dict, Any, Optional, Set
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum, IntEnum

from redis.exceptions import RedisError

from caching.adaptive_ttl_manager import AdaptiveTTLManager, PerformanceMetrics, SECONDS_PER_DAY
from caching.compression import CacheCompressionManager, CompressedEntry
from caching.scan_utils import batch_delete_keys, count_keys
from config import Settings, settings as default_settings
from monitoring.metrics import CacheMetrics
from utils.exceptions import CacheOptimizationError, CacheSerializationError, UnknownCacheTypeError

logger = logging.getLogger(__name__)

ANONYMOUS_SESSION = "anonymous"
DEFAULT_TTL_SECONDS = SECONDS_PER_DAY
KEY_HASH_LENGTH = 24
MEMORY_PRESSURE_CACHE_SECONDS = 30.0


class CachePriority(IntEnum):
    """Cache priority levels."""
    LOW = 3
    NORMAL = 5
    HIGH = 7
    CRITICAL = 9


class MemoryPressureLevel(float, Enum):
    """Memory pressure thresholds."""
    LOW = 0.3
    MEDIUM = 0.6
    HIGH = 0.8
    CRITICAL = 0.95


@dataclass
class EnhancedCacheConfig:
    """Per content type cache configuration."""
    key_prefix: str
    enable_compression: bool
    enable_adaptive_ttl: bool
    enable_usage_tracking: bool
    compression_threshold: int
    max_key_size: int
    content_type: str


DEFAULT_CACHE_CONFIGS: Dict[str, EnhancedCacheConfig] = {
    "embedding": EnhancedCacheConfig(
        key_prefix="emb:opt:",
        enable_compression=True,
        enable_adaptive_ttl=True,
        enable_usage_tracking=True,
        compression_threshold=1024,
        max_key_size=1000,
        content_type="embedding"
    ),
    "search": EnhancedCacheConfig(
        key_prefix="search:opt:",
        enable_compression=True,
        enable_adaptive_ttl=True,
        enable_usage_tracking=True,
        compression_threshold=2048,
        max_key_size=2000,
        content_type="search"
    ),
    # Classification payloads are small; compression costs more than it saves
    "classification": EnhancedCacheConfig(
        key_prefix="class:opt:",
        enable_compression=False,
        enable_adaptive_ttl=True,
        enable_usage_tracking=True,
        compression_threshold=512,
        max_key_size=500,
        content_type="classification"
    ),
    "contextual": EnhancedCacheConfig(
        key_prefix="ctx:opt:",
        enable_compression=True,
        enable_adaptive_ttl=True,
        enable_usage_tracking=True,
        compression_threshold=1500,
        max_key_size=1500,
        content_type="contextual"
    ),
}


@dataclass
class CompressionStats:
    compressed_entries: int = 0
    compression_rate: float = 0.0
    space_saved: int = 0
    original_bytes: int = 0
    entries_written: int = 0


@dataclass
class TTLStats:
    avg_ttl: float = 0.0
    adaptive_hits: int = 0
    proactive_refreshes: int = 0


@dataclass
class CacheTypeMetrics:
    """Hit/miss and compression metrics for one content type."""
    hits: int = 0
    misses: int = 0
    errors: int = 0
    hit_rate: float = 0.0
    total_requests: int = 0
    cache_size: int = 0
    compression_stats: CompressionStats = field(default_factory=CompressionStats)
    ttl_stats: TTLStats = field(default_factory=TTLStats)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def error_rate(self) -> float:
        operations = self.total_requests + self.compression_stats.entries_written
        return self.errors / operations if operations else 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_updated"] = self.last_updated.isoformat()
        data["error_rate"] = self.error_rate
        return data


@dataclass
class EnhancedCacheEntry:
    """Unit persisted in the store: payload plus access metadata."""
    data: CompressedEntry
    original_key: str
    content_type: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    access_count: int = 1
    last_accessed: float = field(default_factory=time.time)
    ttl_seconds: int = DEFAULT_TTL_SECONDS
    priority: int = CachePriority.NORMAL

    def age_seconds(self, now: Optional[float] = None) -> float:
        return (now or time.time()) - self.data.created_at

    def to_json(self) -> str:
        return json.dumps({
            "data": self.data.to_dict(),
            "metadata": {
                "original_key": self.original_key,
                "content_type": self.content_type,
                "session_id": self.session_id,
                "user_id": self.user_id,
                "access_count": self.access_count,
                "last_accessed": self.last_accessed,
                "ttl": self.ttl_seconds,
                "priority": int(self.priority),
            }
        }, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: Any) -> "EnhancedCacheEntry":
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            document = json.loads(raw)
            metadata = document["metadata"]
            return cls(
                data=CompressedEntry.from_dict(document["data"]),
                original_key=metadata["original_key"],
                content_type=metadata["content_type"],
                session_id=metadata.get("session_id"),
                user_id=metadata.get("user_id"),
                access_count=int(metadata.get("access_count", 1)),
                last_accessed=float(metadata.get("last_accessed", time.time())),
                ttl_seconds=int(metadata["ttl"]),
                priority=int(metadata.get("priority", CachePriority.NORMAL)),
            )
        except CacheSerializationError:
            raise
        except (ValueError, KeyError, TypeError, UnicodeDecodeError) as e:
            raise CacheSerializationError(f"Malformed cache entry: {e}") from e


@dataclass
class CacheOperationResult:
    """Outcome of a facade operation."""
    success: bool
    data: Any = None
    from_cache: bool = False
    compression_used: bool = False
    ttl_seconds: Optional[int] = None
    error: Optional[str] = None


class EnhancedCacheOperations:
    """
    Cache operations facade: key derivation, compression, adaptive TTL,
    usage tracking and metrics around a Redis client.
    """

    def __init__(self, client, ttl_manager: AdaptiveTTLManager,
                 compression_manager: CacheCompressionManager,
                 config: Optional[Settings] = None,
                 cache_configs: Optional[Dict[str, EnhancedCacheConfig]] = None,
                 metrics_collector: Optional[CacheMetrics] = None):
        self.client = client
        self.ttl_manager = ttl_manager
        self.compression_manager = compression_manager
        self.settings = config or default_settings
        self.configs: Dict[str, EnhancedCacheConfig] = copy.deepcopy(cache_configs or DEFAULT_CACHE_CONFIGS)
        if cache_configs is None:
            self._apply_threshold_settings()
        self.metrics: Dict[str, CacheTypeMetrics] = {cache_type: CacheTypeMetrics() for cache_type in self.configs}
        self.metrics_collector = metrics_collector

        self._background_tasks: Set[asyncio.Task] = set()
        self._memory_pressure_cache: Optional[tuple] = None

    # ------------------------------------------------------------------
    # Keys and configuration
    # ------------------------------------------------------------------

    def _apply_threshold_settings(self):
        """Per-type compression thresholds from COMPRESSION_THRESHOLD_* settings."""
        thresholds = self.settings.compression_thresholds
        for config in self.configs.values():
            if config.content_type in thresholds:
                config.compression_threshold = thresholds[config.content_type]

    def _get_config(self, cache_type: str) -> EnhancedCacheConfig:
        config = self.configs.get(cache_type)
        if not config:
            raise UnknownCacheTypeError(cache_type)
        return config

    def key_prefix(self, cache_type: str) -> str:
        return f"{self.settings.cache_key_namespace}{self._get_config(cache_type).key_prefix}"

    def generate_optimized_key(self, key: str, cache_type: str, context: Optional[str] = None) -> str:
        """Deterministic, case and whitespace insensitive, context-partitioned cache key."""
        key_input = key.strip().lower()
        if context:
            key_input = f"{key_input}:{context}"
        digest = hashlib.sha256(key_input.encode("utf-8")).hexdigest()
        return f"{self.key_prefix(cache_type)}{digest[:KEY_HASH_LENGTH]}"

    def get_config(self, cache_type: str) -> Optional[EnhancedCacheConfig]:
        return self.configs.get(cache_type)

    def update_config(self, cache_type: str, **changes) -> bool:
        """Update fields of a cache type configuration."""
        config = self.configs.get(cache_type)
        if not config:
            logger.error(f"Unknown cache type: {cache_type}")
            return False

        unknown = [name for name in changes if not hasattr(config, name)]
        if unknown:
            logger.error(f"Unknown cache config fields for {cache_type}: {unknown}")
            return False

        for name, value in changes.items():
            setattr(config, name, value)
        return True

    def is_available(self) -> bool:
        return self.client is not None

    # ------------------------------------------------------------------
    # Set / get
    # ------------------------------------------------------------------

    async def set_optimized(self, key: str, data: Any, cache_type: str,
                            session_id: Optional[str] = None, user_id: Optional[str] = None,
                            context: Optional[str] = None,
                            priority: int = CachePriority.NORMAL) -> CacheOperationResult:
        """Set cache entry with compression and adaptive TTL."""
        if self.client is None:
            return CacheOperationResult(success=False, error="Redis client not available")

        try:
            config = self._get_config(cache_type)
            cache_key = self.generate_optimized_key(key, cache_type, context)
        except UnknownCacheTypeError as e:
            logger.error(f"Enhanced cache set error: {e}")
            return CacheOperationResult(success=False, error=str(e))

        if len(key) > config.max_key_size:
            logger.warning(f"Refusing to cache {cache_type} key of {len(key)} chars (max {config.max_key_size})")
            self.metrics[cache_type].errors += 1
            return CacheOperationResult(success=False, error=f"Key exceeds {config.max_key_size} characters")

        start_time = time.perf_counter()
        try:
            memory_pressure = await self.get_memory_pressure_estimate()

            if config.enable_compression:
                threshold = self.compression_manager.get_adaptive_threshold(
                    config.content_type, memory_pressure, base_threshold=config.compression_threshold
                )
                compressed_data = self.compression_manager.compress_entry(data, config.content_type, threshold)
            else:
                compressed_data = self.compression_manager.build_uncompressed_entry(data, config.content_type)

            ttl = DEFAULT_TTL_SECONDS
            if config.enable_adaptive_ttl:
                type_metrics = self.metrics[cache_type]
                metrics = PerformanceMetrics(
                    hit_rate=type_metrics.hit_rate,
                    response_time_ms=(time.perf_counter() - start_time) * 1000,
                    memory_pressure=memory_pressure,
                    error_rate=type_metrics.error_rate
                )
                ttl = self.ttl_manager.calculate_optimal_ttl(cache_key, config.content_type, metrics)

            entry = EnhancedCacheEntry(
                data=compressed_data,
                original_key=key,
                content_type=config.content_type,
                session_id=session_id,
                user_id=user_id,
                access_count=1,
                ttl_seconds=ttl,
                priority=priority
            )

            await self.client.setex(cache_key, ttl, entry.to_json())

        except (RedisError, OSError, asyncio.TimeoutError, CacheOptimizationError) as e:
            logger.error(f"Enhanced cache set error for {cache_type}: {e}")
            self.metrics[cache_type].errors += 1
            self._observe(cache_type, "set", "error", start_time)
            return CacheOperationResult(success=False, error=str(e))

        self._update_compression_metrics(cache_type, compressed_data)
        self._update_ttl_metrics(cache_type, ttl, config.enable_adaptive_ttl)

        self._record_usage(config, cache_key, key, context, session_id, start_time, False)
        self._observe(cache_type, "set", "success", start_time)

        return CacheOperationResult(
            success=True,
            data=True,
            compression_used=compressed_data.compressed,
            ttl_seconds=ttl
        )

    async def get_optimized(self, key: str, cache_type: str, session_id: Optional[str] = None,
                            context: Optional[str] = None) -> CacheOperationResult:
        """Get cache entry with decompression and usage tracking."""
        try:
            config = self._get_config(cache_type)
            cache_key = self.generate_optimized_key(key, cache_type, context)
        except UnknownCacheTypeError as e:
            logger.error(f"Enhanced cache get error: {e}")
            return CacheOperationResult(success=False, error=str(e))

        if self.client is None:
            self._update_metrics(cache_type, False)
            return CacheOperationResult(success=False, error="Redis client not available")

        start_time = time.perf_counter()
        try:
            value = await self.client.get(cache_key)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Enhanced cache get error for {cache_type}: {e}")
            self.metrics[cache_type].errors += 1
            self._update_metrics(cache_type, False)
            self._observe(cache_type, "get", "error", start_time)
            return CacheOperationResult(success=False, error=str(e))

        if value is None:
            self._update_metrics(cache_type, False)
            self._record_usage(config, cache_key, key, context, session_id, start_time, False)
            self._observe(cache_type, "get", "miss", start_time)
            return CacheOperationResult(success=True, data=None, from_cache=False)

        try:
            entry = EnhancedCacheEntry.from_json(value)

            age_seconds = entry.age_seconds()
            if self.ttl_manager.should_proactively_refresh(cache_key, config.content_type, age_seconds):
                # Refresh itself happens in the warming pass
                self.ttl_manager.flag_for_refresh(cache_key)
                self.metrics[cache_type].ttl_stats.proactive_refreshes += 1
                logger.debug(f"Proactive refresh recommended for key: {cache_key}")

            decompressed_data = self.compression_manager.decompress_entry(entry.data)

        except CacheSerializationError as e:
            logger.warning(f"Corrupt cache entry {cache_key}, deleting: {e}")
            self._schedule_background(self._delete_quietly(cache_key))
            self._update_metrics(cache_type, False)
            self._observe(cache_type, "get", "corrupt", start_time)
            return CacheOperationResult(success=True, data=None, from_cache=False)

        entry.access_count += 1
        entry.last_accessed = time.time()
        self._schedule_background(self._write_metadata(cache_key, entry))

        self._record_usage(config, cache_key, key, context, session_id, start_time, True)
        self._update_metrics(cache_type, True)
        self._observe(cache_type, "get", "hit", start_time)

        return CacheOperationResult(
            success=True,
            data=decompressed_data,
            from_cache=True,
            compression_used=entry.data.compressed,
            ttl_seconds=entry.ttl_seconds
        )

    def _observe(self, cache_type: str, operation: str, result: str, start_time: float):
        if self.metrics_collector is not None:
            self.metrics_collector.record_cache_operation(
                cache_type, operation, result, time.perf_counter() - start_time
            )

    def _record_usage(self, config: EnhancedCacheConfig, cache_key: str, key: str,
                      context: Optional[str], session_id: Optional[str],
                      start_time: float, is_hit: bool):
        if not config.enable_usage_tracking:
            return
        self.ttl_manager.record_access(
            cache_key,
            session_id or ANONYMOUS_SESSION,
            (time.perf_counter() - start_time) * 1000,
            is_hit,
            original_key=key,
            content_type=config.content_type,
            context=context
        )

    # ------------------------------------------------------------------
    # Background writes
    # ------------------------------------------------------------------

    def _schedule_background(self, coro):
        """Run a best-effort store write without blocking the caller."""
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _write_metadata(self, cache_key: str, entry: EnhancedCacheEntry):
        try:
            await asyncio.wait_for(
                self.client.setex(cache_key, entry.ttl_seconds, entry.to_json()),
                timeout=self.settings.cache_background_write_timeout
            )
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to update access metadata for {cache_key}: {e}")

    async def _delete_quietly(self, cache_key: str):
        try:
            await asyncio.wait_for(
                self.client.delete(cache_key),
                timeout=self.settings.cache_background_write_timeout
            )
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to delete corrupt entry {cache_key}: {e}")

    async def flush_background_writes(self):
        """Wait for pending fire-and-forget writes to settle."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    @property
    def pending_background_writes(self) -> int:
        return len(self._background_tasks)

    async def close(self):
        await self.flush_background_writes()

    # ------------------------------------------------------------------
    # Store primitives
    # ------------------------------------------------------------------

    async def exists(self, key: str, cache_type: str, context: Optional[str] = None) -> bool:
        """Check if entry exists in cache."""
        if self.client is None:
            return False
        try:
            cache_key = self.generate_optimized_key(key, cache_type, context)
            return int(await self.client.exists(cache_key)) == 1
        except (RedisError, OSError, CacheOptimizationError) as e:
            logger.error(f"Enhanced cache exists error: {e}")
            return False

    async def delete(self, key: str, cache_type: str, context: Optional[str] = None) -> bool:
        """Delete entry from cache."""
        if self.client is None:
            return False
        try:
            cache_key = self.generate_optimized_key(key, cache_type, context)
            return int(await self.client.delete(cache_key)) == 1
        except (RedisError, OSError, CacheOptimizationError) as e:
            logger.error(f"Enhanced cache delete error: {e}")
            return False

    async def get_ttl(self, key: str, cache_type: str, context: Optional[str] = None) -> Optional[int]:
        """Remaining TTL in seconds, or None when missing or without expiry."""
        if self.client is None:
            return None
        try:
            cache_key = self.generate_optimized_key(key, cache_type, context)
            ttl = int(await self.client.ttl(cache_key))
            return ttl if ttl >= 0 else None
        except (RedisError, OSError, CacheOptimizationError) as e:
            logger.error(f"Enhanced cache TTL error: {e}")
            return None

    async def extend_ttl(self, key: str, cache_type: str, ttl_seconds: int,
                         context: Optional[str] = None) -> bool:
        """Reset the expiry of an existing entry."""
        if self.client is None:
            return False
        try:
            cache_key = self.generate_optimized_key(key, cache_type, context)
            return bool(await self.client.expire(cache_key, ttl_seconds))
        except (RedisError, OSError, CacheOptimizationError) as e:
            logger.error(f"Enhanced cache expire error: {e}")
            return False

    async def clear_cache_type(self, cache_type: str) -> int:
        """Delete every entry of a content type. Returns number deleted."""
        if self.client is None:
            return 0
        pattern = f"{self.key_prefix(cache_type)}*"
        deleted = await batch_delete_keys(self.client, pattern, self.settings.cache_scan_batch_size)
        self.metrics[cache_type].cache_size = 0
        self._memory_pressure_cache = None
        logger.info(f"Cleared {deleted} {cache_type} cache entries")
        return deleted

    async def get_memory_pressure_estimate(self) -> float:
        """
        Coarse memory pressure: keys across all cache namespaces over the
        configured key capacity, clamped to [0, 1]. Cached briefly because it
        is consulted on every set.
        """
        if self.client is None:
            return 0.5

        now = time.monotonic()
        if self._memory_pressure_cache and now - self._memory_pressure_cache[1] < MEMORY_PRESSURE_CACHE_SECONDS:
            return self._memory_pressure_cache[0]

        total_keys = 0
        try:
            for cache_type in self.configs:
                size = await count_keys(self.client, f"{self.key_prefix(cache_type)}*",
                                        self.settings.cache_scan_batch_size)
                self.metrics[cache_type].cache_size = size
                if self.metrics_collector is not None:
                    self.metrics_collector.update_cache_size(cache_type, size)
                total_keys += size
        except (RedisError, OSError) as e:
            logger.warning(f"Memory pressure estimate failed: {e}")
            return 0.5

        pressure = min(total_keys / max(self.settings.cache_capacity_keys, 1), 1.0)
        self._memory_pressure_cache = (pressure, now)
        return pressure

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def _update_metrics(self, cache_type: str, is_hit: bool):
        metrics = self.metrics.get(cache_type)
        if not metrics:
            return

        if is_hit:
            metrics.hits += 1
        else:
            metrics.misses += 1

        metrics.total_requests += 1
        metrics.hit_rate = metrics.hits / metrics.total_requests
        metrics.last_updated = datetime.now(timezone.utc)

    def _update_compression_metrics(self, cache_type: str, compressed_entry: CompressedEntry):
        stats = self.metrics[cache_type].compression_stats
        stats.entries_written += 1
        stats.original_bytes += compressed_entry.original_size
        if compressed_entry.compressed:
            stats.compressed_entries += 1
            stats.space_saved += compressed_entry.original_size - compressed_entry.compressed_size
        stats.compression_rate = stats.compressed_entries / stats.entries_written

    def _update_ttl_metrics(self, cache_type: str, ttl: int, adaptive: bool):
        metrics = self.metrics[cache_type]
        ttl_stats = metrics.ttl_stats
        written = metrics.compression_stats.entries_written
        ttl_stats.avg_ttl += (ttl - ttl_stats.avg_ttl) / max(written, 1)
        if adaptive:
            ttl_stats.adaptive_hits += 1
        metrics.last_updated = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per content type metrics snapshot."""
        return {cache_type: metrics.to_dict() for cache_type, metrics in self.metrics.items()}
