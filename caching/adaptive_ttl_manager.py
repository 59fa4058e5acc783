"""
Adaptive TTL Manager
Dynamic TTL optimization based on per-key usage patterns and live performance metrics.

Features:
- Content type-specific TTL policies with hard min/max bounds
- Usage pattern tracking (access count, recency, sessions, hit rate)
- Performance-driven TTL shortening under memory pressure, errors or slow responses
- Eviction priority scoring
- Proactive refresh recommendations for hot entries nearing expiry
"""

import hashlib
import logging
import math
import threading
import time
from typing import Dict, Any, Optional, Set, Union
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 60 * 60
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR

CACHE_TYPES = ("embedding", "search", "classification", "contextual")


@dataclass(frozen=True)
class TTLPolicy:
    """Static TTL bounds for one content type."""
    base_seconds: int
    min_seconds: int
    max_seconds: int
    adaptive_factor: float
    content_type: str


DEFAULT_TTL_POLICIES: Dict[str, TTLPolicy] = {
    "embedding": TTLPolicy(
        base_seconds=SECONDS_PER_DAY,       # 24 hours
        min_seconds=6 * SECONDS_PER_HOUR,   # 6 hours
        max_seconds=7 * SECONDS_PER_DAY,    # 7 days
        adaptive_factor=1.5,
        content_type="embedding"
    ),
    "search": TTLPolicy(
        base_seconds=SECONDS_PER_HOUR,      # 1 hour
        min_seconds=30 * 60,                # 30 minutes
        max_seconds=6 * SECONDS_PER_HOUR,   # 6 hours
        adaptive_factor=2.0,
        content_type="search"
    ),
    "classification": TTLPolicy(
        base_seconds=SECONDS_PER_DAY,       # 24 hours
        min_seconds=12 * SECONDS_PER_HOUR,  # 12 hours
        max_seconds=3 * SECONDS_PER_DAY,    # 3 days
        adaptive_factor=1.2,
        content_type="classification"
    ),
    "contextual": TTLPolicy(
        base_seconds=6 * SECONDS_PER_HOUR,  # 6 hours
        min_seconds=2 * SECONDS_PER_HOUR,   # 2 hours
        max_seconds=SECONDS_PER_DAY,        # 24 hours
        adaptive_factor=1.8,
        content_type="contextual"
    ),
}


@dataclass
class UsagePattern:
    """Access statistics for a single cache key."""
    access_count: int = 0
    last_accessed: float = field(default_factory=time.time)
    avg_response_time_ms: float = 0.0
    hit_rate: float = 0.0
    user_sessions: Set[str] = field(default_factory=set)

    # Request shape that produced the key, so warming can replay it
    original_key: Optional[str] = None
    content_type: Optional[str] = None
    context: Optional[str] = None
    refresh_recommended: bool = False

    @property
    def session_count(self) -> int:
        return len(self.user_sessions)

    def hours_since_access(self, now: Optional[float] = None) -> float:
        """Hours elapsed since the last recorded access."""
        return ((now or time.time()) - self.last_accessed) / SECONDS_PER_HOUR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_count": self.access_count,
            "last_accessed": self.last_accessed,
            "avg_response_time_ms": self.avg_response_time_ms,
            "hit_rate": self.hit_rate,
            "session_count": self.session_count,
            "original_key": self.original_key,
            "content_type": self.content_type,
            "context": self.context,
            "refresh_recommended": self.refresh_recommended,
        }


@dataclass
class PerformanceMetrics:
    """Live system metrics fed into the second TTL adjustment pass."""
    hit_rate: float
    response_time_ms: float
    memory_pressure: float
    error_rate: float = 0.0


class AdaptiveTTLManager:
    """
    Adaptive TTL manager that computes per-key TTLs from usage patterns and
    performance metrics, and owns the in-memory usage pattern table.

    The pattern table is shared by every get/set call; all access goes through
    a single lock so concurrent increments are never lost.
    """

    def __init__(self, policies: Optional[Dict[str, TTLPolicy]] = None):
        self.policies: Dict[str, TTLPolicy] = dict(policies or DEFAULT_TTL_POLICIES)
        self.usage_patterns: Dict[str, UsagePattern] = {}
        self._lock = threading.Lock()

    def get_policy(self, content_type: str) -> TTLPolicy:
        """Get the TTL policy for a content type."""
        try:
            return self.policies[content_type]
        except KeyError:
            raise ValueError(f"No TTL policy for content type: {content_type}") from None

    def calculate_optimal_ttl(self, cache_key: str, content_type: str,
                              metrics: Optional[PerformanceMetrics] = None) -> int:
        """
        Calculate optimal TTL based on usage patterns and content type.

        Usage multipliers are applied first, then performance multipliers, and the
        result is clamped to the policy bounds.
        """
        policy = self.get_policy(content_type)
        ttl = float(policy.base_seconds)

        with self._lock:
            pattern = self.usage_patterns.get(cache_key)
            if pattern:
                ttl = self._apply_usage_adjustments(ttl, pattern)

        if metrics:
            ttl = self._apply_performance_adjustments(ttl, metrics)

        return max(policy.min_seconds, min(policy.max_seconds, int(round(ttl))))

    def _apply_usage_adjustments(self, base_ttl: float, pattern: UsagePattern) -> float:
        """Apply usage pattern multipliers to TTL."""
        adjusted_ttl = base_ttl

        # High access count = longer TTL
        if pattern.access_count > 50:
            adjusted_ttl *= 1.5
        elif pattern.access_count > 20:
            adjusted_ttl *= 1.2
        elif pattern.access_count < 5:
            adjusted_ttl *= 0.8

        # Recent access = longer TTL
        hours_since_access = pattern.hours_since_access()
        if hours_since_access < 1:
            adjusted_ttl *= 1.3
        elif hours_since_access > 24:
            adjusted_ttl *= 0.7

        # Multiple user sessions = longer TTL
        if pattern.session_count > 5:
            adjusted_ttl *= 1.4
        elif pattern.session_count > 2:
            adjusted_ttl *= 1.1

        if pattern.hit_rate > 0.8:
            adjusted_ttl *= 1.2
        elif pattern.hit_rate < 0.4:
            adjusted_ttl *= 0.8

        return adjusted_ttl

    def _apply_performance_adjustments(self, base_ttl: float, metrics: PerformanceMetrics) -> float:
        """Apply live performance multipliers to TTL."""
        adjusted_ttl = base_ttl

        if metrics.hit_rate > 0.8:
            adjusted_ttl *= 1.3
        elif metrics.hit_rate < 0.5:
            adjusted_ttl *= 0.9

        # Slow responses shorten TTL
        if metrics.response_time_ms > 500:
            adjusted_ttl *= 0.8
        elif metrics.response_time_ms < 100:
            adjusted_ttl *= 1.1

        if metrics.memory_pressure > 0.8:
            adjusted_ttl *= 0.7
        elif metrics.memory_pressure < 0.3:
            adjusted_ttl *= 1.2

        # High error rate = refresh potentially stale data sooner
        if metrics.error_rate > 0.1:
            adjusted_ttl *= 0.6

        return adjusted_ttl

    def record_access(self, cache_key: str, session_id: str, response_time_ms: float, is_hit: bool,
                      original_key: Optional[str] = None, content_type: Optional[str] = None,
                      context: Optional[str] = None):
        """Record an access for a cache key, updating running means incrementally."""
        with self._lock:
            pattern = self.usage_patterns.get(cache_key)
            if pattern is None:
                pattern = UsagePattern()
                self.usage_patterns[cache_key] = pattern

            pattern.access_count += 1
            pattern.last_accessed = time.time()
            pattern.user_sessions.add(session_id)

            pattern.avg_response_time_ms += (response_time_ms - pattern.avg_response_time_ms) / pattern.access_count
            pattern.hit_rate += ((1.0 if is_hit else 0.0) - pattern.hit_rate) / pattern.access_count

            if original_key is not None:
                pattern.original_key = original_key
            if content_type is not None:
                pattern.content_type = content_type
            if context is not None:
                pattern.context = context

    def get_stale_threshold(self, content_type: str) -> float:
        """Age in seconds after which an entry is considered stale (80% of base TTL)."""
        return self.get_policy(content_type).base_seconds * 0.8

    def should_proactively_refresh(self, cache_key: str, content_type: str, age_seconds: float) -> bool:
        """Determine if a cache entry should be refreshed before it expires."""
        stale_threshold = self.get_stale_threshold(content_type)
        if age_seconds <= stale_threshold:
            return False

        with self._lock:
            pattern = self.usage_patterns.get(cache_key)
            if not pattern:
                return False

            # High-usage items are refreshed proactively
            if pattern.access_count > 20:
                return True

            # Recently accessed and past the stale threshold
            return pattern.hours_since_access() < 2

    def flag_for_refresh(self, cache_key: str) -> bool:
        """Mark a tracked key as a proactive refresh candidate."""
        with self._lock:
            pattern = self.usage_patterns.get(cache_key)
            if not pattern:
                return False
            pattern.refresh_recommended = True
            return True

    def clear_refresh_flag(self, cache_key: str):
        with self._lock:
            pattern = self.usage_patterns.get(cache_key)
            if pattern:
                pattern.refresh_recommended = False

    def refresh_candidates(self) -> Dict[str, Dict[str, Any]]:
        """Exported patterns currently flagged for proactive refresh."""
        with self._lock:
            return {
                key: pattern.to_dict()
                for key, pattern in self.usage_patterns.items()
                if pattern.refresh_recommended
            }

    def get_eviction_priority(self, cache_key: str) -> float:
        """Get cache priority for eviction (higher = more valuable = evict last)."""
        with self._lock:
            pattern = self.usage_patterns.get(cache_key)
            if not pattern:
                return 1.0

            priority = 5.0
            priority += math.log10(pattern.access_count + 1) * 2
            priority += max(0.0, 10 - pattern.hours_since_access())
            priority += math.log10(pattern.session_count + 1) * 3
            priority += pattern.hit_rate * 5

        return round(priority, 1)

    def cleanup_old_patterns(self, max_age_hours: float = 168) -> int:
        """Remove patterns not accessed within max_age_hours. Returns number removed."""
        cutoff_time = time.time() - max_age_hours * SECONDS_PER_HOUR

        with self._lock:
            stale_keys = [
                key for key, pattern in self.usage_patterns.items()
                if pattern.last_accessed < cutoff_time
            ]
            for key in stale_keys:
                del self.usage_patterns[key]

        if stale_keys:
            logger.info(f"Cleaned up {len(stale_keys)} usage patterns older than {max_age_hours}h")
        return len(stale_keys)

    def get_pattern(self, cache_key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            pattern = self.usage_patterns.get(cache_key)
            return pattern.to_dict() if pattern else None

    def get_usage_stats(self) -> Dict[str, Any]:
        """Get usage statistics for monitoring."""
        with self._lock:
            patterns = list(self.usage_patterns.values())

            if not patterns:
                return {"total_patterns": 0, "high_usage_keys": 0, "avg_access_count": 0, "avg_session_count": 0}

            total_access = sum(p.access_count for p in patterns)
            total_sessions = sum(p.session_count for p in patterns)
            high_usage_keys = sum(1 for p in patterns if p.access_count > 20)

        return {
            "total_patterns": len(patterns),
            "high_usage_keys": high_usage_keys,
            "avg_access_count": round(total_access / len(patterns)),
            "avg_session_count": round(total_sessions / len(patterns))
        }

    def export_patterns(self) -> Dict[str, Dict[str, Any]]:
        """Export usage patterns as plain dictionaries (session sets reduced to counts)."""
        with self._lock:
            return {key: pattern.to_dict() for key, pattern in self.usage_patterns.items()}


def generate_ttl_key(cache_key: str) -> str:
    """Short stable identifier for a cache key."""
    return hashlib.md5(cache_key.encode("utf-8")).hexdigest()[:16]


def hours_since(timestamp: Union[int, float], now: Optional[float] = None) -> float:
    """Hours elapsed since a unix timestamp."""
    return ((now or time.time()) - timestamp) / SECONDS_PER_HOUR
