"""
Cache producers: the callbacks that compute the data being cached.

A producer answers generate(text, options) with (result, was_already_cached).
The warming executor looks producers up by content type.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from utils.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


class CacheProducer(Protocol):
    async def generate(self, text: str, options: Dict[str, Any]) -> Tuple[Any, bool]:
        ...


class CachingProducer:
    """
    Producer that wraps a compute function with the cache facade: a cache hit
    is returned as-is, otherwise the value is computed and stored.

    options may carry session_id, user_id, context, priority,
    force_refresh (skip the lookup and recompute) and require_stored (raise
    StoreUnavailableError instead of returning a value that was not cached).
    """

    def __init__(self, cache_operations, content_type: str,
                 compute: Callable[[str, Dict[str, Any]], Awaitable[Any]]):
        self.cache_operations = cache_operations
        self.content_type = content_type
        self.compute = compute

    async def generate(self, text: str, options: Dict[str, Any]) -> Tuple[Any, bool]:
        context = options.get("context")

        if not options.get("force_refresh"):
            cached = await self.cache_operations.get_optimized(
                text, self.content_type, session_id=options.get("session_id"), context=context
            )
            if cached.from_cache:
                return cached.data, True

        result = await self.compute(text, options)

        stored = await self.cache_operations.set_optimized(
            text,
            result,
            self.content_type,
            session_id=options.get("session_id"),
            user_id=options.get("user_id"),
            context=context,
            priority=options.get("priority", 5)
        )
        if not stored.success:
            logger.warning(f"Produced {self.content_type} value for {text[:50]!r} but could not cache it: {stored.error}")
            if options.get("require_stored"):
                raise StoreUnavailableError(stored.error or "Cache write failed", operation="set")

        return result, False


class ProducerRegistry:
    """Maps content types to producers."""

    def __init__(self):
        self._producers: Dict[str, CacheProducer] = {}

    def register(self, content_type: str, producer: CacheProducer):
        if content_type in self._producers:
            logger.info(f"Replacing producer for content type: {content_type}")
        self._producers[content_type] = producer

    def unregister(self, content_type: str) -> bool:
        return self._producers.pop(content_type, None) is not None

    def get(self, content_type: str) -> Optional[CacheProducer]:
        return self._producers.get(content_type)

    def has(self, content_type: str) -> bool:
        return content_type in self._producers

    def content_types(self) -> List[str]:
        return sorted(self._producers)
