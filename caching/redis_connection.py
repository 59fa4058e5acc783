"""
Redis connection management for the cache optimization subsystem.
Pooled asyncio client; a missing or unreachable Redis disables caching instead of failing.
"""
import time
import logging
from typing import Optional, Dict, Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class RedisConnectionManager:
    """Own a single pooled Redis client for the process."""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings
        self._redis_client: Optional[redis.Redis] = None

    async def get_client(self) -> Optional[redis.Redis]:
        """Get Redis client with connection pooling, or None when caching is disabled."""
        if self._redis_client is None:
            redis_url = self.config.redis_url
            if not redis_url:
                logger.warning("Redis URL not configured - cache optimization disabled")
                return None

            try:
                pool = redis.ConnectionPool.from_url(
                    redis_url,
                    max_connections=self.config.redis_max_connections,
                    decode_responses=True,
                    socket_connect_timeout=self.config.redis_timeout,
                    socket_timeout=self.config.redis_timeout,
                    retry_on_timeout=True,
                    health_check_interval=30
                )

                client = redis.Redis(connection_pool=pool)
                await client.ping()
                self._redis_client = client
                logger.info("Redis connected successfully")

            except (RedisError, OSError, ValueError) as e:
                logger.error(f"Redis connection failed: {e}")
                self._redis_client = None

        return self._redis_client

    async def close(self):
        """Close Redis connection."""
        if self._redis_client:
            await self._redis_client.aclose()
            self._redis_client = None

    def get_connection_info(self) -> Dict[str, Any]:
        """Connection info for debugging, without credentials."""
        url = self.config.redis_url
        return {
            "has_client": self._redis_client is not None,
            "configured": bool(url),
            "host": url.rsplit("@", 1)[-1] if url else None,
        }


async def ping_store(client) -> Dict[str, Any]:
    """Ping the store and measure latency."""
    if client is None:
        return {"healthy": False, "error": "Redis client not initialized"}

    try:
        start = time.perf_counter()
        await client.ping()
        latency_ms = (time.perf_counter() - start) * 1000
        return {"healthy": True, "latency_ms": latency_ms}
    except (RedisError, OSError) as e:
        return {"healthy": False, "error": str(e)}
