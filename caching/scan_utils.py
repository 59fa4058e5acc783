"""
Non-blocking key enumeration helpers built on Redis SCAN.
Never uses KEYS; every helper walks the cursor in batches.
"""

import logging
from typing import List, Awaitable, Callable

from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

DEFAULT_SCAN_BATCH_SIZE = 100


async def count_keys(client, pattern: str = "*", batch_size: int = DEFAULT_SCAN_BATCH_SIZE) -> int:
    """Count keys matching a pattern without holding them all in memory."""
    count = 0
    cursor = 0

    while True:
        try:
            cursor, batch = await client.scan(cursor=cursor, match=pattern, count=batch_size)
        except RedisError as e:
            logger.error(f"Error during SCAN count for {pattern}: {e}")
            break

        count += len(batch)
        if int(cursor) == 0:
            break

    return count


async def stream_keys(client, pattern: str, callback: Callable[[List[str]], Awaitable[None]],
                      batch_size: int = DEFAULT_SCAN_BATCH_SIZE):
    """Feed each SCAN batch of matching keys to a callback."""
    cursor = 0

    while True:
        try:
            cursor, batch = await client.scan(cursor=cursor, match=pattern, count=batch_size)
        except RedisError as e:
            logger.error(f"Error during SCAN stream for {pattern}: {e}")
            break

        if batch:
            await callback(list(batch))
        if int(cursor) == 0:
            break


async def batch_delete_keys(client, pattern: str, scan_batch_size: int = DEFAULT_SCAN_BATCH_SIZE,
                            delete_batch_size: int = 50) -> int:
    """Delete all keys matching a pattern in small chunks. Returns number deleted."""
    total_deleted = 0

    async def delete_batch(batch: List[str]):
        nonlocal total_deleted
        for i in range(0, len(batch), delete_batch_size):
            chunk = batch[i:i + delete_batch_size]
            total_deleted += int(await client.delete(*chunk))

    try:
        await stream_keys(client, pattern, delete_batch, scan_batch_size)
    except RedisError as e:
        logger.error(f"Error during batch delete for {pattern}: {e}")

    return total_deleted

