"""
Shared Redis connection.

WHY: Pending OAuth authorizations must be visible to whichever worker
receives the provider's redirect, so they live in Redis rather than in
process memory.
"""

from typing import Optional

import redis.asyncio as aioredis

from casenotify.core.config import settings


_redis_client: Optional[aioredis.Redis] = None


async def get_redis() -> aioredis.Redis:
    """
    Get the process-wide Redis client, connecting on first use.

    Returns:
        Redis client with string responses
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
