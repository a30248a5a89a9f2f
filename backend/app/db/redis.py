"""
Redis Connection

Redis holds pending two-phase confirmations (see
`app.services.progression.pending_actions`). They must be visible to every API
worker and expire on their own when a user walks away from a warning, which is
why they live here rather than in process memory or PostgreSQL.

Usage:
    from app.db.redis import get_redis

    redis = await get_redis()
    await redis.setex("pending_action:abc", 900, payload)
"""

from typing import Optional

import redis.asyncio as redis

from app.config import settings, yaml_config


MAX_CONNECTIONS: int = yaml_config.get("redis", {}).get("max_connections", 10)

# Created on first use so importing the app never opens a socket
_pool: Optional[redis.ConnectionPool] = None


def _get_pool() -> redis.ConnectionPool:
    global _pool
    if _pool is None:
        _pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=MAX_CONNECTIONS,
        )
    return _pool


async def get_redis() -> redis.Redis:
    """Return a client bound to the shared connection pool."""
    return redis.Redis(connection_pool=_get_pool())


async def close_redis_pool() -> None:
    """Disconnect the shared pool on application shutdown."""
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None
