"""
Redis connection management.

Redis backs the generation stats counters and the (optional) read-through
generation cache. Both are best-effort, so the client uses short socket
timeouts: a slow Redis turns into a logged miss instead of a stalled request.
"""

import logging
import time
from typing import Optional

from redis.asyncio import ConnectionPool, Redis

from .config import get_settings

logger = logging.getLogger(__name__)

# Connection pool owned by the application lifespan
_pool: Optional[ConnectionPool] = None
_client: Optional[Redis] = None


def build_pool(url: str | None = None) -> ConnectionPool:
    settings = get_settings()
    return ConnectionPool.from_url(
        url or settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        decode_responses=True,
    )


async def init_redis(url: str | None = None) -> Redis:
    """
    Create the shared client and check it answers.

    Raises:
        redis.exceptions.RedisError: Redis is unreachable (the caller decides
            whether stats and cache run without it)
    """
    global _pool, _client

    await close_redis()
    _pool = build_pool(url)
    _client = Redis(connection_pool=_pool)

    try:
        await _client.ping()
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        await close_redis()
        raise

    logger.info("Redis connection established successfully")
    return _client


async def close_redis() -> None:
    global _pool, _client

    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("Redis connection closed")

    if _pool is not None:
        await _pool.disconnect()
        _pool = None


async def get_redis() -> Redis:
    """
    Get Redis client instance.

    Raises:
        RuntimeError: If Redis is not initialized
    """
    if _client is None:
        raise RuntimeError("Redis is not initialized. Call init_redis() first.")
    return _client


class RedisHealthCheck:
    """Redis health check utility."""

    @staticmethod
    async def check() -> dict:
        """
        Ping Redis and report latency and server version.

        ``not_initialized`` means the service runs without stats and cache.
        """
        try:
            client = await get_redis()
        except RuntimeError:
            return {"status": "not_initialized", "latency_ms": None}

        try:
            start = time.perf_counter()
            await client.ping()
            latency_ms = (time.perf_counter() - start) * 1000
            info = await client.info("server")
        except Exception as e:
            return {"status": "unhealthy", "error": str(e), "latency_ms": None}

        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
            "version": info.get("redis_version", "unknown"),
        }
