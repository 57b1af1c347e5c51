"""
Per-user generation statistics using Redis storage.

Counters are only ever adjusted incrementally; they are never recomputed
from the history records, so a lost adjustment stays lost.
"""

import logging

logger = logging.getLogger(__name__)

STATUSES = ("generating", "completed", "failed")


class GenerationStatsService:
    """
    Service for per-user generation counters.

    Redis keys:
    - genstats:{uid} -> hash {total, status:<status>, type:<generation_type>}
    """

    def __init__(self, redis_client=None):
        """
        Initialize the stats service.

        Args:
            redis_client: Async Redis client instance (None disables counting)
        """
        self._redis = redis_client

    def _get_key(self, uid: str) -> str:
        return f"genstats:{uid}"

    async def increment_on_create(self, uid: str, generation_type: str) -> None:
        """Count a new generation (it starts in ``generating``)."""
        if not self._redis:
            return

        key = self._get_key(uid)
        async with self._redis.pipeline() as pipe:
            pipe.hincrby(key, "total", 1)
            pipe.hincrby(key, "status:generating", 1)
            pipe.hincrby(key, f"type:{generation_type}", 1)
            await pipe.execute()

        logger.debug(f"Stats create: uid={uid}, type={generation_type}")

    async def update_on_status_change(self, uid: str, from_status: str, to_status: str) -> None:
        """Move one generation between status buckets. Same status is a no-op."""
        if not self._redis or from_status == to_status:
            return

        key = self._get_key(uid)
        async with self._redis.pipeline() as pipe:
            pipe.hincrby(key, f"status:{from_status}", -1)
            pipe.hincrby(key, f"status:{to_status}", 1)
            await pipe.execute()

        logger.debug(f"Stats transition: uid={uid}, {from_status} -> {to_status}")

    async def decrement_on_delete(self, uid: str, status: str, generation_type: str) -> None:
        """Remove a deleted generation from every bucket it was counted in."""
        if not self._redis:
            return

        key = self._get_key(uid)
        async with self._redis.pipeline() as pipe:
            pipe.hincrby(key, "total", -1)
            pipe.hincrby(key, f"status:{status}", -1)
            pipe.hincrby(key, f"type:{generation_type}", -1)
            await pipe.execute()

        logger.debug(f"Stats delete: uid={uid}, status={status}, type={generation_type}")

    async def get_stats(self, uid: str) -> dict:
        """
        Get the counters for display.

        Returns:
            Dictionary with total, by_status and by_type
        """
        stats = {
            "total": 0,
            "by_status": {status: 0 for status in STATUSES},
            "by_type": {},
        }
        if not self._redis:
            return stats

        data = await self._redis.hgetall(self._get_key(uid))
        for field, raw_value in data.items():
            value = max(int(raw_value), 0)
            if field == "total":
                stats["total"] = value
            elif field.startswith("status:"):
                stats["by_status"][field.split(":", 1)[1]] = value
            elif field.startswith("type:"):
                stats["by_type"][field.split(":", 1)[1]] = value
        return stats
