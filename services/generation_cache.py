"""
Read-through cache for history items and list pages, backed by Redis.

Every Redis error is logged and treated as a miss; the cache can never fail
a read or a write of the record store.
"""

import hashlib
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


class GenerationCache:
    """
    Redis keys:
    - gen:item:{uid}:{history_id} -> JSON item
    - gen:list:{uid}:{digest} -> JSON list response, digest of the effective params
    """

    def __init__(
        self,
        redis_client=None,
        enabled: bool = False,
        item_ttl: int = 300,
        list_ttl: int = 120,
    ):
        self._redis = redis_client
        self.enabled = enabled and redis_client is not None
        self.item_ttl = item_ttl
        self.list_ttl = list_ttl

    @staticmethod
    def item_key(uid: str, history_id: str) -> str:
        return f"gen:item:{uid}:{history_id}"

    @staticmethod
    def list_key(uid: str, params: dict[str, Any]) -> str:
        canonical = json.dumps(params, sort_keys=True, default=str)
        digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:16]
        return f"gen:list:{uid}:{digest}"

    async def _get(self, key: str) -> Any | None:
        if not self.enabled:
            return None
        try:
            raw = await self._redis.get(key)
            return json.loads(raw) if raw else None
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def _set(self, key: str, value: Any, ttl: int) -> None:
        if not self.enabled:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def get_cached_item(self, uid: str, history_id: str) -> dict[str, Any] | None:
        return await self._get(self.item_key(uid, history_id))

    async def set_cached_item(self, uid: str, history_id: str, item: dict[str, Any]) -> None:
        await self._set(self.item_key(uid, history_id), item, self.item_ttl)

    async def get_cached_list(self, uid: str, params: dict[str, Any]) -> dict[str, Any] | None:
        return await self._get(self.list_key(uid, params))

    async def set_cached_list(
        self, uid: str, params: dict[str, Any], response: dict[str, Any]
    ) -> None:
        await self._set(self.list_key(uid, params), response, self.list_ttl)

    async def invalidate_item(self, uid: str, history_id: str) -> None:
        """Drop the item entry and every list page of the user."""
        if not self.enabled:
            return
        try:
            await self._redis.delete(self.item_key(uid, history_id))
        except Exception as e:
            logger.warning(f"Cache invalidate failed for {uid}/{history_id}: {e}")
        await self.invalidate_user_lists(uid)

    async def invalidate_user_lists(self, uid: str) -> None:
        if not self.enabled:
            return
        try:
            async for key in self._redis.scan_iter(match=f"gen:list:{uid}:*"):
                await self._redis.delete(key)
        except Exception as e:
            logger.warning(f"Cache list invalidation failed for {uid}: {e}")
