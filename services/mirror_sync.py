"""
Mirror reconciliation.

Applies queued upsert/update/delete operations to the public mirror. Every
operation is keyed by history id and safe to apply more than once.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from database.models import MirrorOp
from database.repositories import (
    GenerationHistoryRepository,
    MirrorTask,
    PublicGenerationRepository,
)

logger = logging.getLogger(__name__)

# uid -> {"username", "display_name", "photo_url"} (sync or async)
CreatorLookup = Callable[[str], "dict[str, Any] | None | Awaitable[dict[str, Any] | None]"]


def is_mirrorable(item: dict[str, Any] | None) -> bool:
    return bool(item) and item.get("is_public") is True and not item.get("is_deleted")


class MirrorReconciler:
    """Brings the mirror record of one history item in line with its source."""

    def __init__(
        self,
        history_repo: GenerationHistoryRepository,
        mirror_repo: PublicGenerationRepository,
        creator_lookup: CreatorLookup | None = None,
        sync_retries: int = 3,
        sync_base_delay: float = 0.1,
    ):
        self.history_repo = history_repo
        self.mirror_repo = mirror_repo
        self.creator_lookup = creator_lookup
        self.sync_retries = sync_retries
        self.sync_base_delay = sync_base_delay

    async def apply(self, task: MirrorTask) -> str:
        """
        Apply one queued operation.

        Returns:
            What happened: upserted, updated, removed or skipped

        Raises:
            Any store error, so the queue consumer can retry
        """
        if task.op == MirrorOp.UPSERT:
            return await self.apply_upsert(task.uid, task.history_id, task.payload.get("item"))
        if task.op == MirrorOp.UPDATE:
            return await self.apply_update(
                task.uid, task.history_id, task.payload.get("updates") or {}
            )
        if task.op == MirrorOp.DELETE:
            return await self.apply_delete(task.history_id)
        raise ValueError(f"Unknown mirror operation: {task.op}")

    async def apply_upsert(
        self, uid: str, history_id: str, snapshot: dict[str, Any] | None = None
    ) -> str:
        # A fresh read beats the snapshot taken at enqueue time
        item = await self.history_repo.get(uid, history_id) or snapshot
        if not is_mirrorable(item):
            await self.mirror_repo.remove(history_id)
            return "removed"

        creator = await self._creator_info(uid, item)
        await self.mirror_repo.upsert_from_history(uid, history_id, item, creator)
        return "upserted"

    async def apply_update(self, uid: str, history_id: str, updates: dict[str, Any]) -> str:
        if updates.get("is_deleted") is True or updates.get("is_public") is False:
            await self.mirror_repo.remove(history_id)
            return "removed"

        if await self.mirror_repo.update_from_history(uid, history_id, updates):
            return "updated"

        # No mirror record yet: create one if the item has become public
        item = await self.history_repo.get(uid, history_id)
        if is_mirrorable(item):
            creator = await self._creator_info(uid, item)
            await self.mirror_repo.upsert_from_history(uid, history_id, item, creator)
            return "upserted"
        return "skipped"

    async def apply_delete(self, history_id: str) -> str:
        await self.mirror_repo.remove(history_id)
        return "removed"

    async def sync_now(self, uid: str, history_id: str) -> bool:
        """
        Reconcile one item immediately, with retries.

        Never raises; the queued operation remains the fallback.
        """
        for attempt in range(self.sync_retries):
            try:
                result = await self.apply_upsert(uid, history_id)
                logger.info(f"Immediate mirror sync {result}: uid={uid}, history_id={history_id}")
                return True
            except Exception as e:
                logger.warning(
                    f"Immediate mirror sync attempt {attempt + 1}/{self.sync_retries} failed "
                    f"for uid={uid}, history_id={history_id}: {e}"
                )
                if attempt < self.sync_retries - 1:
                    await asyncio.sleep(self.sync_base_delay * (2**attempt))
        return False

    async def _creator_info(self, uid: str, item: dict[str, Any]) -> dict[str, Any]:
        creator = {k: v for k, v in (item.get("created_by") or {}).items() if v is not None}
        creator["uid"] = uid

        if self.creator_lookup is None:
            return creator

        try:
            info = self.creator_lookup(uid)
            if inspect.isawaitable(info):
                info = await info
        except Exception as e:
            logger.warning(f"Creator lookup failed for uid={uid}: {e}")
            return creator

        for key in ("username", "display_name", "photo_url"):
            if info and info.get(key):
                creator[key] = info[key]
        return creator
