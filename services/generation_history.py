"""
Generation lifecycle service.

Owns the status of every generation (generating -> completed | failed) and
keeps the secondary views (stats counters, cache, public mirror) following
the primary record. Only the record store write is a hard guarantee; every
secondary effect is attempted on its own and failures are logged.
"""

import asyncio
import logging
from typing import Any

from core.exceptions import (
    GenerationNotFoundError,
    InvalidStateTransitionError,
    StorageError,
    ValidationError,
)
from core.tasks import BackgroundTaskRunner
from database.models import new_history_id, utcnow
from database.repositories import (
    GenerationHistoryRepository,
    MirrorQueueRepository,
    PublicGenerationRepository,
)

from .file_cleanup import GenerationFileCleaner
from .generation_cache import GenerationCache
from .generation_stats import GenerationStatsService
from .generation_types import expand_generation_type_filter, normalize_generation_type
from .image_normalizer import (
    any_media_public,
    find_media_index,
    is_optimized,
    normalize_images,
    normalize_media_list,
    normalize_videos,
    prune_none,
    rename_legacy_keys,
)
from .media_optimizer import MediaOptimizer, OptimizeOptions, resolve_optimization_target
from .mirror_sync import MirrorReconciler

logger = logging.getLogger(__name__)

# Statuses fetched by list reads; failed items are dropped afterwards
LISTED_STATUSES = ["generating", "completed", "failed"]

# Never patched through update()
IMMUTABLE_FIELDS = {
    "id",
    "history_id",
    "uid",
    "status",
    "created_at",
    "created_by",
    "visibility",
    "is_deleted",
}


def _visibility(is_public: bool) -> str:
    return "public" if is_public else "private"


def _now_iso() -> str:
    return utcnow().isoformat()


def _check_media_input(updates: dict[str, Any]) -> None:
    for key in ("images", "videos"):
        if updates.get(key) is not None and not isinstance(updates[key], list):
            raise ValidationError(message=f"'{key}' must be a list", details={"field": key})
    for key in ("image", "video"):
        if updates.get(key) is not None and not isinstance(updates[key], dict):
            raise ValidationError(message=f"'{key}' must be an object", details={"field": key})


class GenerationHistoryService:
    """Lifecycle engine for generation history items."""

    def __init__(
        self,
        history_repo: GenerationHistoryRepository,
        mirror_repo: PublicGenerationRepository,
        mirror_queue: MirrorQueueRepository,
        stats: GenerationStatsService,
        cache: GenerationCache,
        optimizer: MediaOptimizer | None,
        file_cleaner: GenerationFileCleaner,
        task_runner: BackgroundTaskRunner,
        mirror_sync: MirrorReconciler,
        url_prefixes: list[str] | None = None,
        optimize_options: OptimizeOptions | None = None,
    ):
        self.history_repo = history_repo
        self.mirror_repo = mirror_repo
        self.mirror_queue = mirror_queue
        self.stats = stats
        self.cache = cache
        self.optimizer = optimizer
        self.file_cleaner = file_cleaner
        self.task_runner = task_runner
        self.mirror_sync = mirror_sync
        self.url_prefixes = url_prefixes or []
        self.optimize_options = optimize_options

    # ============ Helpers ============

    async def _best_effort(self, operation: str, uid: str, history_id: str, coro) -> bool:
        """Await a secondary effect; log and swallow its failure."""
        try:
            await coro
            return True
        except Exception as e:
            logger.warning(
                f"{operation} failed (non-fatal): uid={uid}, history_id={history_id}, error={e}"
            )
            return False

    async def _load(self, uid: str, history_id: str) -> dict[str, Any]:
        item = await self.history_repo.get(uid, history_id)
        if item is None:
            raise GenerationNotFoundError(details={"history_id": history_id})
        return item

    async def _invalidate(self, uid: str, history_id: str) -> None:
        await self._best_effort(
            "cache invalidate", uid, history_id, self.cache.invalidate_item(uid, history_id)
        )

    async def _reread(self, uid: str, history_id: str) -> dict[str, Any]:
        """Read the record back after a write and refresh its cache entry."""
        item = await self.history_repo.get(uid, history_id)
        if item is None:
            raise StorageError(
                message="History item missing right after write",
                details={"history_id": history_id},
            )
        await self._invalidate(uid, history_id)
        await self._best_effort(
            "cache set", uid, history_id, self.cache.set_cached_item(uid, history_id, item)
        )
        return item

    # ============ Lifecycle ============

    async def start_generation(
        self,
        uid: str,
        payload: dict[str, Any],
        creator: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Create a history item in the ``generating`` state.

        Args:
            uid: Owner
            payload: prompt, model, generation_type, tags, is_public, input media, ...
            creator: Identity snapshot (username, email) stored as ``created_by``

        Returns:
            ``{"history_id", "item"}``

        Raises:
            StorageError: The record could not be created or read back
        """
        data = prune_none(dict(payload))
        for key in ("id", "history_id", "uid", "status", "error", "is_deleted", "visibility"):
            data.pop(key, None)

        data["generation_type"] = normalize_generation_type(data.get("generation_type"))
        is_public = data.get("is_public") is True
        data["is_public"] = is_public
        data["visibility"] = _visibility(is_public)
        data["status"] = "generating"
        data["created_by"] = {**prune_none(creator or {}), "uid": uid}

        history_id = new_history_id()
        data["id"] = history_id

        if "input_images" in data:
            data["input_images"], _ = normalize_media_list(
                data["input_images"], history_id, "input-img"
            )
        if "input_videos" in data:
            data["input_videos"], _ = normalize_media_list(
                data["input_videos"], history_id, "input-vid"
            )

        try:
            await self.history_repo.create(uid, data)
        except Exception as e:
            logger.exception(f"Failed to create history item for uid={uid}")
            raise StorageError(message="Failed to create history item") from e

        item = await self.history_repo.get(uid, history_id)
        if item is None:
            logger.error(f"History item {history_id} not readable after create (uid={uid})")
            raise StorageError(
                message="History item missing right after create",
                details={"history_id": history_id},
            )

        await self._best_effort(
            "stats increment",
            uid,
            history_id,
            self.stats.increment_on_create(uid, item["generation_type"]),
        )
        await self._best_effort(
            "mirror enqueue upsert",
            uid,
            history_id,
            self.mirror_queue.enqueue_upsert(uid, history_id, item),
        )
        await self._invalidate(uid, history_id)

        logger.info(f"Generation started: uid={uid}, history_id={history_id}")
        return {"history_id": history_id, "item": item}

    async def mark_generation_completed(
        self, uid: str, history_id: str, updates: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Record a successful generation. Safe to call more than once.

        Stats move from generating to completed only on the first call; later
        calls refresh images and flags.

        Returns:
            The item as stored after optimization

        Raises:
            GenerationNotFoundError: Unknown history id
            InvalidStateTransitionError: The item has already failed
            ValidationError: ``images``/``videos`` is not a list
        """
        updates = prune_none(dict(updates or {}))
        _check_media_input(updates)
        existing = await self._load(uid, history_id)
        status = existing.get("status")
        if status not in ("generating", "completed"):
            raise InvalidStateTransitionError(
                message=f"Cannot mark a '{status}' generation as completed",
                details={"history_id": history_id, "status": status},
            )
        was_generating = status == "generating"

        source_images = updates.get("images") or existing.get("images") or []
        images, images_changed = normalize_images(source_images, history_id)

        source_videos = updates["videos"] if "videos" in updates else existing.get("videos") or []
        videos, _ = normalize_videos(source_videos, history_id)

        explicit = updates.get("is_public")
        if isinstance(explicit, bool):
            is_public = explicit
        else:
            is_public = existing.get("is_public") is True
        is_public = is_public or any_media_public(images, videos)

        completed_at = _now_iso()
        first_pass: dict[str, Any] = {
            "status": "completed",
            "videos": videos,
            "is_public": is_public,
            "visibility": _visibility(is_public),
            "updated_at": completed_at,
        }
        if "tags" in updates:
            first_pass["tags"] = list(updates["tags"])
        if "nsfw" in updates:
            first_pass["nsfw"] = bool(updates["nsfw"])
        if images_changed:
            first_pass["images"] = images

        await self.history_repo.update(uid, history_id, first_pass)
        await self._invalidate(uid, history_id)

        optimized = await asyncio.gather(
            *(self._optimize_entry(uid, history_id, entry) for entry in images)
        )
        await self.history_repo.update(
            uid, history_id, {"images": list(optimized), "updated_at": completed_at}
        )

        item = await self._reread(uid, history_id)

        if was_generating:
            await self._best_effort(
                "stats transition",
                uid,
                history_id,
                self.stats.update_on_status_change(uid, "generating", "completed"),
            )

        await self._best_effort(
            "mirror enqueue upsert",
            uid,
            history_id,
            self.mirror_queue.enqueue_upsert(uid, history_id, item),
        )

        logger.info(
            f"Generation completed: uid={uid}, history_id={history_id}, "
            f"images={len(images)}, first_completion={was_generating}"
        )
        return item

    async def _optimize_entry(
        self, uid: str, history_id: str, entry: dict[str, Any]
    ) -> dict[str, Any]:
        """Optimize one image; on any failure the entry comes back unchanged."""
        if self.optimizer is None or is_optimized(entry):
            return entry

        target = resolve_optimization_target(entry, self.url_prefixes)
        if target is None:
            logger.debug(f"No storage target for image {entry.get('id')}, skipping optimization")
            return entry

        source_url = entry.get("url") or entry.get("original_url")
        try:
            result = await self.optimizer.optimize_image(
                source_url, target.base_path, target.filename, self.optimize_options
            )
        except Exception as e:
            logger.warning(
                f"Image optimization failed: uid={uid}, history_id={history_id}, "
                f"image={entry.get('id')}, error={e}"
            )
            return entry

        # Provider-reported dimensions win over the optimized variant's
        dimensions = prune_none(
            {"width": result.width, "height": result.height, "size": result.size}
        )
        return {
            **dimensions,
            **entry,
            "avif_url": result.avif_url,
            "thumbnail_url": result.thumbnail_url,
            "blur_data_url": result.blur_data_url,
            "optimized": True,
            "optimized_at": _now_iso(),
        }

    async def mark_generation_failed(
        self, uid: str, history_id: str, payload: dict[str, Any] | None = None
    ) -> None:
        """
        Record a failed generation.

        Raises:
            GenerationNotFoundError: Unknown history id
            InvalidStateTransitionError: The item is no longer generating
        """
        payload = payload or {}
        existing = await self._load(uid, history_id)
        status = existing.get("status")
        if status != "generating":
            raise InvalidStateTransitionError(
                message=f"Cannot mark a '{status}' generation as failed",
                details={"history_id": history_id, "status": status},
            )

        error = str(payload.get("error") or "Generation failed")
        fields = {
            "status": "failed",
            "error": error,
            "is_public": False,
            "visibility": "private",
        }
        await self.history_repo.update(uid, history_id, fields)
        await self._invalidate(uid, history_id)

        await self._best_effort(
            "stats transition",
            uid,
            history_id,
            self.stats.update_on_status_change(uid, "generating", "failed"),
        )
        await self._best_effort(
            "mirror enqueue update",
            uid,
            history_id,
            self.mirror_queue.enqueue_update(uid, history_id, fields),
        )
        logger.info(f"Generation failed: uid={uid}, history_id={history_id}, error={error}")

    # ============ Reads ============

    async def get_user_generation(self, uid: str, history_id: str) -> dict[str, Any]:
        """
        Read one item through the cache.

        Soft-deleted items are returned as stored (``is_deleted`` is True).
        """
        try:
            cached = await self.cache.get_cached_item(uid, history_id)
        except Exception as e:
            logger.warning(f"Cache read failed for {uid}/{history_id}: {e}")
            cached = None
        if cached:
            return cached

        item = await self._load(uid, history_id)
        await self._best_effort(
            "cache set", uid, history_id, self.cache.set_cached_item(uid, history_id, item)
        )
        return item

    async def list_user_generations(
        self,
        uid: str,
        limit: int = 20,
        cursor: str | None = None,
        next_cursor: str | None = None,
        generation_type: str | list[str] | None = None,
        search: str | None = None,
        sort_order: str = "desc",
    ) -> dict[str, Any]:
        """
        List a user's items, newest first by default.

        Failed items are removed after the store returns its page, so a page
        can be shorter than ``limit`` while ``has_more`` is still True; the
        store's ``next_cursor`` is passed through unchanged.

        Returns:
            ``{"items", "next_cursor", "has_more"}``
        """
        effective = {
            "limit": limit,
            "cursor": cursor,
            "next_cursor": next_cursor,
            "generation_type": expand_generation_type_filter(generation_type),
            "status": LISTED_STATUSES,
            "search": search or None,
            "sort_order": "asc" if sort_order == "asc" else "desc",
        }

        try:
            cached = await self.cache.get_cached_list(uid, effective)
        except Exception as e:
            logger.warning(f"Cache list read failed for {uid}: {e}")
            cached = None
        if cached:
            return cached

        page = await self.history_repo.list(uid, **effective)
        response = {
            "items": [item for item in page.get("items", []) if item.get("status") != "failed"],
            "next_cursor": page.get("next_cursor"),
            "has_more": bool(page.get("has_more")),
        }

        await self._best_effort(
            "cache list set", uid, "-", self.cache.set_cached_list(uid, effective, response)
        )
        return response

    async def get_user_stats(self, uid: str) -> dict[str, Any]:
        return await self.stats.get_stats(uid)

    # ============ Mutations ============

    async def soft_delete(self, uid: str, history_id: str) -> dict[str, Any]:
        """
        Hide an item and schedule removal of its files.

        The mirror record is removed before returning; file deletion runs in
        the background and may still be pending.

        Returns:
            ``{"item"}`` with ``is_deleted`` True and ``is_public`` False
        """
        existing = await self._load(uid, history_id)
        already_deleted = existing.get("is_deleted") is True

        fields = {"is_deleted": True, "is_public": False, "visibility": "private"}
        await self.history_repo.update(uid, history_id, fields)
        await self._invalidate(uid, history_id)

        await self._best_effort(
            "mirror remove", uid, history_id, self.mirror_repo.remove(history_id)
        )
        await self._best_effort(
            "mirror enqueue delete",
            uid,
            history_id,
            self.mirror_queue.enqueue_remove(history_id, uid),
        )

        if not already_deleted:
            await self._best_effort(
                "stats decrement",
                uid,
                history_id,
                self.stats.decrement_on_delete(
                    uid, existing.get("status", "generating"), existing.get("generation_type", "")
                ),
            )

        self.task_runner.spawn(
            f"delete-files:{uid}:{history_id}",
            lambda: self.file_cleaner.delete_generation_files(existing),
        )

        logger.info(f"Generation soft-deleted: uid={uid}, history_id={history_id}")
        return {"item": {**existing, **fields}}

    async def update(
        self, uid: str, history_id: str, updates: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Partially update an item.

        ``updates["image"]`` / ``updates["video"]`` patch one media entry in
        place, matched by id, then url, then storage_path. Document-level
        ``is_public`` is recomputed after media changes: explicit True wins,
        explicit False only holds while no media entry is public itself.

        Returns:
            ``{"item"}`` as stored after the update

        Raises:
            ValidationError: Malformed media input
        """
        _check_media_input(updates)
        existing = await self._load(uid, history_id)

        patch = {
            k: v
            for k, v in prune_none(dict(updates)).items()
            if k not in IMMUTABLE_FIELDS and k not in ("image", "video")
        }
        if "generation_type" in patch:
            patch["generation_type"] = normalize_generation_type(patch["generation_type"])

        images, _ = normalize_images(existing.get("images") or [], history_id)
        videos, _ = normalize_videos(existing.get("videos") or [], history_id)
        media_changed = False

        if "images" in patch:
            images, _ = normalize_images(patch.pop("images"), history_id)
            media_changed = True
        if "videos" in patch:
            videos, _ = normalize_videos(patch.pop("videos"), history_id)
            media_changed = True

        for key, entries in (("image", images), ("video", videos)):
            media_patch = updates.get(key)
            if not isinstance(media_patch, dict):
                continue
            media_patch = rename_legacy_keys(media_patch)
            index = find_media_index(entries, media_patch)
            if index is None:
                logger.info(
                    f"No {key} entry matches patch for history_id={history_id}, ignoring"
                )
                continue
            entries[index] = {**entries[index], **media_patch}
            media_changed = True

        explicit = patch.get("is_public")
        if not isinstance(explicit, bool):
            patch.pop("is_public", None)
            explicit = None

        if media_changed or explicit is not None:
            media_public = any_media_public(images, videos)
            is_public = True if explicit is True else media_public
            patch["is_public"] = is_public
            patch["visibility"] = _visibility(is_public)

        if media_changed:
            patch["images"] = images
            patch["videos"] = videos

        if not patch:
            return {"item": existing}

        await self.history_repo.update(uid, history_id, patch)
        await self._invalidate(uid, history_id)

        await self._best_effort(
            "mirror enqueue update",
            uid,
            history_id,
            self.mirror_queue.enqueue_update(uid, history_id, patch),
        )

        if "is_public" in patch and patch["is_public"] != (existing.get("is_public") is True):
            await self._best_effort(
                "mirror immediate sync", uid, history_id, self.mirror_sync.sync_now(uid, history_id)
            )

        item = await self._reread(uid, history_id)
        return {"item": item}
