"""
Physical deletion of a generation's stored files.
"""

import logging
from typing import Any

from services.image_normalizer import normalize_images, normalize_videos, rename_legacy_keys
from services.storage import StorageProvider, key_from_url

logger = logging.getLogger(__name__)

_URL_FIELDS = ("url", "avif_url", "thumbnail_url")


class GenerationFileCleaner:
    """Deletes every object a history item points at in our own storage."""

    def __init__(self, storage: StorageProvider, url_prefixes: list[str]):
        self.storage = storage
        self.url_prefixes = url_prefixes

    def collect_keys(self, item: dict[str, Any]) -> list[str]:
        """Storage keys referenced by the item's images and videos, de-duplicated."""
        keys: list[str] = []
        seen: set[str] = set()

        history_id = item.get("id") or ""
        raw_images = item.get("images") or []
        raw_videos = item.get("videos") or []
        images, _ = normalize_images(raw_images, history_id)
        videos, _ = normalize_videos(raw_videos, history_id)
        # Entries without a URL are dropped by normalization but may still own a file
        unaddressed = [
            rename_legacy_keys(raw)
            for raw in [*raw_images, *raw_videos]
            if isinstance(raw, dict)
        ]

        for entry in [*images, *videos, *unaddressed]:
            candidates = [entry.get("storage_path")]
            candidates += [key_from_url(entry.get(field), self.url_prefixes) for field in _URL_FIELDS]
            for key in candidates:
                if isinstance(key, str) and key and key not in seen:
                    seen.add(key)
                    keys.append(key)
        return keys

    async def delete_generation_files(self, item: dict[str, Any]) -> tuple[list[str], list[str]]:
        """
        Delete the item's files one by one.

        Returns:
            Tuple of (deleted keys, failed keys)
        """
        keys = self.collect_keys(item)
        deleted: list[str] = []
        failed: list[str] = []

        for key in keys:
            try:
                if await self.storage.delete(key):
                    deleted.append(key)
                else:
                    failed.append(key)
            except Exception as e:
                logger.warning(f"Failed to delete {key} for history {item.get('id')}: {e}")
                failed.append(key)

        logger.info(
            f"File cleanup for history {item.get('id')}: "
            f"{len(deleted)} deleted, {len(failed)} not deleted"
        )
        return deleted, failed
