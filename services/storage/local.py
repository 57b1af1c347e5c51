"""
Local file system storage provider.

Suitable for development and single-server deployments.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from .base import StorageConfig, StorageObject, StorageProvider

logger = logging.getLogger(__name__)


class LocalStorageProvider(StorageProvider):
    """Local file system storage provider."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self.base_path = Path(config.local_path)
        self._public_url = config.public_url

        self.base_path.mkdir(parents=True, exist_ok=True)

    @property
    def name(self) -> str:
        return "local"

    @property
    def is_available(self) -> bool:
        return True

    def _get_full_path(self, key: str) -> Path:
        """Resolve a key inside the base directory."""
        path = (self.base_path / key).resolve()
        if not path.is_relative_to(self.base_path.resolve()):
            raise ValueError(f"Storage key escapes base path: {key}")
        return path

    async def save(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: dict[str, Any] | None = None,
    ) -> StorageObject:
        file_path = self._get_full_path(key)

        await aiofiles.os.makedirs(file_path.parent, exist_ok=True)

        async with aiofiles.open(file_path, "wb") as f:
            await f.write(data)

        logger.debug(f"Saved file to local storage: {key}")

        return StorageObject(
            key=key,
            filename=file_path.name,
            size=len(data),
            content_type=content_type,
            created_at=datetime.now(timezone.utc).isoformat(),
            public_url=self.get_public_url(key),
            metadata=metadata or {},
        )

    async def load(self, key: str) -> bytes | None:
        file_path = self._get_full_path(key)

        if not file_path.exists():
            return None

        try:
            async with aiofiles.open(file_path, "rb") as f:
                return await f.read()
        except OSError as e:
            logger.error(f"Failed to load file {key}: {e}")
            return None

    async def delete(self, key: str) -> bool:
        file_path = self._get_full_path(key)

        if not file_path.exists():
            return False

        try:
            await aiofiles.os.remove(file_path)
            logger.debug(f"Deleted file from local storage: {key}")
            return True
        except OSError as e:
            logger.error(f"Failed to delete file {key}: {e}")
            return False

    async def exists(self, key: str) -> bool:
        return self._get_full_path(key).exists()

    def get_public_url(self, key: str) -> str | None:
        """
        Get public URL for a key.

        Returns:
            Public URL if configured, otherwise the media proxy path
        """
        if self._public_url:
            return f"{self._public_url.rstrip('/')}/{key}"
        return f"/api/media/{key}"
