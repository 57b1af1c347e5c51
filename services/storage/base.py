"""
Storage provider abstract base class and data types.

This module defines the interface that all storage backends must implement.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class StorageConfig:
    """Storage backend configuration."""

    # Backend type: local, minio
    backend: str = "local"

    bucket_name: str = "generations"
    public_url: str | None = None  # CDN/public URL prefix

    # Authentication
    access_key: str | None = None
    secret_key: str | None = None

    endpoint: str | None = None
    use_ssl: bool = False

    # Local storage settings
    local_path: str = "outputs/storage"


@dataclass
class StorageObject:
    """Storage object metadata."""

    key: str
    filename: str
    size: int = 0
    content_type: str = "application/octet-stream"
    created_at: str = ""  # ISO timestamp
    public_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class StorageProvider(ABC):
    """
    Abstract base class for storage backends.

    Generated media, their optimized variants and thumbnails all live under
    keys of one provider.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name: local, minio."""

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Check if the backend is configured and available."""

    @abstractmethod
    async def save(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: dict[str, Any] | None = None,
    ) -> StorageObject:
        """
        Save data to storage.

        Args:
            key: Storage key/path
            data: Raw bytes to store
            content_type: MIME type
            metadata: Optional metadata dict

        Returns:
            StorageObject with storage info
        """

    @abstractmethod
    async def load(self, key: str) -> bytes | None:
        """Load data from storage, None if not found."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete data from storage.

        Returns:
            True if deleted, False if the key did not exist or deletion failed
        """

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if key exists in storage."""

    @abstractmethod
    def get_public_url(self, key: str) -> str | None:
        """Public access URL for a key, None if not available."""
