"""
Pluggable object storage for generated media.

Supports:
- Local file system (development)
- MinIO (self-hosted S3-compatible)

Usage:
    from services.storage import create_storage_provider, known_url_prefixes

    storage = create_storage_provider()
    obj = await storage.save("users/u1/abc.png", data, "image/png")
"""

import urllib.parse

from .base import StorageConfig, StorageObject, StorageProvider
from .local import LocalStorageProvider
from .minio import MinIOStorageProvider

# Path used by the local provider when no public URL is configured
LOCAL_PROXY_PREFIX = "/api/media/"


def get_storage_config() -> StorageConfig:
    """Build the storage configuration from application settings."""
    from core.config import get_settings

    settings = get_settings()

    config = StorageConfig(
        backend=settings.storage_backend,
        bucket_name=settings.storage_bucket,
        public_url=settings.storage_public_url,
        local_path=settings.storage_local_path,
    )

    if settings.storage_backend == "minio":
        config.endpoint = settings.minio_endpoint
        config.access_key = settings.minio_access_key
        config.secret_key = settings.minio_secret_key
        config.use_ssl = settings.minio_use_ssl

    return config


def create_storage_provider(config: StorageConfig | None = None) -> StorageProvider:
    """
    Create the provider for the configured backend.

    Unknown backends fall back to local storage.
    """
    config = config or get_storage_config()
    if config.backend == "minio":
        return MinIOStorageProvider(config)
    return LocalStorageProvider(config)


def known_url_prefixes() -> list[str]:
    """Public URL prefixes that map back to storage keys."""
    from core.config import get_settings

    settings = get_settings()
    prefixes = list(settings.storage_url_prefixes)
    if settings.storage_public_url:
        prefixes.insert(0, settings.storage_public_url)
    prefixes.append(LOCAL_PROXY_PREFIX)
    return prefixes


def key_from_url(url: str | None, prefixes: list[str]) -> str | None:
    """
    Recover a storage key from a public URL.

    Query strings and fragments are ignored.

    Returns:
        The key, or None if the URL does not start with a known prefix
    """
    if not url or not isinstance(url, str):
        return None

    parsed = urllib.parse.urlsplit(url)
    bare = urllib.parse.urlunsplit((parsed.scheme, parsed.netloc, parsed.path, "", ""))

    for prefix in prefixes:
        if not prefix:
            continue
        prefix = prefix if prefix.endswith("/") else f"{prefix}/"
        if bare.startswith(prefix):
            key = urllib.parse.unquote(bare[len(prefix):])
            return key or None
    return None


__all__ = [
    "StorageConfig",
    "StorageObject",
    "StorageProvider",
    "LocalStorageProvider",
    "MinIOStorageProvider",
    "LOCAL_PROXY_PREFIX",
    "get_storage_config",
    "create_storage_provider",
    "known_url_prefixes",
    "key_from_url",
]
