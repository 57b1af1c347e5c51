"""
MinIO S3-compatible storage provider.

The minio client is synchronous, so every call runs in a worker thread.
"""

import asyncio
import logging
import urllib.parse
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Any

from minio import Minio
from minio.error import S3Error

from .base import StorageConfig, StorageObject, StorageProvider

logger = logging.getLogger(__name__)


class MinIOStorageProvider(StorageProvider):
    """MinIO S3-compatible storage provider."""

    def __init__(self, config: StorageConfig, client: Minio | None = None):
        """
        Initialize MinIO storage provider.

        Args:
            config: Storage configuration
            client: Pre-built client (tests); built from config otherwise
        """
        self.config = config
        self.bucket = config.bucket_name
        self._public_url = config.public_url
        self._client = client
        self._available = client is not None

        if client is None:
            if not all([config.endpoint, config.access_key, config.secret_key]):
                logger.warning("MinIO credentials not fully configured")
                return
            self._init_client()

    def _init_client(self):
        """Initialize the MinIO client and make sure the bucket exists."""
        try:
            endpoint = self.config.endpoint
            # Strip protocol prefix if present
            if endpoint.startswith("http://"):
                endpoint = endpoint[7:]
            elif endpoint.startswith("https://"):
                endpoint = endpoint[8:]

            self._client = Minio(
                endpoint=endpoint,
                access_key=self.config.access_key,
                secret_key=self.config.secret_key,
                secure=self.config.use_ssl,
            )

            if not self._client.bucket_exists(self.bucket):
                self._client.make_bucket(self.bucket)
                logger.info(f"Created MinIO bucket: {self.bucket}")

            self._available = True
            logger.info(f"MinIO client initialized for bucket: {self.bucket}")

        except Exception as e:
            logger.error(f"Failed to initialize MinIO client: {e}")
            self._available = False
            self._client = None

    @property
    def name(self) -> str:
        return "minio"

    @property
    def is_available(self) -> bool:
        return self._available and self._client is not None

    async def save(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: dict[str, Any] | None = None,
    ) -> StorageObject:
        if not self.is_available:
            raise RuntimeError("MinIO storage is not available")

        # MinIO only supports ASCII metadata values
        minio_metadata = {
            k: urllib.parse.quote(str(v)[:256], safe="")
            for k, v in (metadata or {}).items()
            if v is not None
        }

        await asyncio.to_thread(
            self._client.put_object,
            self.bucket,
            key,
            BytesIO(data),
            len(data),
            content_type=content_type,
            metadata=minio_metadata or None,
        )

        logger.debug(f"Saved file to MinIO: {key}")

        return StorageObject(
            key=key,
            filename=key.split("/")[-1],
            size=len(data),
            content_type=content_type,
            created_at=datetime.now(timezone.utc).isoformat(),
            public_url=self.get_public_url(key),
            metadata=metadata or {},
        )

    async def load(self, key: str) -> bytes | None:
        if not self.is_available:
            return None

        def _read() -> bytes:
            response = self._client.get_object(self.bucket, key)
            try:
                return response.read()
            finally:
                response.close()
                response.release_conn()

        try:
            return await asyncio.to_thread(_read)
        except S3Error as e:
            if e.code != "NoSuchKey":
                logger.error(f"Failed to load from MinIO: {e}")
            return None

    async def delete(self, key: str) -> bool:
        if not self.is_available:
            return False

        try:
            await asyncio.to_thread(self._client.remove_object, self.bucket, key)
            logger.debug(f"Deleted file from MinIO: {key}")
            return True
        except S3Error as e:
            logger.error(f"Failed to delete from MinIO: {e}")
            return False

    async def exists(self, key: str) -> bool:
        if not self.is_available:
            return False

        try:
            await asyncio.to_thread(self._client.stat_object, self.bucket, key)
            return True
        except S3Error:
            return False

    def get_public_url(self, key: str) -> str | None:
        """
        Get public URL for a key.

        Returns:
            Public URL if configured, otherwise a 7-day presigned URL
        """
        if self._public_url:
            return f"{self._public_url.rstrip('/')}/{key}"

        if not self.is_available:
            return None

        try:
            return self._client.presigned_get_object(self.bucket, key, expires=timedelta(days=7))
        except S3Error as e:
            logger.error(f"Failed to generate presigned URL: {e}")
            return None
