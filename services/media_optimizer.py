"""
Media optimizer.

Downloads a generated image, derives a size-capped optimized copy, a square
thumbnail and a tiny blurred placeholder, and uploads the variants next to
the original in object storage.

Pillow work is CPU-bound and runs in a worker thread.
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Any

import httpx
from PIL import Image, ImageFilter, ImageOps

from services.storage import StorageProvider, key_from_url

logger = logging.getLogger(__name__)

BLUR_SIZE = 20
BLUR_QUALITY = 20


@dataclass
class OptimizeOptions:
    """Encoding options for one optimization run."""

    max_width: int = 2048
    max_height: int = 2048
    avif_quality: int = 90
    thumbnail_quality: int = 80
    thumbnail_size: int = 400
    format: str = "AVIF"  # AVIF or WEBP

    @classmethod
    def from_settings(cls, settings) -> "OptimizeOptions":
        return cls(
            max_width=settings.optimize_max_width,
            max_height=settings.optimize_max_height,
            avif_quality=settings.optimize_avif_quality,
            thumbnail_quality=settings.optimize_thumbnail_quality,
            thumbnail_size=settings.optimize_thumbnail_size,
            format=settings.optimize_format,
        )

    @property
    def extension(self) -> str:
        return self.format.lower()

    @property
    def content_type(self) -> str:
        return f"image/{self.extension}"


@dataclass
class OptimizedImage:
    """URLs and metadata of the derived variants."""

    avif_url: str
    thumbnail_url: str
    blur_data_url: str
    width: int
    height: int
    size: int


@dataclass
class OptimizationTarget:
    """Where the variants of one image are written."""

    base_path: str
    filename: str


def strip_extensions(name: str, max_extensions: int = 2) -> str:
    """Remove up to ``max_extensions`` trailing extensions (``a.png.tmp`` -> ``a``)."""
    for _ in range(max_extensions):
        stem, dot, ext = name.rpartition(".")
        if not dot or not stem or not ext:
            break
        name = stem
    return name


def _split_key(key: str) -> OptimizationTarget | None:
    base_path, sep, name = key.strip("/").rpartition("/")
    if not sep or not base_path:
        return None
    filename = strip_extensions(name)
    if not filename:
        return None
    return OptimizationTarget(base_path=base_path, filename=filename)


def resolve_optimization_target(
    entry: dict[str, Any], url_prefixes: list[str]
) -> OptimizationTarget | None:
    """
    Work out where an image's variants should be stored.

    A ``storage_path`` wins; otherwise the URL is matched against the known
    storage URL prefixes.

    Returns:
        The target, or None when the image cannot be placed (skip it)
    """
    storage_path = entry.get("storage_path")
    if isinstance(storage_path, str) and storage_path:
        target = _split_key(storage_path)
        if target is not None:
            return target

    for field in ("url", "original_url"):
        key = key_from_url(entry.get(field), url_prefixes)
        if key:
            target = _split_key(key)
            if target is not None:
                return target
    return None


class MediaOptimizer:
    """Create optimized variants of stored images."""

    def __init__(
        self,
        storage: StorageProvider,
        options: OptimizeOptions | None = None,
        download_timeout: float = 30.0,
        max_download_bytes: int = 50 * 1024 * 1024,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.storage = storage
        self.options = options or OptimizeOptions()
        self.download_timeout = download_timeout
        self.max_download_bytes = max_download_bytes
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.download_timeout,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this optimizer created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def optimize_image(
        self,
        url: str,
        base_path: str,
        filename: str,
        options: OptimizeOptions | None = None,
    ) -> OptimizedImage:
        """
        Optimize one image.

        Args:
            url: Source image URL
            base_path: Storage directory for the variants
            filename: Base filename (no extension)
            options: Overrides the optimizer defaults

        Returns:
            OptimizedImage with the public URLs of the variants

        Raises:
            httpx.HTTPError: Download failed
            ValueError: Source too large or not a decodable image
        """
        opts = options or self.options
        data = await self._download(url)

        optimized, thumbnail, blur_data_url, width, height = await asyncio.to_thread(
            self._transform, data, opts
        )

        base_path = base_path.strip("/")
        main_key = f"{base_path}/{filename}_optimized.{opts.extension}"
        thumb_key = f"{base_path}/{filename}_thumb.{opts.extension}"

        main_obj, thumb_obj = await asyncio.gather(
            self.storage.save(main_key, optimized, opts.content_type, {"source": "optimizer"}),
            self.storage.save(thumb_key, thumbnail, opts.content_type, {"source": "optimizer"}),
        )

        logger.debug(f"Optimized {url} -> {main_key} ({len(optimized)} bytes)")

        return OptimizedImage(
            avif_url=main_obj.public_url or self.storage.get_public_url(main_key),
            thumbnail_url=thumb_obj.public_url or self.storage.get_public_url(thumb_key),
            blur_data_url=blur_data_url,
            width=width,
            height=height,
            size=len(optimized),
        )

    async def _download(self, url: str) -> bytes:
        client = await self._get_client()
        buffer = bytearray()
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) > self.max_download_bytes:
                    raise ValueError(
                        f"Image exceeds {self.max_download_bytes} bytes: {url}"
                    )
        if not buffer:
            raise ValueError(f"Empty image body: {url}")
        return bytes(buffer)

    @staticmethod
    def _transform(data: bytes, opts: OptimizeOptions) -> tuple[bytes, bytes, str, int, int]:
        try:
            source = Image.open(BytesIO(data))
            source.load()
        except (OSError, Image.DecompressionBombError) as e:
            raise ValueError(f"Cannot decode image: {e}") from e

        image = ImageOps.exif_transpose(source)
        if image.mode not in ("RGB", "RGBA"):
            has_alpha = "A" in image.mode or "transparency" in image.info
            image = image.convert("RGBA" if has_alpha else "RGB")

        # Optimized copy: fit inside max bounds, never upscale
        main = image.copy()
        main.thumbnail((opts.max_width, opts.max_height), Image.Resampling.LANCZOS)
        main_buf = BytesIO()
        main.save(main_buf, format=opts.format, quality=opts.avif_quality)

        thumb = image.copy()
        thumb.thumbnail((opts.thumbnail_size, opts.thumbnail_size), Image.Resampling.LANCZOS)
        thumb_buf = BytesIO()
        thumb.save(thumb_buf, format=opts.format, quality=opts.thumbnail_quality)

        blur = image.copy()
        blur.thumbnail((BLUR_SIZE, BLUR_SIZE), Image.Resampling.BILINEAR)
        blur = blur.filter(ImageFilter.GaussianBlur(radius=2))
        blur_buf = BytesIO()
        blur.save(blur_buf, format="WEBP", quality=BLUR_QUALITY)
        blur_data_url = "data:image/webp;base64," + base64.b64encode(blur_buf.getvalue()).decode(
            "ascii"
        )

        return main_buf.getvalue(), thumb_buf.getvalue(), blur_data_url, main.width, main.height
