"""
Media serving router.

Serves stored media when the storage backend has no public URL configured
(local file system storage hands out ``/api/media/{key}`` URLs).
"""

import logging
import mimetypes

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from api.dependencies import get_services
from services import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])

_EXTRA_TYPES = {".avif": "image/avif", ".webp": "image/webp"}


def guess_content_type(path: str) -> str:
    lower = path.lower()
    for suffix, content_type in _EXTRA_TYPES.items():
        if lower.endswith(suffix):
            return content_type
    return mimetypes.guess_type(path)[0] or "application/octet-stream"


@router.get("/{path:path}")
async def serve_media(
    path: str,
    services: ServiceContainer = Depends(get_services),
):
    """
    Serve a stored file by key.

    The key format is typically ``users/{uid}/{history_id}/{filename}``.
    """
    storage = services.storage
    try:
        data = await storage.load(path)
    except ValueError:
        data = None

    if not data:
        raise HTTPException(status_code=404, detail="Media not found")

    filename = path.split("/")[-1]
    return Response(
        content=data,
        media_type=guess_content_type(path),
        headers={
            "Cache-Control": "public, max-age=86400",  # 1 day cache
            "Content-Disposition": f'inline; filename="{filename}"',
        },
    )
