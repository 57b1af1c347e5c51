"""
API routers for different endpoints.
"""

from .generations import router as generations_router
from .health import router as health_router
from .media import router as media_router

__all__ = [
    "health_router",
    "generations_router",
    "media_router",
]
