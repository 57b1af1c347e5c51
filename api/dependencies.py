"""
FastAPI dependency injection for the generation services.
"""

import logging

from fastapi import HTTPException, Request

from services import GenerationHistoryService, ServiceContainer

logger = logging.getLogger(__name__)


def get_services(request: Request) -> ServiceContainer:
    """
    Get the service container built in the application lifespan.

    Raises 503 when the database was not configured at startup.
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=503,
            detail="Generation history unavailable. Is DATABASE_URL configured?",
        )
    return services


def get_generation_service(request: Request) -> GenerationHistoryService:
    """Get the generation lifecycle service."""
    return get_services(request).generations
