"""
FastAPI application entry point.

This is the main entry point for the Generation History API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import setup_exception_handlers
from api.routers import generations_router, health_router, media_router
from core.config import get_settings
from core.redis import close_redis, init_redis
from database import close_database, get_session_factory, init_database, is_database_available
from services import build_services

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format=get_settings().log_format,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the service graph on startup and drains background work on
    shutdown.
    """
    settings = get_settings()

    # ============ Startup ============
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    # Redis only backs stats and the cache, both optional
    redis_client = None
    try:
        redis_client = await init_redis()
        logger.info("Redis initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize Redis, stats and cache disabled: {e}")

    app.state.services = None
    if settings.is_database_configured:
        try:
            await init_database()
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    if is_database_available():
        app.state.services = build_services(settings, get_session_factory(), redis_client)
    else:
        logger.warning("Database not configured, generation endpoints will return 503")

    logger.info("Application startup complete")

    yield

    # ============ Shutdown ============
    logger.info("Shutting down application...")

    if app.state.services is not None:
        await app.state.services.close()

    await close_redis()
    await close_database()

    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Generation lifecycle and public mirror synchronization API",
        version=settings.app_version,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ============ Middleware ============

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    # ============ Exception Handlers ============
    setup_exception_handlers(app)

    # ============ Routers ============

    app.include_router(health_router, prefix="/api")
    app.include_router(generations_router, prefix="/api")

    # Media serving (for local storage proxy)
    app.include_router(media_router, prefix="/api")

    # ============ Root Endpoint ============

    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs" if not settings.is_production else None,
            "health": "/api/health",
        }

    return app


# Create application instance
app = create_app()


def run():
    """Run the application with uvicorn (for development)."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
