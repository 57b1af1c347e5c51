"""
Health check endpoints.

Provides basic and detailed health check functionality.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from api.schemas.common import (
    ComponentHealth,
    DetailedHealthCheckResponse,
    HealthCheckResponse,
    HealthStatus,
)
from core.config import Settings, get_settings
from core.redis import RedisHealthCheck
from database import check_database

router = APIRouter(prefix="/health", tags=["health"])

# Track application start time for uptime calculation
_start_time = time.time()


def _component(result: dict) -> ComponentHealth:
    healthy = result["status"] == "healthy"
    return ComponentHealth(
        status=HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY,
        latency_ms=result.get("latency_ms"),
        error=result.get("error") or (None if healthy else result["status"]),
        details={"version": result["version"]} if result.get("version") else None,
    )


@router.get(
    "",
    response_model=HealthCheckResponse,
    summary="Basic health check",
    description="Quick health check endpoint for load balancers and container orchestration.",
)
async def health_check() -> HealthCheckResponse:
    """Returns a simple healthy status if the API is running."""
    return HealthCheckResponse(
        status=HealthStatus.HEALTHY,
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/detailed",
    response_model=DetailedHealthCheckResponse,
    summary="Detailed health check",
    description="Comprehensive health check with status of all components.",
)
async def detailed_health_check(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> DetailedHealthCheckResponse:
    """
    Detailed health check with component status.

    Checks Redis, the database, object storage and the mirror queue backlog.
    Redis only backs stats and cache, so losing it degrades the service.
    """
    components = {}
    overall_status = HealthStatus.HEALTHY

    components["redis"] = _component(await RedisHealthCheck.check())
    if components["redis"].status != HealthStatus.HEALTHY:
        overall_status = HealthStatus.DEGRADED

    components["database"] = _component(await check_database())
    if components["database"].status != HealthStatus.HEALTHY:
        overall_status = HealthStatus.UNHEALTHY

    services = getattr(request.app.state, "services", None)
    if services is not None:
        storage = services.storage
        components["storage"] = ComponentHealth(
            status=HealthStatus.HEALTHY if storage.is_available else HealthStatus.UNHEALTHY,
            details={"backend": storage.name},
        )
        if not storage.is_available and overall_status == HealthStatus.HEALTHY:
            overall_status = HealthStatus.DEGRADED

        try:
            depth = await services.mirror_worker.queue.count_by_status()
            components["mirror_queue"] = ComponentHealth(
                status=HealthStatus.DEGRADED if depth.get("failed") else HealthStatus.HEALTHY,
                details=depth,
            )
        except Exception as e:
            components["mirror_queue"] = ComponentHealth(
                status=HealthStatus.UNHEALTHY, error=str(e)
            )

    return DetailedHealthCheckResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        version=settings.app_version,
        environment=settings.environment,
        uptime_seconds=round(time.time() - _start_time, 2),
        components=components,
    )


@router.get(
    "/live",
    response_model=HealthCheckResponse,
    summary="Liveness check",
    description="Check if the application is alive.",
)
async def liveness_check() -> HealthCheckResponse:
    return HealthCheckResponse(
        status=HealthStatus.HEALTHY,
        timestamp=datetime.now(timezone.utc),
    )
