"""
Pydantic schemas for API request/response models.
"""

from .common import (
    ComponentHealth,
    DetailedHealthCheckResponse,
    HealthCheckResponse,
    HealthStatus,
    MessageResponse,
)
from .generations import (
    CompleteGenerationRequest,
    FailGenerationRequest,
    GenerationItemResponse,
    GenerationListResponse,
    GenerationStatsResponse,
    StartGenerationRequest,
    StartGenerationResponse,
    UpdateGenerationRequest,
)

__all__ = [
    # Common
    "HealthStatus",
    "HealthCheckResponse",
    "DetailedHealthCheckResponse",
    "ComponentHealth",
    "MessageResponse",
    # Generations
    "StartGenerationRequest",
    "StartGenerationResponse",
    "CompleteGenerationRequest",
    "FailGenerationRequest",
    "UpdateGenerationRequest",
    "GenerationItemResponse",
    "GenerationListResponse",
    "GenerationStatsResponse",
]
