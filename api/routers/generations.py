"""
Generation history router.

Endpoints:
- POST /api/generations - Start a generation
- POST /api/generations/{history_id}/complete - Record success
- POST /api/generations/{history_id}/fail - Record failure
- GET /api/generations - List generations
- GET /api/generations/stats - Per-user counters
- GET /api/generations/{history_id} - Get one generation
- PATCH /api/generations/{history_id} - Partial update / visibility toggle
- DELETE /api/generations/{history_id} - Soft delete
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_generation_service
from api.schemas.generations import (
    CompleteGenerationRequest,
    FailGenerationRequest,
    GenerationItemResponse,
    GenerationListResponse,
    GenerationStatsResponse,
    SortOrder,
    StartGenerationRequest,
    StartGenerationResponse,
    UpdateGenerationRequest,
)
from api.schemas.common import MessageResponse
from core.auth import AppUser, require_current_user
from core.exceptions import GenerationNotFoundError
from services import GenerationHistoryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/generations", tags=["generations"])


# ============ Lifecycle ============


@router.post("", response_model=StartGenerationResponse, status_code=201)
async def start_generation(
    request: StartGenerationRequest,
    user: AppUser = Depends(require_current_user),
    service: GenerationHistoryService = Depends(get_generation_service),
):
    """Create a history item in the generating state."""
    result = await service.start_generation(
        user.uid,
        request.model_dump(exclude_none=True),
        creator=user.creator_snapshot(),
    )
    return StartGenerationResponse(**result)


@router.post("/{history_id}/complete", response_model=GenerationItemResponse)
async def complete_generation(
    history_id: str,
    request: CompleteGenerationRequest,
    user: AppUser = Depends(require_current_user),
    service: GenerationHistoryService = Depends(get_generation_service),
):
    """Record the outputs of a finished generation. Repeating the call is safe."""
    item = await service.mark_generation_completed(
        user.uid, history_id, request.model_dump(exclude_none=True)
    )
    return GenerationItemResponse(item=item)


@router.post("/{history_id}/fail", response_model=MessageResponse)
async def fail_generation(
    history_id: str,
    request: FailGenerationRequest,
    user: AppUser = Depends(require_current_user),
    service: GenerationHistoryService = Depends(get_generation_service),
):
    """Record a failed generation (only allowed while generating)."""
    await service.mark_generation_failed(user.uid, history_id, {"error": request.error})
    return MessageResponse(message="Generation marked as failed")


# ============ Reads ============


@router.get("", response_model=GenerationListResponse)
async def list_generations(
    limit: int = Query(default=20, ge=1, le=100),
    cursor: Optional[str] = Query(default=None, description="Id of the last item seen"),
    next_cursor: Optional[str] = Query(default=None),
    generation_type: Optional[List[str]] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    sort_order: SortOrder = Query(default="desc"),
    user: AppUser = Depends(require_current_user),
    service: GenerationHistoryService = Depends(get_generation_service),
):
    """
    List the caller's generations, newest first.

    Failed generations are not listed.
    """
    result = await service.list_user_generations(
        user.uid,
        limit=limit,
        cursor=cursor,
        next_cursor=next_cursor,
        generation_type=generation_type,
        search=search,
        sort_order=sort_order,
    )
    return GenerationListResponse(**result)


@router.get("/stats", response_model=GenerationStatsResponse)
async def generation_stats(
    user: AppUser = Depends(require_current_user),
    service: GenerationHistoryService = Depends(get_generation_service),
):
    return GenerationStatsResponse(**await service.get_user_stats(user.uid))


@router.get("/{history_id}", response_model=GenerationItemResponse)
async def get_generation(
    history_id: str,
    user: AppUser = Depends(require_current_user),
    service: GenerationHistoryService = Depends(get_generation_service),
):
    item = await service.get_user_generation(user.uid, history_id)
    if item.get("is_deleted"):
        raise GenerationNotFoundError(details={"history_id": history_id})
    return GenerationItemResponse(item=item)


# ============ Mutations ============


@router.patch("/{history_id}", response_model=GenerationItemResponse)
async def update_generation(
    history_id: str,
    request: UpdateGenerationRequest,
    user: AppUser = Depends(require_current_user),
    service: GenerationHistoryService = Depends(get_generation_service),
):
    result = await service.update(user.uid, history_id, request.model_dump(exclude_none=True))
    return GenerationItemResponse(**result)


@router.delete("/{history_id}", response_model=GenerationItemResponse)
async def delete_generation(
    history_id: str,
    user: AppUser = Depends(require_current_user),
    service: GenerationHistoryService = Depends(get_generation_service),
):
    """Soft delete; stored files are removed in the background."""
    result = await service.soft_delete(user.uid, history_id)
    return GenerationItemResponse(**result)
