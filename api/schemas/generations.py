"""
Generation lifecycle Pydantic schemas.

History items themselves are passed through as dicts: provider-specific
fields vary per generation type.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# A media entry may still be a bare URL string from older clients
RawMedia = Union[str, Dict[str, Any]]


class StartGenerationRequest(BaseModel):
    """Create a history item for a generation that is about to run."""

    model_config = ConfigDict(extra="allow")

    prompt: str = Field(default="", max_length=20000, description="Generation prompt")
    model: Optional[str] = Field(None, description="Provider model identifier")
    generation_type: Optional[str] = Field(
        None, description="Generation type, e.g. text-to-image or logo"
    )
    tags: List[str] = Field(default_factory=list)
    nsfw: bool = False
    is_public: bool = False
    input_images: List[RawMedia] = Field(default_factory=list)
    input_videos: List[RawMedia] = Field(default_factory=list)


class CompleteGenerationRequest(BaseModel):
    """Outputs of a finished generation."""

    images: List[RawMedia] = Field(default_factory=list)
    videos: List[RawMedia] = Field(default_factory=list)
    tags: Optional[List[str]] = None
    nsfw: Optional[bool] = None
    is_public: Optional[bool] = Field(
        None, description="Explicit visibility; omitted keeps the current value"
    )


class FailGenerationRequest(BaseModel):
    error: str = Field(default="Generation failed", max_length=5000)


class UpdateGenerationRequest(BaseModel):
    """
    Partial update.

    ``image`` / ``video`` patch a single media entry matched by id, url or
    storage_path. Unknown fields are stored as provided.
    """

    model_config = ConfigDict(extra="allow")

    is_public: Optional[bool] = None
    tags: Optional[List[str]] = None
    nsfw: Optional[bool] = None
    prompt: Optional[str] = None
    generation_type: Optional[str] = None
    image: Optional[Dict[str, Any]] = None
    video: Optional[Dict[str, Any]] = None


class StartGenerationResponse(BaseModel):
    history_id: str
    item: Dict[str, Any]


class GenerationItemResponse(BaseModel):
    item: Dict[str, Any]


class GenerationListResponse(BaseModel):
    """
    One page of history items.

    A page can be shorter than ``limit`` while ``has_more`` is True; keep
    requesting with ``next_cursor``.
    """

    items: List[Dict[str, Any]] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


class GenerationStatsResponse(BaseModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)


SortOrder = Literal["asc", "desc"]
