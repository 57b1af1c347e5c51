"""
Repository layer for database access.

Each repository takes the async session factory and opens one unit of work
per call.
"""

from .generation_history_repo import (
    GenerationHistoryRepository,
    decode_cursor,
    encode_cursor,
)
from .mirror_queue_repo import MirrorQueueRepository, MirrorTask
from .public_generation_repo import PublicGenerationRepository, merge_media_by_id

__all__ = [
    "GenerationHistoryRepository",
    "PublicGenerationRepository",
    "MirrorQueueRepository",
    "MirrorTask",
    "encode_cursor",
    "decode_cursor",
    "merge_media_by_id",
]
