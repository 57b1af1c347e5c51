"""
Services for the generation history service.
"""

from .container import ServiceContainer, build_services
from .generation_history import GenerationHistoryService
from .mirror_queue import MirrorQueueWorker
from .mirror_sync import MirrorReconciler

__all__ = [
    "GenerationHistoryService",
    "MirrorQueueWorker",
    "MirrorReconciler",
    "ServiceContainer",
    "build_services",
]
