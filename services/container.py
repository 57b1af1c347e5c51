"""
Construction of the generation services.

The API lifespan, the ARQ worker and maintenance scripts build their service
graph here, once, and tear it down with ``ServiceContainer.close``.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import Settings
from core.tasks import BackgroundTaskRunner
from database.repositories import (
    GenerationHistoryRepository,
    MirrorQueueRepository,
    PublicGenerationRepository,
)

from .file_cleanup import GenerationFileCleaner
from .generation_cache import GenerationCache
from .generation_history import GenerationHistoryService
from .generation_stats import GenerationStatsService
from .media_optimizer import MediaOptimizer, OptimizeOptions
from .mirror_queue import MirrorQueueWorker
from .mirror_sync import CreatorLookup, MirrorReconciler
from .storage import StorageProvider, create_storage_provider, known_url_prefixes

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    history_repo: GenerationHistoryRepository
    generations: GenerationHistoryService
    mirror_worker: MirrorQueueWorker
    reconciler: MirrorReconciler
    optimizer: MediaOptimizer
    storage: StorageProvider
    task_runner: BackgroundTaskRunner

    async def close(self) -> None:
        await self.task_runner.shutdown()
        await self.optimizer.close()


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client=None,
    storage: StorageProvider | None = None,
    creator_lookup: CreatorLookup | None = None,
) -> ServiceContainer:
    """Wire repositories, secondary views and the lifecycle engine together."""
    storage = storage or create_storage_provider()
    url_prefixes = known_url_prefixes()

    history_repo = GenerationHistoryRepository(session_factory)
    mirror_repo = PublicGenerationRepository(session_factory)
    queue_repo = MirrorQueueRepository(session_factory, stale_after=settings.mirror_queue_stale_after)

    reconciler = MirrorReconciler(
        history_repo,
        mirror_repo,
        creator_lookup=creator_lookup,
        sync_retries=settings.mirror_sync_retries,
    )
    options = OptimizeOptions.from_settings(settings)
    optimizer = MediaOptimizer(
        storage,
        options,
        download_timeout=settings.optimize_download_timeout,
        max_download_bytes=settings.optimize_max_download_bytes,
    )
    task_runner = BackgroundTaskRunner(max_concurrent=settings.background_max_concurrency)

    generations = GenerationHistoryService(
        history_repo=history_repo,
        mirror_repo=mirror_repo,
        mirror_queue=queue_repo,
        stats=GenerationStatsService(redis_client),
        cache=GenerationCache(
            redis_client,
            enabled=settings.generation_cache_enabled,
            item_ttl=settings.generation_cache_item_ttl,
            list_ttl=settings.generation_cache_list_ttl,
        ),
        optimizer=optimizer,
        file_cleaner=GenerationFileCleaner(storage, url_prefixes),
        task_runner=task_runner,
        mirror_sync=reconciler,
        url_prefixes=url_prefixes,
        optimize_options=options,
    )

    mirror_worker = MirrorQueueWorker(
        queue_repo,
        reconciler,
        batch_limit=settings.mirror_queue_batch_limit,
        concurrency=settings.mirror_queue_concurrency,
        max_attempts=settings.mirror_queue_max_attempts,
        retry_base_delay=settings.mirror_queue_retry_base_delay,
        retry_max_delay=settings.mirror_queue_retry_max_delay,
    )

    logger.info(
        f"Generation services ready (storage={storage.name}, "
        f"cache={'on' if generations.cache.enabled else 'off'})"
    )
    return ServiceContainer(
        history_repo=history_repo,
        generations=generations,
        mirror_worker=mirror_worker,
        reconciler=reconciler,
        optimizer=optimizer,
        storage=storage,
        task_runner=task_runner,
    )
