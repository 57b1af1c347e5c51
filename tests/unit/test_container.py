"""
Unit tests for service construction.
"""

import pytest

from core.config import Settings
from services import build_services


class TestBuildServices:
    @pytest.mark.asyncio
    async def test_wires_settings(self, session_factory, local_storage, mock_redis):
        settings = Settings(
            generation_cache_enabled=True,
            mirror_queue_batch_limit=7,
            mirror_queue_max_attempts=3,
            mirror_sync_retries=2,
        )

        services = build_services(settings, session_factory, mock_redis, storage=local_storage)

        assert services.storage is local_storage
        assert services.generations.cache.enabled is True
        assert services.mirror_worker.batch_limit == 7
        assert services.mirror_worker.max_attempts == 3
        assert services.reconciler.sync_retries == 2
        assert services.generations.mirror_sync is services.reconciler
        await services.close()

    @pytest.mark.asyncio
    async def test_cache_off_without_redis(self, session_factory, local_storage):
        services = build_services(
            Settings(generation_cache_enabled=True), session_factory, storage=local_storage
        )

        assert services.generations.cache.enabled is False
        await services.close()

    @pytest.mark.asyncio
    async def test_end_to_end_start(self, session_factory, local_storage, mock_redis):
        services = build_services(Settings(), session_factory, mock_redis, storage=local_storage)

        result = await services.generations.start_generation("u1", {"prompt": "a cat"})

        assert await services.history_repo.get("u1", result["history_id"]) is not None
        assert (await services.mirror_worker.process_pending())["completed"] == 1
        await services.close()
