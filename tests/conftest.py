"""
Pytest configuration and fixtures.
"""

import fnmatch
import os
from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# Set test environment before importing app
os.environ["ENVIRONMENT"] = "testing"
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-32chars!"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ.pop("DATABASE_URL", None)


# ============ App Fixtures ============


@pytest.fixture
def client() -> TestClient:
    """Synchronous test client."""
    from api.main import app

    return TestClient(app)


@pytest.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """Asynchronous test client."""
    from api.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


# ============ Mock Redis ============


class MockRedis:
    """Mock Redis client for testing."""

    def __init__(self):
        self._data: dict[str, Any] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self._expiry: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str, ex: int = None) -> bool:
        self._data[key] = value
        if ex:
            self._expiry[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        count = 0
        for key in keys:
            if key in self._data:
                del self._data[key]
                count += 1
            if key in self._hashes:
                del self._hashes[key]
                count += 1
        return count

    async def exists(self, key: str) -> int:
        return 1 if key in self._data or key in self._hashes else 0

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self._hashes.get(key, {}))

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        if key not in self._hashes:
            self._hashes[key] = {}
        current = int(self._hashes[key].get(field, 0))
        new_value = current + amount
        self._hashes[key][field] = str(new_value)
        return new_value

    async def scan_iter(self, match: str = "*"):
        for key in list(self._data) + list(self._hashes):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def ping(self) -> bool:
        return True

    def pipeline(self):
        return MockPipeline(self)

    async def aclose(self):
        pass


class MockPipeline:
    """Mock Redis pipeline."""

    def __init__(self, redis: MockRedis):
        self._redis = redis
        self._commands = []

    def hincrby(self, key: str, field: str, amount: int):
        self._commands.append(("hincrby", key, field, amount))
        return self

    async def execute(self):
        results = []
        for cmd in self._commands:
            if cmd[0] == "hincrby":
                results.append(await self._redis.hincrby(cmd[1], cmd[2], cmd[3]))
        self._commands = []
        return results

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


class FailingRedis:
    """Redis stand-in whose every command raises."""

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            raise ConnectionError("redis down")

        return fail

    def pipeline(self):
        raise ConnectionError("redis down")

    async def scan_iter(self, match: str = "*"):
        raise ConnectionError("redis down")
        yield  # pragma: no cover


@pytest.fixture
def mock_redis():
    """Create a mock Redis instance."""
    return MockRedis()


@pytest.fixture
def failing_redis():
    return FailingRedis()


# ============ Database ============


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory on a throwaway SQLite database with all tables created."""
    from sqlalchemy.ext.asyncio import create_async_engine

    from database import build_session_factory, create_tables

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def history_repo(session_factory):
    from database.repositories import GenerationHistoryRepository

    return GenerationHistoryRepository(session_factory)


@pytest.fixture
def mirror_repo(session_factory):
    from database.repositories import PublicGenerationRepository

    return PublicGenerationRepository(session_factory)


@pytest.fixture
def queue_repo(session_factory):
    from database.repositories import MirrorQueueRepository

    return MirrorQueueRepository(session_factory)


# ============ Storage ============


@pytest.fixture
def local_storage(tmp_path):
    from services.storage import LocalStorageProvider, StorageConfig

    return LocalStorageProvider(
        StorageConfig(
            backend="local",
            local_path=str(tmp_path / "storage"),
            public_url="https://cdn.example.com/media",
        )
    )


@pytest.fixture
def url_prefixes():
    return ["https://cdn.example.com/media", "/api/media/"]


# ============ Engine ============


@pytest.fixture
def mock_optimizer():
    """Optimizer that succeeds for every image."""
    from services.media_optimizer import OptimizedImage

    mock = MagicMock()

    async def optimize_image(url, base_path, filename, options=None):
        return OptimizedImage(
            avif_url=f"https://cdn.example.com/media/{base_path}/{filename}_optimized.avif",
            thumbnail_url=f"https://cdn.example.com/media/{base_path}/{filename}_thumb.avif",
            blur_data_url="data:image/webp;base64,AAAA",
            width=64,
            height=64,
            size=128,
        )

    mock.optimize_image = AsyncMock(side_effect=optimize_image)
    return mock


@pytest.fixture
def generation_env(history_repo, mirror_repo, queue_repo, mock_redis, mock_optimizer, url_prefixes):
    """
    A GenerationHistoryService on real repositories.

    Storage cleanup, the background runner and the immediate mirror sync are
    mocks so tests can inspect what was scheduled.
    """
    from services.generation_cache import GenerationCache
    from services.generation_history import GenerationHistoryService
    from services.generation_stats import GenerationStatsService
    from services.mirror_sync import MirrorReconciler

    reconciler = MirrorReconciler(history_repo, mirror_repo, sync_base_delay=0)
    task_runner = MagicMock()
    file_cleaner = MagicMock()
    file_cleaner.delete_generation_files = AsyncMock(return_value=([], []))

    service = GenerationHistoryService(
        history_repo=history_repo,
        mirror_repo=mirror_repo,
        mirror_queue=queue_repo,
        stats=GenerationStatsService(mock_redis),
        cache=GenerationCache(mock_redis, enabled=False),
        optimizer=mock_optimizer,
        file_cleaner=file_cleaner,
        task_runner=task_runner,
        mirror_sync=reconciler,
        url_prefixes=url_prefixes,
    )
    return {
        "service": service,
        "history_repo": history_repo,
        "mirror_repo": mirror_repo,
        "queue_repo": queue_repo,
        "reconciler": reconciler,
        "redis": mock_redis,
        "optimizer": mock_optimizer,
        "task_runner": task_runner,
        "file_cleaner": file_cleaner,
    }


# ============ Test Data Fixtures ============


@pytest.fixture
def sample_start_payload():
    """Sample payload for starting a generation."""
    return {
        "prompt": "A lighthouse at dusk, oil painting",
        "model": "imagen-4",
        "generation_type": "text-to-image",
        "tags": ["landscape"],
    }


@pytest.fixture
def auth_headers():
    """Bearer token for uid user-1."""
    from core.security import create_access_token

    token = create_access_token({"sub": "user-1", "username": "alice", "email": "a@example.com"})
    return {"Authorization": f"Bearer {token}"}
