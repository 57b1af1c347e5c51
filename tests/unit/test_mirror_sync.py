"""
Unit tests for mirror reconciliation.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from database.models import MirrorOp
from database.repositories import MirrorTask
from services.mirror_sync import MirrorReconciler, is_mirrorable


def _task(op, history_id="h1", uid="u1", payload=None):
    now = datetime.now(timezone.utc)
    return MirrorTask(
        seq=1,
        op=op,
        uid=uid,
        history_id=history_id,
        payload=payload or {},
        status="processing",
        attempts=1,
        available_at=now,
        enqueued_at=now,
    )


async def _create(history_repo, **fields):
    return await history_repo.create("u1", {"prompt": "a cat", "status": "completed", **fields})


def test_is_mirrorable():
    assert is_mirrorable({"is_public": True}) is True
    assert is_mirrorable({"is_public": True, "is_deleted": True}) is False
    assert is_mirrorable({"is_public": "true"}) is False
    assert is_mirrorable(None) is False


class TestApply:
    @pytest.mark.asyncio
    async def test_upsert_public_item(self, history_repo, mirror_repo):
        history_id = await _create(history_repo, is_public=True)
        reconciler = MirrorReconciler(history_repo, mirror_repo)

        result = await reconciler.apply(_task(MirrorOp.UPSERT, history_id))

        assert result == "upserted"
        assert (await mirror_repo.get(history_id))["prompt"] == "a cat"

    @pytest.mark.asyncio
    async def test_upsert_uses_fresh_read_over_snapshot(self, history_repo, mirror_repo):
        history_id = await _create(history_repo, is_public=False)
        await mirror_repo.upsert_from_history("u1", history_id, {"is_public": True})
        reconciler = MirrorReconciler(history_repo, mirror_repo)

        result = await reconciler.apply(
            _task(MirrorOp.UPSERT, history_id, payload={"item": {"is_public": True}})
        )

        assert result == "removed"
        assert await mirror_repo.get(history_id) is None

    @pytest.mark.asyncio
    async def test_upsert_falls_back_to_snapshot(self, history_repo, mirror_repo):
        reconciler = MirrorReconciler(history_repo, mirror_repo)
        snapshot = {"id": "gone", "prompt": "snap", "is_public": True}

        result = await reconciler.apply(_task(MirrorOp.UPSERT, "gone", payload={"item": snapshot}))

        assert result == "upserted"
        assert (await mirror_repo.get("gone"))["prompt"] == "snap"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("updates", [{"is_deleted": True}, {"is_public": False}])
    async def test_update_that_hides_removes(self, history_repo, mirror_repo, updates):
        await mirror_repo.upsert_from_history("u1", "h1", {"is_public": True})
        reconciler = MirrorReconciler(history_repo, mirror_repo)

        result = await reconciler.apply(_task(MirrorOp.UPDATE, payload={"updates": updates}))

        assert result == "removed"
        assert await mirror_repo.get("h1") is None

    @pytest.mark.asyncio
    async def test_update_merges_existing_record(self, history_repo, mirror_repo):
        await mirror_repo.upsert_from_history("u1", "h1", {"is_public": True, "tags": []})
        reconciler = MirrorReconciler(history_repo, mirror_repo)

        result = await reconciler.apply(_task(MirrorOp.UPDATE, payload={"updates": {"tags": ["a"]}}))

        assert result == "updated"
        assert (await mirror_repo.get("h1"))["tags"] == ["a"]

    @pytest.mark.asyncio
    async def test_update_creates_record_for_public_item(self, history_repo, mirror_repo):
        history_id = await _create(history_repo, is_public=True)
        reconciler = MirrorReconciler(history_repo, mirror_repo)

        result = await reconciler.apply(
            _task(MirrorOp.UPDATE, history_id, payload={"updates": {"is_public": True}})
        )

        assert result == "upserted"
        assert await mirror_repo.get(history_id) is not None

    @pytest.mark.asyncio
    async def test_update_private_item_without_record(self, history_repo, mirror_repo):
        history_id = await _create(history_repo)
        reconciler = MirrorReconciler(history_repo, mirror_repo)

        result = await reconciler.apply(
            _task(MirrorOp.UPDATE, history_id, payload={"updates": {"tags": ["a"]}})
        )

        assert result == "skipped"
        assert await mirror_repo.get(history_id) is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, history_repo, mirror_repo):
        reconciler = MirrorReconciler(history_repo, mirror_repo)

        assert await reconciler.apply(_task(MirrorOp.DELETE)) == "removed"
        assert await reconciler.apply(_task(MirrorOp.DELETE)) == "removed"

    @pytest.mark.asyncio
    async def test_unknown_op(self, history_repo, mirror_repo):
        reconciler = MirrorReconciler(history_repo, mirror_repo)

        with pytest.raises(ValueError):
            await reconciler.apply(_task("rename"))


class TestCreatorInfo:
    @pytest.mark.asyncio
    async def test_async_lookup_enriches_creator(self, history_repo, mirror_repo):
        history_id = await _create(
            history_repo, is_public=True, created_by={"uid": "u1", "username": "old"}
        )
        lookup = AsyncMock(return_value={"username": "alice", "photo_url": "https://p/a.png"})
        reconciler = MirrorReconciler(history_repo, mirror_repo, creator_lookup=lookup)

        await reconciler.apply_upsert("u1", history_id)

        record = await mirror_repo.get(history_id)
        assert record["created_by"] == {"uid": "u1", "username": "alice", "photo_url": "https://p/a.png"}
        lookup.assert_awaited_once_with("u1")

    @pytest.mark.asyncio
    async def test_failing_lookup_keeps_stored_creator(self, history_repo, mirror_repo):
        history_id = await _create(
            history_repo, is_public=True, created_by={"uid": "u1", "username": "old"}
        )
        lookup = MagicMock(side_effect=RuntimeError("profile service down"))
        reconciler = MirrorReconciler(history_repo, mirror_repo, creator_lookup=lookup)

        assert await reconciler.apply_upsert("u1", history_id) == "upserted"
        assert (await mirror_repo.get(history_id))["created_by"] == {"uid": "u1", "username": "old"}


class TestSyncNow:
    @pytest.mark.asyncio
    async def test_success(self, history_repo, mirror_repo):
        history_id = await _create(history_repo, is_public=True)
        reconciler = MirrorReconciler(history_repo, mirror_repo, sync_base_delay=0)

        assert await reconciler.sync_now("u1", history_id) is True
        assert await mirror_repo.get(history_id) is not None

    @pytest.mark.asyncio
    async def test_retries_then_gives_up(self, history_repo):
        broken_mirror = MagicMock()
        broken_mirror.remove = AsyncMock(side_effect=ConnectionError("mirror down"))
        reconciler = MirrorReconciler(history_repo, broken_mirror, sync_retries=3, sync_base_delay=0)

        assert await reconciler.sync_now("u1", "missing") is False
        assert broken_mirror.remove.await_count == 3

    @pytest.mark.asyncio
    async def test_recovers_on_retry(self, history_repo):
        flaky_mirror = MagicMock()
        flaky_mirror.remove = AsyncMock(side_effect=[ConnectionError("blip"), True])
        reconciler = MirrorReconciler(history_repo, flaky_mirror, sync_base_delay=0)

        assert await reconciler.sync_now("u1", "missing") is True
        assert flaky_mirror.remove.await_count == 2
