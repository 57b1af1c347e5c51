"""
Unit tests for the record store, mirror store and mirror queue repositories.

Run against a throwaway SQLite database.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.exceptions import GenerationNotFoundError
from database.models import MirrorOp, MirrorTaskStatus, utcnow
from database.repositories import (
    MirrorQueueRepository,
    decode_cursor,
    encode_cursor,
    merge_media_by_id,
)


async def _seed(repo, uid, count, **fields):
    """Create ``count`` items with created_at one minute apart (oldest first)."""
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    ids = []
    for i in range(count):
        history_id = await repo.create(uid, {"prompt": f"prompt {i}", **fields})
        await repo.update(uid, history_id, {"created_at": base + timedelta(minutes=i)})
        ids.append(history_id)
    return ids


class TestCursor:
    def test_roundtrip(self):
        created_at = datetime(2025, 3, 1, 12, 30, 15, 123000, tzinfo=timezone.utc)
        cursor = encode_cursor(created_at, "abc_def")

        millis, _, rest = cursor.partition("_")
        assert millis.isdigit()
        assert rest == "abc_def"
        assert decode_cursor(cursor) == (created_at, "abc_def")

    def test_naive_datetime_is_utc(self):
        naive = datetime(1970, 1, 1, 0, 0, 1)

        assert encode_cursor(naive, "h1") == "1000_h1"

    @pytest.mark.parametrize("cursor", ["", "nounderscore", "abc_h1", "123_"])
    def test_malformed(self, cursor):
        assert decode_cursor(cursor) is None


class TestGenerationHistoryRepository:
    @pytest.mark.asyncio
    async def test_create_and_get(self, history_repo):
        history_id = await history_repo.create(
            "u1",
            {"prompt": "a cat", "generation_type": "logo", "is_public": True, "seed": 42, "model": None},
        )

        item = await history_repo.get("u1", history_id)

        assert item["id"] == history_id
        assert item["status"] == "generating"
        assert item["visibility"] == "public"
        assert item["is_deleted"] is False
        assert item["seed"] == 42
        assert item["created_by"] == {"uid": "u1"}
        assert "model" not in item
        assert "error" not in item
        assert item["created_at"] == item["updated_at"]

    @pytest.mark.asyncio
    async def test_create_uses_given_id(self, history_repo):
        assert await history_repo.create("u1", {"id": "fixed-id"}) == "fixed-id"

    @pytest.mark.asyncio
    async def test_get_is_scoped_to_owner(self, history_repo):
        history_id = await history_repo.create("u1", {"prompt": "mine"})

        assert await history_repo.get("u2", history_id) is None

    @pytest.mark.asyncio
    async def test_update(self, history_repo):
        history_id = await history_repo.create("u1", {"prompt": "a cat"})
        before = await history_repo.get("u1", history_id)

        await history_repo.update(
            "u1", history_id, {"status": "completed", "tags": ["cat"], "provider_job": "j1"}
        )
        item = await history_repo.get("u1", history_id)

        assert item["status"] == "completed"
        assert item["tags"] == ["cat"]
        assert item["provider_job"] == "j1"
        assert item["updated_at"] >= before["updated_at"]

    @pytest.mark.asyncio
    async def test_update_keeps_given_updated_at(self, history_repo):
        history_id = await history_repo.create("u1", {"prompt": "a cat"})

        await history_repo.update(
            "u1", history_id, {"tags": ["x"], "updated_at": "2024-05-01T00:00:00+00:00"}
        )

        assert (await history_repo.get("u1", history_id))["updated_at"] == "2024-05-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_update_rejects_none(self, history_repo):
        history_id = await history_repo.create("u1", {"prompt": "a cat"})

        with pytest.raises(ValueError):
            await history_repo.update("u1", history_id, {"prompt": None})

        await history_repo.update("u1", history_id, {"error": None})

    @pytest.mark.asyncio
    async def test_update_missing(self, history_repo):
        with pytest.raises(GenerationNotFoundError):
            await history_repo.update("u1", "missing", {"tags": []})

    @pytest.mark.asyncio
    async def test_list_pages_newest_first(self, history_repo):
        ids = await _seed(history_repo, "u1", 5)

        seen, cursor, flags = [], None, []
        while True:
            page = await history_repo.list("u1", limit=2, next_cursor=cursor)
            seen += [item["id"] for item in page["items"]]
            flags.append(page["has_more"])
            if not page["has_more"]:
                assert page["next_cursor"] is None
                break
            cursor = page["next_cursor"]

        assert seen == list(reversed(ids))
        assert flags == [True, True, False]

    @pytest.mark.asyncio
    async def test_list_ascending(self, history_repo):
        ids = await _seed(history_repo, "u1", 3)

        page = await history_repo.list("u1", limit=2, sort_order="asc")
        rest = await history_repo.list("u1", limit=2, sort_order="asc", next_cursor=page["next_cursor"])

        assert [i["id"] for i in page["items"] + rest["items"]] == ids

    @pytest.mark.asyncio
    async def test_list_legacy_id_cursor(self, history_repo):
        ids = await _seed(history_repo, "u1", 3)

        page = await history_repo.list("u1", limit=10, cursor=ids[2])

        assert [i["id"] for i in page["items"]] == [ids[1], ids[0]]

    @pytest.mark.asyncio
    async def test_list_filters(self, history_repo):
        logo_ids = await _seed(history_repo, "u1", 2, generation_type="logo")
        legacy_ids = await _seed(history_repo, "u1", 1, generation_type="logo-generation")
        await _seed(history_repo, "u1", 1, generation_type="text-to-image")
        await _seed(history_repo, "u2", 1, generation_type="logo")

        page = await history_repo.list("u1", generation_type=["logo", "logo-generation"])

        assert {i["id"] for i in page["items"]} == set(logo_ids + legacy_ids)

    @pytest.mark.asyncio
    async def test_list_excludes_deleted_and_filters_status(self, history_repo):
        ids = await _seed(history_repo, "u1", 3)
        await history_repo.update("u1", ids[0], {"is_deleted": True})
        await history_repo.update("u1", ids[1], {"status": "completed"})

        everything = await history_repo.list("u1")
        completed = await history_repo.list("u1", status="completed")

        assert [i["id"] for i in everything["items"]] == [ids[2], ids[1]]
        assert [i["id"] for i in completed["items"]] == [ids[1]]

    @pytest.mark.asyncio
    async def test_list_search(self, history_repo):
        await history_repo.create("u1", {"prompt": "A Red Fox in snow"})
        await history_repo.create("u1", {"prompt": "blue whale"})

        page = await history_repo.list("u1", search="red fox")

        assert [i["prompt"] for i in page["items"]] == ["A Red Fox in snow"]

    @pytest.mark.asyncio
    async def test_list_user_ids(self, history_repo):
        await history_repo.create("u2", {})
        await history_repo.create("u1", {})
        await history_repo.create("u1", {})

        assert await history_repo.list_user_ids() == ["u1", "u2"]


class TestPublicGenerationRepository:
    ITEM = {
        "id": "h1",
        "uid": "u1",
        "prompt": "a cat",
        "status": "completed",
        "generation_type": "text-to-image",
        "is_public": True,
        "is_deleted": False,
        "images": [{"id": "h1-img-0", "url": "https://x/1.png", "avif_url": "https://x/1.avif"}],
        "created_by": {"uid": "u1", "username": "alice"},
        "created_at": "2025-01-01T00:00:00+00:00",
        "extra": {"internal": True},
    }

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, mirror_repo):
        await mirror_repo.upsert_from_history("u1", "h1", self.ITEM, {"photo_url": "https://p"})
        first = await mirror_repo.get("h1")
        await mirror_repo.upsert_from_history("u1", "h1", self.ITEM, {"photo_url": "https://p"})
        second = await mirror_repo.get("h1")

        assert first["prompt"] == "a cat"
        assert first["created_by"] == {"uid": "u1", "username": "alice", "photo_url": "https://p"}
        assert first["created_at"] == "2025-01-01T00:00:00+00:00"
        assert "is_deleted" not in first
        assert "extra" not in first
        assert {k: v for k, v in first.items() if k != "updated_at"} == {
            k: v for k, v in second.items() if k != "updated_at"
        }

    @pytest.mark.asyncio
    async def test_update_merges_media_by_id(self, mirror_repo):
        await mirror_repo.upsert_from_history("u1", "h1", self.ITEM)

        updated = await mirror_repo.update_from_history(
            "u1",
            "h1",
            {"tags": ["cat"], "images": [{"id": "h1-img-0", "url": "https://x/1.png", "is_public": True}]},
        )
        record = await mirror_repo.get("h1")

        assert updated is True
        assert record["tags"] == ["cat"]
        assert record["images"] == [
            {"id": "h1-img-0", "url": "https://x/1.png", "avif_url": "https://x/1.avif", "is_public": True}
        ]

    @pytest.mark.asyncio
    async def test_update_without_record(self, mirror_repo):
        assert await mirror_repo.update_from_history("u1", "nope", {"tags": []}) is False
        assert await mirror_repo.get("nope") is None

    @pytest.mark.asyncio
    async def test_remove(self, mirror_repo):
        await mirror_repo.upsert_from_history("u1", "h1", self.ITEM)

        assert await mirror_repo.remove("h1") is True
        assert await mirror_repo.remove("h1") is False
        assert await mirror_repo.get("h1") is None


def test_merge_media_by_id():
    existing = [{"id": "a", "avif_url": "a.avif"}, {"id": "b", "avif_url": "b.avif"}]
    incoming = [{"id": "b", "url": "b.png"}, {"id": "c", "url": "c.png"}]

    assert merge_media_by_id(existing, incoming) == [
        {"id": "b", "avif_url": "b.avif", "url": "b.png"},
        {"id": "c", "url": "c.png"},
    ]


class TestMirrorQueueRepository:
    @pytest.mark.asyncio
    async def test_enqueue_and_poll_in_order(self, queue_repo):
        s1 = await queue_repo.enqueue_upsert("u1", "h1", {"id": "h1"})
        s2 = await queue_repo.enqueue_update("u1", "h1", {"tags": ["x"]})
        s3 = await queue_repo.enqueue_remove("h2", "u1")

        tasks = await queue_repo.poll_pending(limit=10)

        assert s1 < s2 < s3
        assert [t.seq for t in tasks] == [s1, s2, s3]
        assert [t.op for t in tasks] == [MirrorOp.UPSERT, MirrorOp.UPDATE, MirrorOp.DELETE]
        assert tasks[0].payload == {"item": {"id": "h1"}}
        assert tasks[1].payload == {"updates": {"tags": ["x"]}}
        assert tasks[0].status == MirrorTaskStatus.PENDING
        assert tasks[0].available_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_poll_limit(self, queue_repo):
        for i in range(4):
            await queue_repo.enqueue_remove(f"h{i}")

        assert len(await queue_repo.poll_pending(limit=3)) == 3

    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, queue_repo):
        seq = await queue_repo.enqueue_remove("h1")

        assert await queue_repo.claim(seq) is True
        assert await queue_repo.claim(seq) is False
        assert await queue_repo.poll_pending() == []

    @pytest.mark.asyncio
    async def test_stale_processing_task_is_reclaimed(self, session_factory):
        queue = MirrorQueueRepository(session_factory, stale_after=-1)
        seq = await queue.enqueue_remove("h1")

        assert await queue.claim(seq) is True
        assert await queue.claim(seq) is True
        assert (await queue.poll_pending())[0].attempts == 2

    @pytest.mark.asyncio
    async def test_retry_and_complete(self, queue_repo):
        seq = await queue_repo.enqueue_remove("h1")
        await queue_repo.claim(seq)

        await queue_repo.mark_retry(seq, "boom", delay=60)
        [task] = await queue_repo.poll_pending()

        assert task.status == MirrorTaskStatus.PENDING
        assert task.attempts == 1
        assert task.error == "boom"
        assert task.available_at > utcnow() + timedelta(seconds=50)

        await queue_repo.mark_completed(seq)
        assert await queue_repo.poll_pending() == []

    @pytest.mark.asyncio
    async def test_failed_tasks_are_kept_but_not_polled(self, queue_repo):
        seq = await queue_repo.enqueue_remove("h1")
        await queue_repo.enqueue_remove("h2")
        await queue_repo.claim(seq)

        await queue_repo.mark_failed(seq, "gave up")

        assert [t.history_id for t in await queue_repo.poll_pending()] == ["h2"]
        assert await queue_repo.count_by_status() == {"failed": 1, "pending": 1}
