"""
Public generation repository (the mirror store).
"""

from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import PublicGeneration, as_utc, utcnow

# Fields that only make sense on the owner's record
_PRIVATE_FIELDS = {"is_deleted", "extra"}
_MEDIA_FIELDS = ("images", "videos")


def merge_media_by_id(
    existing: list[dict[str, Any]], incoming: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """
    Merge incoming media entries into existing ones by ``id``.

    Incoming order wins. Fields only present on the existing entry (for
    example optimization URLs) are kept.
    """
    by_id = {
        entry.get("id"): entry
        for entry in existing
        if isinstance(entry, dict) and entry.get("id")
    }
    merged = []
    for entry in incoming:
        if isinstance(entry, dict) and entry.get("id") in by_id:
            merged.append({**by_id[entry["id"]], **entry})
        else:
            merged.append(entry)
    return merged


def _created_at(item: dict[str, Any]) -> datetime:
    value = item.get("created_at")
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass
    return utcnow()


def _project(item: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in item.items() if k not in _PRIVATE_FIELDS and v is not None}


def to_mirror_item(row: PublicGeneration) -> dict[str, Any]:
    document = dict(row.document or {})
    document.update(
        {
            "id": row.history_id,
            "history_id": row.history_id,
            "uid": row.uid,
            "is_public": row.is_public,
            "created_by": dict(row.created_by or {}),
            "created_at": as_utc(row.created_at).isoformat(),
            "updated_at": as_utc(row.updated_at).isoformat(),
        }
    )
    return document


class PublicGenerationRepository:
    """Repository for the public mirror of history items, keyed by history id."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, history_id: str) -> dict[str, Any] | None:
        async with self.session_factory() as session:
            row = await self._load(session, history_id)
            return to_mirror_item(row) if row is not None else None

    async def upsert_from_history(
        self,
        uid: str,
        history_id: str,
        item: dict[str, Any],
        creator: dict[str, Any] | None = None,
    ) -> None:
        """
        Create or replace the mirror record for a history item.

        Applying the same snapshot twice leaves the same record.
        """
        document = _project(item)
        created_by = {**(item.get("created_by") or {}), **(creator or {}), "uid": uid}
        created_by = {k: v for k, v in created_by.items() if v is not None}

        async with self.session_factory() as session:
            async with session.begin():
                row = await self._load(session, history_id)
                if row is None:
                    row = PublicGeneration(history_id=history_id, created_at=_created_at(item))
                    session.add(row)
                row.uid = uid
                row.generation_type = item.get("generation_type")
                row.status = item.get("status")
                row.is_public = True
                row.document = document
                row.created_by = created_by
                row.updated_at = utcnow()

    async def update_from_history(
        self, uid: str, history_id: str, updates: dict[str, Any]
    ) -> bool:
        """
        Merge a partial update into an existing mirror record.

        Returns:
            False if there is no mirror record to update
        """
        async with self.session_factory() as session:
            async with session.begin():
                row = await self._load(session, history_id)
                if row is None:
                    return False

                document = dict(row.document or {})
                for key, value in _project(updates).items():
                    if key in _MEDIA_FIELDS and isinstance(value, list):
                        document[key] = merge_media_by_id(document.get(key) or [], value)
                    else:
                        document[key] = value

                row.document = document
                row.uid = uid or row.uid
                if "generation_type" in updates:
                    row.generation_type = updates["generation_type"]
                if "status" in updates:
                    row.status = updates["status"]
                row.updated_at = utcnow()
                return True

    async def remove(self, history_id: str) -> bool:
        """Delete the mirror record. Returns False when there was none."""
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(PublicGeneration).where(PublicGeneration.history_id == history_id)
                )
                return result.rowcount > 0

    async def _load(self, session: AsyncSession, history_id: str) -> PublicGeneration | None:
        result = await session.execute(
            select(PublicGeneration).where(PublicGeneration.history_id == history_id)
        )
        return result.scalar_one_or_none()
