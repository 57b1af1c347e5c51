"""
Generation history repository (the durable record store).

Every call opens its own short unit of work on the session factory, so a
failed best-effort write elsewhere can never roll back the primary record.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, asc, desc, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import GenerationNotFoundError
from database.models import GenerationHistory, as_utc, new_history_id, utcnow

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Columns that can be patched directly; anything else lands in ``extra``
_COLUMNS = {
    "prompt",
    "model",
    "generation_type",
    "status",
    "error",
    "images",
    "videos",
    "input_images",
    "input_videos",
    "tags",
    "nsfw",
    "is_public",
    "visibility",
    "is_deleted",
    "created_by",
    "created_at",
    "updated_at",
}
_NULLABLE = {"model", "error"}
_TIMESTAMPS = {"created_at", "updated_at"}


def encode_cursor(created_at: datetime, history_id: str) -> str:
    """Build the opaque keyset cursor ``"<epoch_ms>_<id>"``."""
    millis = (as_utc(created_at) - _EPOCH) // timedelta(milliseconds=1)
    return f"{millis}_{history_id}"


def decode_cursor(cursor: str) -> tuple[datetime, str] | None:
    """Parse a keyset cursor, returning None when it is malformed."""
    millis, sep, history_id = cursor.partition("_")
    if not sep or not history_id:
        return None
    try:
        return _EPOCH + timedelta(milliseconds=int(millis)), history_id
    except ValueError:
        return None


def _as_list(value: str | list[str] | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [v for v in value if v]


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def to_item(row: GenerationHistory) -> dict[str, Any]:
    """Project an ORM row into the plain item dict handed to services."""
    item: dict[str, Any] = dict(row.extra or {})
    item.update(
        {
            "id": row.id,
            "uid": row.uid,
            "prompt": row.prompt,
            "model": row.model,
            "generation_type": row.generation_type,
            "status": row.status,
            "images": list(row.images or []),
            "videos": list(row.videos or []),
            "input_images": list(row.input_images or []),
            "input_videos": list(row.input_videos or []),
            "tags": list(row.tags or []),
            "nsfw": row.nsfw,
            "is_public": row.is_public,
            "visibility": row.visibility,
            "is_deleted": row.is_deleted,
            "created_by": dict(row.created_by or {}),
            "created_at": as_utc(row.created_at).isoformat(),
            "updated_at": as_utc(row.updated_at).isoformat(),
        }
    )
    if row.error is not None:
        item["error"] = row.error
    if row.model is None:
        item.pop("model")
    return item


class GenerationHistoryRepository:
    """Repository for per-user generation history records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, uid: str, data: dict[str, Any]) -> str:
        """
        Create a history record in the ``generating`` state.

        Unknown keys are kept in ``extra``.

        Returns:
            The new history id
        """
        fields = {k: v for k, v in data.items() if v is not None}
        history_id = fields.pop("id", None) or new_history_id()
        fields.pop("uid", None)

        columns = {k: fields.pop(k) for k in list(fields) if k in _COLUMNS}
        is_public = bool(columns.get("is_public", False))
        now = utcnow()

        record = GenerationHistory(
            id=history_id,
            uid=uid,
            prompt=columns.get("prompt", ""),
            model=columns.get("model"),
            generation_type=columns.get("generation_type", "text-to-image"),
            status=columns.get("status", "generating"),
            error=columns.get("error"),
            images=columns.get("images", []),
            videos=columns.get("videos", []),
            input_images=columns.get("input_images", []),
            input_videos=columns.get("input_videos", []),
            tags=columns.get("tags", []),
            nsfw=bool(columns.get("nsfw", False)),
            is_public=is_public,
            visibility="public" if is_public else "private",
            is_deleted=False,
            created_by=columns.get("created_by", {"uid": uid}),
            extra=fields,
            created_at=now,
            updated_at=now,
        )

        async with self.session_factory() as session:
            async with session.begin():
                session.add(record)
        return history_id

    async def get(self, uid: str, history_id: str) -> dict[str, Any] | None:
        """Get a record (soft-deleted records included), or None."""
        async with self.session_factory() as session:
            row = await self._load(session, uid, history_id)
            return to_item(row) if row is not None else None

    async def update(self, uid: str, history_id: str, fields: dict[str, Any]) -> None:
        """
        Apply a partial update.

        ``updated_at`` is bumped to now unless the caller passes one.

        Raises:
            ValueError: If a non-nullable field is given as None
            GenerationNotFoundError: If the record does not exist
        """
        for key, value in fields.items():
            if value is None and key not in _NULLABLE:
                raise ValueError(f"None is not a valid value for field '{key}'")

        async with self.session_factory() as session:
            async with session.begin():
                row = await self._load(session, uid, history_id)
                if row is None:
                    raise GenerationNotFoundError(details={"history_id": history_id})

                extra = dict(row.extra or {})
                for key, value in fields.items():
                    if key in ("id", "uid"):
                        continue
                    if key in _TIMESTAMPS:
                        setattr(row, key, _parse_timestamp(value))
                    elif key in _COLUMNS:
                        setattr(row, key, value)
                    else:
                        extra[key] = value
                row.extra = extra

                if "updated_at" not in fields:
                    row.updated_at = utcnow()

    async def list_user_ids(self, limit: int | None = None) -> list[str]:
        """Distinct owners, used by maintenance scripts."""
        query = select(GenerationHistory.uid).distinct().order_by(GenerationHistory.uid)
        if limit:
            query = query.limit(limit)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list(
        self,
        uid: str,
        limit: int = 20,
        cursor: str | None = None,
        next_cursor: str | None = None,
        generation_type: str | list[str] | None = None,
        status: str | list[str] | None = None,
        search: str | None = None,
        sort_order: str = "desc",
    ) -> dict[str, Any]:
        """
        List a user's records with keyset pagination.

        Args:
            uid: Owner
            limit: Page size
            cursor: Legacy cursor, the id of the last item of the previous page
            next_cursor: Opaque ``"<epoch_ms>_<id>"`` cursor (takes precedence)
            generation_type: Stored type value(s) to match
            status: Status value(s) to match
            search: Case-insensitive prompt substring
            sort_order: ``desc`` (newest first) or ``asc``

        Returns:
            ``{"items", "next_cursor", "has_more"}``
        """
        limit = max(1, min(limit, 100))
        ascending = sort_order == "asc"

        query = select(GenerationHistory).where(
            GenerationHistory.uid == uid,
            GenerationHistory.is_deleted.is_(False),
        )

        types = _as_list(generation_type)
        if types:
            query = query.where(GenerationHistory.generation_type.in_(types))

        statuses = _as_list(status)
        if statuses:
            query = query.where(GenerationHistory.status.in_(statuses))

        if search:
            query = query.where(GenerationHistory.prompt.ilike(f"%{search}%"))

        async with self.session_factory() as session:
            position = None
            if next_cursor:
                position = decode_cursor(next_cursor)
            elif cursor:
                anchor = await self._load(session, uid, cursor)
                if anchor is not None:
                    position = (as_utc(anchor.created_at), anchor.id)

            if position is not None:
                created_at, anchor_id = position
                if ascending:
                    query = query.where(
                        or_(
                            GenerationHistory.created_at > created_at,
                            and_(
                                GenerationHistory.created_at == created_at,
                                GenerationHistory.id > anchor_id,
                            ),
                        )
                    )
                else:
                    query = query.where(
                        or_(
                            GenerationHistory.created_at < created_at,
                            and_(
                                GenerationHistory.created_at == created_at,
                                GenerationHistory.id < anchor_id,
                            ),
                        )
                    )

            order = asc if ascending else desc
            query = query.order_by(
                order(GenerationHistory.created_at), order(GenerationHistory.id)
            ).limit(limit + 1)

            result = await session.execute(query)
            rows = list(result.scalars().all())

        has_more = len(rows) > limit
        rows = rows[:limit]
        return {
            "items": [to_item(row) for row in rows],
            "next_cursor": encode_cursor(rows[-1].created_at, rows[-1].id) if has_more else None,
            "has_more": has_more,
        }

    async def _load(
        self, session: AsyncSession, uid: str, history_id: str
    ) -> GenerationHistory | None:
        result = await session.execute(
            select(GenerationHistory).where(
                GenerationHistory.id == history_id,
                GenerationHistory.uid == uid,
            )
        )
        return result.scalar_one_or_none()
