"""
Image/video entry normalization.

Media entries reach us in three shapes:

- a bare URL string (oldest records)
- a legacy object with camelCase keys (``originalUrl``, ``firebaseUrl``, ...)
- the canonical snake_case object

Everything is converted to the canonical shape on ingress and only the
canonical shape is passed further down. Keys with a None value are dropped,
since the record store rejects them.
"""

import logging
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class RawImageKind(str, Enum):
    STRING_URL = "string_url"
    LEGACY_OBJECT = "legacy_object"
    CANONICAL = "canonical"


# camelCase key -> canonical key
LEGACY_KEYS: dict[str, str] = {
    "originalUrl": "original_url",
    "storagePath": "storage_path",
    "avifUrl": "avif_url",
    "thumbnailUrl": "thumbnail_url",
    "blurDataUrl": "blur_data_url",
    "optimizedAt": "optimized_at",
    "aestheticScore": "aesthetic_score",
    "isPublic": "is_public",
}
# Only used as a url fallback, never stored
FALLBACK_URL_KEY = "firebaseUrl"

# Fields produced by the media optimizer
DERIVED_FIELDS = ("avif_url", "thumbnail_url", "blur_data_url", "optimized", "optimized_at")


def prune_none(data: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {k: v for k, v in data.items() if v is not None}


def classify_entry(raw: Any) -> RawImageKind | None:
    """Tell which shape a raw media entry has (None if it is unusable)."""
    if isinstance(raw, str):
        return RawImageKind.STRING_URL if raw.strip() else None
    if not isinstance(raw, dict):
        return None
    if not raw.get("id") or not raw.get("url") or not raw.get("original_url"):
        return RawImageKind.LEGACY_OBJECT
    if FALLBACK_URL_KEY in raw or any(key in raw for key in LEGACY_KEYS):
        return RawImageKind.LEGACY_OBJECT
    return RawImageKind.CANONICAL


def synthetic_id(history_id: str, index: int, prefix: str = "img") -> str:
    return f"{history_id}-{prefix}-{index}"


def normalize_entry(
    raw: Any, history_id: str, index: int, prefix: str = "img"
) -> dict[str, Any] | None:
    """
    Convert one raw entry into the canonical shape.

    Normalizing a canonical entry returns an equal dict (minus None values).

    Returns:
        The canonical entry, or None for entries with no usable URL
    """
    kind = classify_entry(raw)
    if kind is None:
        return None

    if kind is RawImageKind.STRING_URL:
        url = raw.strip()
        return {"id": synthetic_id(history_id, index, prefix), "url": url, "original_url": url}

    entry: dict[str, Any] = {}
    for key, value in raw.items():
        if key == FALLBACK_URL_KEY or key in LEGACY_KEYS:
            continue
        entry[key] = value
    for legacy, canonical in LEGACY_KEYS.items():
        if entry.get(canonical) is None and raw.get(legacy) is not None:
            entry[canonical] = raw[legacy]

    url = entry.get("url") or raw.get(FALLBACK_URL_KEY) or entry.get("original_url")
    if not url:
        return None
    entry["url"] = url
    entry["original_url"] = entry.get("original_url") or url
    entry["id"] = entry.get("id") or synthetic_id(history_id, index, prefix)

    return prune_none(entry)


def normalize_media_list(
    entries: Any, history_id: str, prefix: str = "img"
) -> tuple[list[dict[str, Any]], bool]:
    """
    Normalize a whole images/videos array.

    Returns:
        Tuple of (canonical entries, whether anything differs from the input)
    """
    if not isinstance(entries, list):
        return [], entries is not None

    normalized = []
    changed = False
    for index, raw in enumerate(entries):
        entry = normalize_entry(raw, history_id, index, prefix)
        if entry is None:
            if raw is not None:
                logger.warning(
                    f"Dropping {prefix} entry {index} of history {history_id} without a URL: {raw!r}"
                )
            changed = True
            continue
        if entry != raw:
            changed = True
        normalized.append(entry)
    return normalized, changed


def normalize_images(entries: Any, history_id: str) -> tuple[list[dict[str, Any]], bool]:
    return normalize_media_list(entries, history_id, "img")


def normalize_videos(entries: Any, history_id: str) -> tuple[list[dict[str, Any]], bool]:
    return normalize_media_list(entries, history_id, "vid")


def has_legacy_entries(entries: Any) -> bool:
    if not isinstance(entries, list):
        return False
    return any(classify_entry(raw) is not RawImageKind.CANONICAL for raw in entries)


def is_optimized(entry: dict[str, Any]) -> bool:
    """An entry counts as optimized only with the flag and both derived URLs."""
    return bool(
        entry.get("optimized") is True
        and entry.get("avif_url")
        and entry.get("thumbnail_url")
    )


def any_media_public(*media_lists: list[dict[str, Any]] | None) -> bool:
    """True if any entry carries its own ``is_public: True`` flag."""
    for entries in media_lists:
        for entry in entries or []:
            if isinstance(entry, dict) and entry.get("is_public") is True:
                return True
    return False


def find_media_index(entries: list[dict[str, Any]], match: dict[str, Any]) -> int | None:
    """
    Locate the entry a patch refers to.

    Matches by ``id``, then ``url``, then ``storage_path``.
    """
    for key in ("id", "url", "storage_path"):
        needle = match.get(key)
        if not needle:
            continue
        for index, entry in enumerate(entries):
            if isinstance(entry, dict) and entry.get(key) == needle:
                return index
    return None


def rename_legacy_keys(patch: dict[str, Any]) -> dict[str, Any]:
    """Rewrite camelCase keys of a partial entry (e.g. an update patch)."""
    renamed = {}
    for key, value in patch.items():
        if key == FALLBACK_URL_KEY:
            renamed.setdefault("url", value)
        else:
            renamed[LEGACY_KEYS.get(key, key)] = value
    return prune_none(renamed)
