#!/usr/bin/env python3
"""
Rewrite legacy image entries of stored history items into canonical entries.

Older clients stored bare URL strings or camelCase dicts in ``images``.
Reads normalize them on the fly; this script persists the result so the
store only holds canonical entries.

Usage:
    python scripts/normalize_legacy_images.py --dry-run
    python scripts/normalize_legacy_images.py --users uid1,uid2
    python scripts/normalize_legacy_images.py --limit-per-user 500
"""
import argparse
import asyncio
import os
import sys
from collections import Counter

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import get_settings
from database import close_database, get_session_factory, init_database, is_database_available
from database.repositories import GenerationHistoryRepository
from services.image_normalizer import has_legacy_entries, normalize_images

PAGE_SIZE = 100


async def normalize_user(
    repo: GenerationHistoryRepository,
    uid: str,
    limit: int | None,
    dry_run: bool,
    stats: Counter,
) -> None:
    """Scan one user's history, newest first, fixing items with legacy images."""
    scanned = 0
    next_cursor = None

    while True:
        page = await repo.list(uid, limit=PAGE_SIZE, next_cursor=next_cursor)
        for item in page["items"]:
            if limit and scanned >= limit:
                return
            scanned += 1
            stats["scanned"] += 1

            if not has_legacy_entries(item.get("images")):
                continue

            images, changed = normalize_images(item.get("images"), item["id"])
            if not changed:
                continue

            stats["legacy"] += 1
            if dry_run:
                print(f"  [dry-run] {uid}/{item['id']}: {len(images)} image(s)")
                continue

            try:
                # Keep updated_at: this is a storage format change, not an edit
                await repo.update(
                    uid, item["id"], {"images": images, "updated_at": item["updated_at"]}
                )
                stats["updated"] += 1
            except Exception as e:
                stats["errors"] += 1
                print(f"  ❌ {uid}/{item['id']}: {e}")

        if not page["has_more"]:
            return
        next_cursor = page["next_cursor"]


async def main(users: list[str] | None, limit_per_user: int | None, dry_run: bool) -> Counter:
    settings = get_settings()
    if not settings.database_url:
        print("❌ DATABASE_URL is not configured")
        sys.exit(1)

    await init_database()
    stats: Counter = Counter()
    try:
        if not is_database_available():
            print("❌ Database not available")
            sys.exit(1)

        repo = GenerationHistoryRepository(get_session_factory())
        uids = users or await repo.list_user_ids()

        print(f"\n{'='*60}")
        print("Normalizing legacy images")
        print(f"{'='*60}")
        print(f"Users:          {len(uids)}")
        print(f"Limit per user: {limit_per_user or 'none'}")
        print(f"Dry Run:        {dry_run}")
        print(f"{'='*60}\n")

        for uid in uids:
            before = stats["legacy"]
            await normalize_user(repo, uid, limit_per_user, dry_run, stats)
            stats["users"] += 1
            if stats["legacy"] > before:
                print(f"✓ {uid}: {stats['legacy'] - before} item(s) with legacy images")
    finally:
        await close_database()

    print(f"\n{'='*60}")
    print("Summary")
    print(f"{'='*60}")
    print(f"Users processed: {stats['users']}")
    print(f"Items scanned:   {stats['scanned']}")
    print(f"Legacy items:    {stats['legacy']}")
    print(f"Items updated:   {stats['updated']}")
    print(f"Errors:          {stats['errors']}")
    if dry_run:
        print("\nRun without --dry-run to persist the changes")
    return stats


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Rewrite legacy image entries in generation history into canonical entries"
    )
    parser.add_argument(
        "--users",
        help="Comma-separated user ids (default: every user with history)",
    )
    parser.add_argument(
        "--limit-per-user",
        type=int,
        default=None,
        help="Scan at most this many items per user, newest first",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without writing",
    )
    args = parser.parse_args()

    user_list = [u.strip() for u in args.users.split(",") if u.strip()] if args.users else None
    asyncio.run(main(users=user_list, limit_per_user=args.limit_per_user, dry_run=args.dry_run))
