"""
ARQ background worker for the generation history service.

Run with:
    arq api.workers.WorkerSettings

Tasks:
    - drain_mirror_queue: Apply pending public-mirror operations. Runs as a
      cron every MIRROR_QUEUE_POLL_INTERVAL seconds and can be enqueued manually.
    - sync_generation_mirror: Reconcile the mirror record of one history item.
"""

import logging
from urllib.parse import urlparse

from arq import cron
from arq.connections import RedisSettings

from core.config import get_settings
from database import close_database, get_session_factory, init_database
from services import ServiceContainer, build_services

logger = logging.getLogger(__name__)

# Configure logging for the worker process
logging.basicConfig(
    level=get_settings().log_level,
    format=get_settings().log_format,
)


# ── Lifecycle hooks ──────────────────────────────────────────────────────────


async def startup(ctx: dict) -> None:
    """Initialise the database and the mirror services for the worker."""
    logger.info("ARQ worker starting up...")

    await init_database()
    logger.info("Database initialized")

    # Built once and reused across invocations
    ctx["services"] = build_services(get_settings(), get_session_factory())
    logger.info("Mirror queue worker ready")


async def shutdown(ctx: dict) -> None:
    """Clean up resources on worker shutdown."""
    logger.info("ARQ worker shutting down...")
    services: ServiceContainer | None = ctx.get("services")
    if services is not None:
        await services.close()
    await close_database()
    logger.info("Database connection closed")


# ── Tasks ────────────────────────────────────────────────────────────────────


async def drain_mirror_queue(ctx: dict) -> dict:
    """Process one batch of the mirror queue.

    Returns:
        Dict with per-outcome counts.
    """
    services: ServiceContainer = ctx["services"]
    return await services.mirror_worker.process_pending()


async def sync_generation_mirror(ctx: dict, uid: str, history_id: str) -> dict:
    """Reconcile one item's mirror record right away."""
    services: ServiceContainer = ctx["services"]
    synced = await services.reconciler.sync_now(uid, history_id)
    logger.info(f"Manual mirror sync uid={uid} history_id={history_id} synced={synced}")
    return {"history_id": history_id, "synced": synced}


# ── ARQ configuration ───────────────────────────────────────────────────────


def _parse_redis_settings() -> RedisSettings:
    """Parse REDIS_URL into arq RedisSettings."""
    url = get_settings().redis_url
    parsed = urlparse(url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or 0),
        password=parsed.password,
    )


def poll_schedule(interval: int) -> dict:
    """Translate a poll interval in seconds into arq cron fields."""
    interval = max(1, interval)
    if interval < 60:
        return {"second": set(range(0, 60, interval))}
    minutes = max(1, interval // 60)
    return {"minute": set(range(0, 60, minutes)), "second": 0}


class WorkerSettings:
    """ARQ worker configuration."""

    functions = [drain_mirror_queue, sync_generation_mirror]

    cron_jobs = [
        cron(
            drain_mirror_queue,
            run_at_startup=True,
            **poll_schedule(get_settings().mirror_queue_poll_interval),
        ),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = _parse_redis_settings()

    max_jobs = 4
    job_timeout = 300
