"""Leaderboard batch jobs for an arq worker.

Nothing here runs on its own: jobs execute only when enqueued, or when a
deployment schedules them through the arq CLI, e.g.
- refresh_all: every 15 minutes per period
- snapshot: daily
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.achievements.aggregator import recalculate_all
from tavern.config import get_settings
from tavern.database import close_db, get_session, init_db
from tavern.db.models import User
from tavern.leaderboard.service import parse_period, refresh_all_entries, take_snapshot

logger = logging.getLogger(__name__)


async def _get_db_session() -> AsyncSession:
    """Get a database session for the worker."""
    async for session in get_session():
        return session
    raise RuntimeError("Failed to get database session")


async def refresh_leaderboard(ctx: dict, period: str = "all-time") -> dict:
    """Refresh every live entry for a period. Returns the success/failure tally."""
    db = await _get_db_session()
    try:
        tally = await refresh_all_entries(db, parse_period(period))
        logger.info(
            "Leaderboard %s refreshed: %d ok, %d failed",
            period, tally.succeeded, len(tally.failed),
        )
        return {"succeeded": tally.succeeded, "failed": tally.failed}
    finally:
        await db.close()


async def snapshot_leaderboard(ctx: dict, period: str = "all-time") -> str:
    """Freeze the current leaderboard for a period. Returns the snapshot id."""
    db = await _get_db_session()
    try:
        snapshot = await take_snapshot(db, parse_period(period))
        logger.info("Leaderboard %s snapshot %s: %d entries", period, snapshot.id, snapshot.entry_count)
        return snapshot.id
    finally:
        await db.close()


async def recalculate_user_aggregates(ctx: dict, user_id: str | None = None) -> int:
    """Rebuild aggregates for one user, or for every user when none is given."""
    db = await _get_db_session()
    try:
        if user_id is not None:
            user_ids = [user_id]
        else:
            result = await db.execute(select(User.uid).order_by(User.uid))
            user_ids = list(result.scalars().all())

        rebuilt = 0
        for uid in user_ids:
            rebuilt += await recalculate_all(db, uid)
        logger.info("Recalculated %d aggregates for %d users", rebuilt, len(user_ids))
        return rebuilt
    finally:
        await db.close()


async def leaderboard_startup(ctx: dict) -> None:
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    logger.info("Leaderboard worker started")


async def leaderboard_shutdown(ctx: dict) -> None:
    """Clean up on worker shutdown."""
    redis_client = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Leaderboard worker shut down")


class LeaderboardWorkerSettings:
    """arq worker settings for leaderboard batch jobs."""

    functions = [
        refresh_leaderboard,
        snapshot_leaderboard,
        recalculate_user_aggregates,
    ]
    on_startup = leaderboard_startup
    on_shutdown = leaderboard_shutdown
    max_jobs = 4
    job_timeout = 600  # 10 minutes max per job
