"""Leaderboard materializer: live per-period entries and frozen snapshots.

Ranks are never stored. Every read orders the live entries by
``(total_points desc, unique_achievements desc, user_id asc)`` and numbers
the returned page from 1, so a rank is relative to the page it came in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.achievements.aggregator import aggregate_user_stats
from tavern.audit.service import SYSTEM_ACTOR, Actor, AuditAction, ResourceType, record_audit
from tavern.config import get_settings
from tavern.db.models import LeaderboardEntry, LeaderboardSnapshot, User
from tavern.errors import NotFoundError, TavernError, ValidationError, persistence_guard

logger = structlog.get_logger()


class LeaderboardPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all-time"


@dataclass
class RefreshTally:
    """Outcome of a batch refresh. One user's failure never aborts the batch."""

    succeeded: int = 0
    failed: list[dict[str, str]] = field(default_factory=list)


def parse_period(value: str) -> LeaderboardPeriod:
    try:
        return LeaderboardPeriod(value)
    except ValueError as e:
        raise ValidationError("period", f"must be one of {[p.value for p in LeaderboardPeriod]}") from e


def period_start(period: LeaderboardPeriod, now: datetime | None = None) -> datetime | None:
    """Start of the ranking window in UTC, or None for all-time."""
    now = now or datetime.now(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is LeaderboardPeriod.DAILY:
        return midnight
    if period is LeaderboardPeriod.WEEKLY:
        return midnight - timedelta(days=midnight.weekday())
    if period is LeaderboardPeriod.MONTHLY:
        return midnight.replace(day=1)
    return None


def entry_to_dict(entry: LeaderboardEntry, rank: int) -> dict:
    return {
        "rank": rank,
        "user_id": entry.user_id,
        "username": entry.username,
        "display_name": entry.display_name,
        "total_points": entry.total_points,
        "total_achievements": entry.total_achievements,
        "unique_achievements": entry.unique_achievements,
        "last_updated": entry.last_updated,
    }


@persistence_guard
async def refresh_entry(
    db: AsyncSession,
    user_id: str,
    period: LeaderboardPeriod = LeaderboardPeriod.ALL_TIME,
    *,
    actor: Actor = SYSTEM_ACTOR,
) -> LeaderboardEntry:
    """Recompute one user's stats for the period and merge them into the live entry."""
    result = await db.execute(select(User).where(User.uid == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("user", user_id)

    stats = await aggregate_user_stats(db, user_id, since=period_start(period))
    now = datetime.now(timezone.utc)

    result = await db.execute(
        select(LeaderboardEntry).where(
            LeaderboardEntry.period == period.value,
            LeaderboardEntry.user_id == user_id,
        )
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        entry = LeaderboardEntry(period=period.value, user_id=user_id)
        db.add(entry)
    entry.username = user.username
    entry.display_name = user.display_name
    entry.total_points = stats.total_points
    entry.total_achievements = stats.total_achievements
    entry.unique_achievements = stats.unique_achievements
    entry.last_updated = now
    await db.commit()

    await record_audit(
        db, actor, AuditAction.UPDATE_LEADERBOARD, ResourceType.LEADERBOARD, f"{period.value}:{user_id}",
        new_value={
            "total_points": stats.total_points,
            "total_achievements": stats.total_achievements,
            "unique_achievements": stats.unique_achievements,
        },
        metadata={"period": period.value, "user_id": user_id},
    )
    return entry


@persistence_guard
async def list_leaderboard(
    db: AsyncSession,
    period: LeaderboardPeriod = LeaderboardPeriod.ALL_TIME,
    limit: int | None = None,
) -> list[dict]:
    """Ranked page of live entries. Rank is the 1-based position in this page."""
    if limit is None:
        limit = get_settings().leaderboard_default_limit
    if limit < 1:
        raise ValidationError("limit", "must be at least 1")

    result = await db.execute(
        select(LeaderboardEntry)
        .where(LeaderboardEntry.period == period.value)
        .order_by(
            LeaderboardEntry.total_points.desc(),
            LeaderboardEntry.unique_achievements.desc(),
            LeaderboardEntry.user_id,
        )
        .limit(limit)
    )
    return [entry_to_dict(entry, rank) for rank, entry in enumerate(result.scalars(), start=1)]


async def get_user_rank(
    db: AsyncSession,
    user_id: str,
    period: LeaderboardPeriod = LeaderboardPeriod.ALL_TIME,
) -> dict | None:
    """Find a user's ranked entry, or None.

    Linear scan over one large page, so cost grows with the number of users
    and anyone past ``leaderboard_rank_scan_limit`` is reported as unranked.
    """
    entries = await list_leaderboard(db, period, get_settings().leaderboard_rank_scan_limit)
    for entry in entries:
        if entry["user_id"] == user_id:
            return entry
    return None


async def refresh_all_entries(
    db: AsyncSession,
    period: LeaderboardPeriod = LeaderboardPeriod.ALL_TIME,
    *,
    actor: Actor = SYSTEM_ACTOR,
) -> RefreshTally:
    """Refresh every user's entry for the period, collecting per-user failures."""
    result = await db.execute(select(User.uid).order_by(User.uid))
    user_ids = list(result.scalars().all())

    tally = RefreshTally()
    for user_id in user_ids:
        try:
            await refresh_entry(db, user_id, period, actor=actor)
        except Exception as e:
            await db.rollback()
            logger.warning(
                "leaderboard_entry_refresh_failed",
                user_id=user_id,
                period=period.value,
                error=e.kind if isinstance(e, TavernError) else type(e).__name__,
                exc_info=True,
            )
            tally.failed.append({"user_id": user_id, "error": str(e)})
        else:
            tally.succeeded += 1

    logger.info(
        "leaderboard_refreshed",
        period=period.value,
        succeeded=tally.succeeded,
        failed=len(tally.failed),
    )
    return tally


@persistence_guard
async def take_snapshot(
    db: AsyncSession,
    period: LeaderboardPeriod = LeaderboardPeriod.ALL_TIME,
    *,
    actor: Actor = SYSTEM_ACTOR,
) -> LeaderboardSnapshot:
    """Freeze the current ranked leaderboard. Snapshots are never modified."""
    entries = await list_leaderboard(db, period, get_settings().leaderboard_snapshot_limit)
    snapshot = LeaderboardSnapshot(
        period=period.value,
        taken_at=datetime.now(timezone.utc),
        entry_count=len(entries),
        entries=to_jsonable_python(entries),
    )
    db.add(snapshot)
    await db.commit()

    logger.info("leaderboard_snapshot_taken", period=period.value, entries=len(entries))
    await record_audit(
        db, actor, AuditAction.GENERATE_LEADERBOARD_SNAPSHOT, ResourceType.LEADERBOARD, snapshot.id,
        new_value={"entry_count": len(entries)},
        metadata={"period": period.value},
    )
    return snapshot


@persistence_guard
async def list_snapshots(
    db: AsyncSession,
    period: LeaderboardPeriod = LeaderboardPeriod.ALL_TIME,
    limit: int = 10,
) -> list[LeaderboardSnapshot]:
    """Snapshots for a period, newest first."""
    result = await db.execute(
        select(LeaderboardSnapshot)
        .where(LeaderboardSnapshot.period == period.value)
        .order_by(LeaderboardSnapshot.taken_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def leaderboard_stats(
    db: AsyncSession,
    period: LeaderboardPeriod = LeaderboardPeriod.ALL_TIME,
) -> dict:
    """Summary figures over the scanned leaderboard page."""
    entries = await list_leaderboard(db, period, get_settings().leaderboard_rank_scan_limit)
    if not entries:
        return {"total_players": 0, "average_points": 0, "highest_points": 0, "total_achievements": 0}

    total_points = sum(e["total_points"] for e in entries)
    return {
        "total_players": len(entries),
        "average_points": round(total_points / len(entries)),
        "highest_points": max(e["total_points"] for e in entries),
        "total_achievements": sum(e["total_achievements"] for e in entries),
    }


async def compare_users(
    db: AsyncSession,
    user_a: str,
    user_b: str,
    period: LeaderboardPeriod = LeaderboardPeriod.ALL_TIME,
) -> dict:
    """Both users' entries plus their differences. Differences are 0 when either is unranked.

    A positive ``rank_difference`` means ``user_a`` ranks higher.
    """
    entries = await list_leaderboard(db, period, get_settings().leaderboard_rank_scan_limit)
    by_user = {e["user_id"]: e for e in entries}
    entry_a = by_user.get(user_a)
    entry_b = by_user.get(user_b)

    if entry_a is None or entry_b is None:
        comparison = {"points_difference": 0, "achievements_difference": 0, "rank_difference": 0}
    else:
        comparison = {
            "points_difference": entry_a["total_points"] - entry_b["total_points"],
            "achievements_difference": entry_a["unique_achievements"] - entry_b["unique_achievements"],
            "rank_difference": entry_b["rank"] - entry_a["rank"],
        }
    return {"user_a": entry_a, "user_b": entry_b, "comparison": comparison}
