"""Global aggregator: per-(user, achievement) rollups and user totals.

Two write paths exist:

- ``recompute_user_aggregate`` / ``recalculate_all`` rebuild aggregates from
  the full session award history. They are pure functions of that history.
- ``bump_user_aggregate`` adds one session award onto an aggregate and is the
  only writer of the denormalized ``User`` totals, using atomic increments.

``reconcile_user_totals`` is the explicit drift correction for those totals.
Aggregate points always use threshold-aware points per award, and the
aggregate level is always derived from ``total_count``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.achievements.catalog import get_templates_by_ids, require_template
from tavern.achievements.ledger import ProgressScope, get_session_awards
from tavern.achievements.levels import award_points, derive_level, level_case
from tavern.audit.service import SYSTEM_ACTOR, Actor, AuditAction, ResourceType, record_audit
from tavern.db.models import AchievementTemplate, ProgressRecord, User, UserGlobalAchievement
from tavern.errors import NotFoundError, persistence_guard

logger = structlog.get_logger()


@dataclass(frozen=True)
class SessionAward:
    """One session award being folded into an aggregate."""

    session_id: str
    campaign_id: str
    count: int
    points: int
    earned_at: datetime | None = None


@dataclass(frozen=True)
class UserStats:
    total_points: int
    total_achievements: int
    unique_achievements: int
    campaigns_played: int
    sessions_played: int


async def _require_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.uid == user_id).execution_options(populate_existing=True))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("user", user_id)
    return user


def _rollup(template: AchievementTemplate, records: list[ProgressRecord]) -> dict:
    """Fold session awards for one achievement into aggregate field values."""
    latest = max(records, key=lambda r: r.earned_at)
    total_count = sum(r.count for r in records)
    return {
        "total_count": total_count,
        "total_points": sum(award_points(template, r.count) for r in records),
        "current_level": derive_level(total_count, template.upgrades),
        "first_earned_at": min(r.earned_at for r in records),
        "last_earned_at": latest.earned_at,
        "campaigns_earned_in": sorted({r.campaign_id for r in records}),
        "sessions_earned_in": sorted({r.session_id for r in records if r.session_id}),
        "last_session_earned_in": latest.session_id,
    }


async def _upsert_aggregate(
    db: AsyncSession, user_id: str, achievement_id: str, fields: dict,
) -> UserGlobalAchievement:
    """Merge-write rollup fields onto the (user, achievement) aggregate. Does not commit."""
    result = await db.execute(
        select(UserGlobalAchievement).where(
            UserGlobalAchievement.user_id == user_id,
            UserGlobalAchievement.achievement_id == achievement_id,
        )
    )
    aggregate = result.scalar_one_or_none()
    if aggregate is None:
        aggregate = UserGlobalAchievement(user_id=user_id, achievement_id=achievement_id, **fields)
        db.add(aggregate)
    else:
        for key, value in fields.items():
            setattr(aggregate, key, value)
    return aggregate


async def _session_records(db: AsyncSession, user_id: str, achievement_id: str) -> list[ProgressRecord]:
    result = await db.execute(
        select(ProgressRecord).where(
            ProgressRecord.scope == ProgressScope.SESSION.value,
            ProgressRecord.player_id == user_id,
            ProgressRecord.achievement_id == achievement_id,
        )
    )
    return list(result.scalars().all())


@persistence_guard
async def recompute_user_aggregate(
    db: AsyncSession,
    user_id: str,
    achievement_id: str,
    *,
    actor: Actor = SYSTEM_ACTOR,
) -> UserGlobalAchievement | None:
    """Rebuild one aggregate from every session award for (user, achievement).

    Returns None, removing any stale aggregate, when the user holds no awards.
    """
    template = await require_template(db, achievement_id)
    records = await _session_records(db, user_id, achievement_id)

    if not records:
        await db.execute(
            delete(UserGlobalAchievement).where(
                UserGlobalAchievement.user_id == user_id,
                UserGlobalAchievement.achievement_id == achievement_id,
            )
        )
        await db.commit()
        return None

    fields = _rollup(template, records)
    aggregate = await _upsert_aggregate(db, user_id, achievement_id, fields)
    await db.commit()

    logger.info(
        "aggregate_recomputed",
        user_id=user_id,
        achievement_id=achievement_id,
        total_count=fields["total_count"],
        total_points=fields["total_points"],
    )
    await record_audit(
        db, actor, AuditAction.UPDATE_USER_STATS, ResourceType.ACHIEVEMENT, achievement_id,
        new_value={"total_count": fields["total_count"], "total_points": fields["total_points"]},
        metadata={"user_id": user_id, "recomputed": True},
    )
    return aggregate


@persistence_guard
async def bump_user_aggregate(
    db: AsyncSession,
    user_id: str,
    achievement_id: str,
    award: SessionAward,
    *,
    actor: Actor = SYSTEM_ACTOR,
) -> UserGlobalAchievement:
    """Fold one session award onto the aggregate without a rescan.

    Writes through to the user's totals with atomic increments. The
    achievement count only grows when this award creates the aggregate.
    """
    template = await require_template(db, achievement_id)
    await _require_user(db, user_id)
    earned_at = award.earned_at or datetime.now(timezone.utc)

    result = await db.execute(
        select(UserGlobalAchievement).where(
            UserGlobalAchievement.user_id == user_id,
            UserGlobalAchievement.achievement_id == achievement_id,
        ).execution_options(populate_existing=True)
    )
    aggregate = result.scalar_one_or_none()
    created = aggregate is None

    if created:
        aggregate = UserGlobalAchievement(
            user_id=user_id,
            achievement_id=achievement_id,
            total_count=award.count,
            total_points=award.points,
            current_level=derive_level(award.count, template.upgrades),
            first_earned_at=earned_at,
            last_earned_at=earned_at,
            campaigns_earned_in=[award.campaign_id],
            sessions_earned_in=[award.session_id],
            last_session_earned_in=award.session_id,
        )
        db.add(aggregate)
    else:
        new_count = UserGlobalAchievement.total_count + award.count
        await db.execute(
            update(UserGlobalAchievement)
            .where(UserGlobalAchievement.id == aggregate.id)
            .values(
                total_count=new_count,
                total_points=UserGlobalAchievement.total_points + award.points,
                current_level=level_case(new_count, template.upgrades),
                last_earned_at=earned_at,
                last_session_earned_in=award.session_id,
                campaigns_earned_in=sorted({*aggregate.campaigns_earned_in, award.campaign_id}),
                sessions_earned_in=sorted({*aggregate.sessions_earned_in, award.session_id}),
            )
            .execution_options(synchronize_session=False)
        )

    await db.execute(
        update(User)
        .where(User.uid == user_id)
        .values(
            total_global_points=User.total_global_points + award.points,
            total_global_achievements=User.total_global_achievements + (1 if created else 0),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(aggregate)

    logger.info(
        "aggregate_bumped",
        user_id=user_id,
        achievement_id=achievement_id,
        points_added=award.points,
        created=created,
    )
    await record_audit(
        db, actor, AuditAction.UPDATE_USER_STATS, ResourceType.ACHIEVEMENT, achievement_id,
        new_value={"award": asdict(award), "points_added": award.points},
        metadata={"user_id": user_id, "session_id": award.session_id, "campaign_id": award.campaign_id},
    )
    return aggregate


@persistence_guard
async def get_user_aggregates(db: AsyncSession, user_id: str) -> list[UserGlobalAchievement]:
    """All of a user's aggregates, most recently earned first."""
    result = await db.execute(
        select(UserGlobalAchievement)
        .where(UserGlobalAchievement.user_id == user_id)
        .order_by(UserGlobalAchievement.last_earned_at.desc())
    )
    return list(result.scalars().all())


@persistence_guard
async def get_user_aggregate(
    db: AsyncSession, user_id: str, achievement_id: str,
) -> UserGlobalAchievement | None:
    result = await db.execute(
        select(UserGlobalAchievement).where(
            UserGlobalAchievement.user_id == user_id,
            UserGlobalAchievement.achievement_id == achievement_id,
        )
    )
    return result.scalar_one_or_none()


async def get_user_award_history(db: AsyncSession, user_id: str) -> list[ProgressRecord]:
    """Raw session award history, newest first."""
    return await get_session_awards(db, user_id)


@persistence_guard
async def aggregate_user_stats(
    db: AsyncSession, user_id: str, since: datetime | None = None,
) -> UserStats:
    """Summarize a user's achievements. Pure read.

    Without ``since`` the per-achievement aggregates supply points and the
    unique count; the award history supplies the rest. With ``since`` every
    figure comes from the awards earned inside the window.
    """
    history = await get_session_awards(db, user_id, since=since)
    campaigns_played = len({r.campaign_id for r in history})
    sessions_played = len({r.session_id for r in history if r.session_id})

    if since is None:
        aggregates = await get_user_aggregates(db, user_id)
        return UserStats(
            total_points=sum(a.total_points for a in aggregates),
            total_achievements=len(history),
            unique_achievements=len(aggregates),
            campaigns_played=campaigns_played,
            sessions_played=sessions_played,
        )

    templates = await get_templates_by_ids(db, [r.achievement_id for r in history])
    return UserStats(
        total_points=sum(
            award_points(templates[r.achievement_id], r.count)
            for r in history
            if r.achievement_id in templates
        ),
        total_achievements=len(history),
        unique_achievements=len({r.achievement_id for r in history}),
        campaigns_played=campaigns_played,
        sessions_played=sessions_played,
    )


@persistence_guard
async def reconcile_user_totals(
    db: AsyncSession, user_id: str, *, actor: Actor = SYSTEM_ACTOR,
) -> User:
    """Overwrite the user's denormalized totals from the aggregates."""
    user = await _require_user(db, user_id)
    stats = await aggregate_user_stats(db, user_id)

    old = {
        "total_global_points": user.total_global_points,
        "total_global_achievements": user.total_global_achievements,
    }
    user.total_global_points = stats.total_points
    user.total_global_achievements = stats.unique_achievements
    await db.commit()

    if old["total_global_points"] != stats.total_points:
        logger.warning(
            "user_totals_drift_corrected",
            user_id=user_id,
            old_points=old["total_global_points"],
            new_points=stats.total_points,
        )
    await record_audit(
        db, actor, AuditAction.UPDATE_USER_STATS, ResourceType.USER, user_id,
        old_value=old, new_value=asdict(stats), metadata={"user_id": user_id},
    )
    return user


@persistence_guard
async def recalculate_all(
    db: AsyncSession, user_id: str, *, actor: Actor = SYSTEM_ACTOR,
) -> int:
    """Rebuild every aggregate for a user from the full award history.

    Bulk overwrite, last write wins. Also reconciles the user's totals.
    Returns the number of aggregates written.
    """
    await _require_user(db, user_id)
    history = await get_session_awards(db, user_id)

    groups: dict[str, list[ProgressRecord]] = defaultdict(list)
    for record in history:
        groups[record.achievement_id].append(record)
    templates = await get_templates_by_ids(db, list(groups))

    for achievement_id, records in groups.items():
        template = templates.get(achievement_id)
        if template is None:
            logger.warning("recalculate_template_missing", user_id=user_id, achievement_id=achievement_id)
            continue
        await _upsert_aggregate(db, user_id, achievement_id, _rollup(template, records))

    await db.execute(
        delete(UserGlobalAchievement).where(
            UserGlobalAchievement.user_id == user_id,
            UserGlobalAchievement.achievement_id.not_in(list(groups)),
        )
    )
    await db.commit()

    logger.info("aggregates_recalculated", user_id=user_id, achievements=len(groups))
    await record_audit(
        db, actor, AuditAction.UPDATE_USER_STATS, ResourceType.USER, user_id,
        new_value={"recalculated": True},
        metadata={"user_id": user_id, "achievement_count": len(groups)},
    )
    await reconcile_user_totals(db, user_id, actor=actor)
    return len(groups)
