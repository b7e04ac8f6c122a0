"""Progress ledger: per-(player, achievement, scope) counters.

Counter updates are single UPDATE statements that compute the new count and
the level derived from it in the database, so concurrent increments against
the same record never lose an update.

After a mutation:
1. Commit the counter change
2. Append the audit record
3. If the derived level went up, publish a level-up event
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.achievements.catalog import require_template
from tavern.achievements.levels import derive_level, level_case
from tavern.audit.service import Actor, AuditAction, ResourceType, record_audit
from tavern.db.models import Campaign, CampaignSession, ProgressRecord
from tavern.errors import DuplicateError, NotFoundError, ValidationError, persistence_guard
from tavern.redis_client import publish_event

logger = structlog.get_logger()

LEVEL_UP_CHANNEL = "pubsub:achievement_level_up"


class ProgressScope(str, Enum):
    CAMPAIGN = "campaign"
    SESSION = "session"


def _require_count(field: str, value: Any, minimum: int) -> int:  # noqa: ANN401
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, "must be an integer")
    if value < minimum:
        raise ValidationError(field, f"must be at least {minimum}")
    return value


def _snapshot(record: ProgressRecord) -> dict[str, int]:
    return {"count": record.count, "current_level": record.current_level}


async def _resolve_scope(
    db: AsyncSession, scope: ProgressScope, scope_id: str,
) -> tuple[str, str | None]:
    """Return (campaign_id, session_id) for a scope, raising NotFoundError if it does not exist."""
    if scope is ProgressScope.CAMPAIGN:
        result = await db.execute(select(Campaign.id).where(Campaign.id == scope_id))
        if result.scalar_one_or_none() is None:
            raise NotFoundError("campaign", scope_id)
        return scope_id, None

    result = await db.execute(
        select(CampaignSession.campaign_id).where(CampaignSession.id == scope_id)
    )
    campaign_id = result.scalar_one_or_none()
    if campaign_id is None:
        raise NotFoundError("session", scope_id)
    return campaign_id, scope_id


async def _find_record(
    db: AsyncSession,
    scope: ProgressScope,
    player_id: str,
    achievement_id: str,
    scope_id: str,
) -> ProgressRecord | None:
    """Look up the record for a (player, achievement, scope) key.

    Session awards may repeat a key; the most recent one is the live counter.
    """
    stmt = select(ProgressRecord).where(
        ProgressRecord.scope == scope.value,
        ProgressRecord.player_id == player_id,
        ProgressRecord.achievement_id == achievement_id,
    )
    if scope is ProgressScope.CAMPAIGN:
        stmt = stmt.where(ProgressRecord.campaign_id == scope_id)
    else:
        stmt = stmt.where(ProgressRecord.session_id == scope_id)
    result = await db.execute(
        stmt.order_by(ProgressRecord.earned_at.desc()).limit(1).execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _publish_level_up(redis: object, record: ProgressRecord, old_level: int) -> None:
    if record.current_level <= old_level:
        return
    logger.info(
        "achievement_level_up",
        player_id=record.player_id,
        achievement_id=record.achievement_id,
        old_level=old_level,
        new_level=record.current_level,
    )
    await publish_event(redis, LEVEL_UP_CHANNEL, {
        "player_id": record.player_id,
        "achievement_id": record.achievement_id,
        "campaign_id": record.campaign_id,
        "session_id": record.session_id,
        "old_level": old_level,
        "new_level": record.current_level,
    })


def _audit_metadata(record: ProgressRecord) -> dict[str, Any]:
    return {
        "player_id": record.player_id,
        "scope": record.scope,
        "campaign_id": record.campaign_id,
        "session_id": record.session_id,
    }


@persistence_guard
async def increment_progress(
    db: AsyncSession,
    player_id: str,
    achievement_id: str,
    scope_id: str,
    delta: int = 1,
    *,
    actor: Actor,
    scope: ProgressScope = ProgressScope.CAMPAIGN,
    redis: object = None,
) -> ProgressRecord:
    """Add ``delta`` to a player's counter, creating the record on first use."""
    _require_count("delta", delta, 1)
    template = await require_template(db, achievement_id)
    campaign_id, session_id = await _resolve_scope(db, scope, scope_id)
    now = datetime.now(timezone.utc)

    record = await _find_record(db, scope, player_id, achievement_id, scope_id)
    if record is None:
        old = {"count": 0, "current_level": 0}
        record = ProgressRecord(
            scope=scope.value,
            player_id=player_id,
            achievement_id=achievement_id,
            campaign_id=campaign_id,
            session_id=session_id,
            count=delta,
            current_level=derive_level(delta, template.upgrades),
            assigned_by=actor.user_id,
            earned_at=now,
            last_updated=now,
        )
        db.add(record)
        await db.commit()
    else:
        old = _snapshot(record)
        new_count = ProgressRecord.count + delta
        await db.execute(
            update(ProgressRecord)
            .where(ProgressRecord.id == record.id)
            .values(
                count=new_count,
                current_level=level_case(new_count, template.upgrades),
                last_updated=now,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(record)

    logger.info(
        "progress_incremented",
        record_id=record.id,
        player_id=player_id,
        achievement_id=achievement_id,
        delta=delta,
        count=record.count,
        level=record.current_level,
    )
    await record_audit(
        db, actor, AuditAction.UPDATE_ACHIEVEMENT, ResourceType.ACHIEVEMENT, achievement_id,
        old_value=old, new_value=_snapshot(record), metadata=_audit_metadata(record),
    )
    await _publish_level_up(redis, record, old["current_level"])
    return record


@persistence_guard
async def decrement_progress(
    db: AsyncSession,
    player_id: str,
    achievement_id: str,
    scope_id: str,
    delta: int = 1,
    *,
    actor: Actor,
    scope: ProgressScope = ProgressScope.CAMPAIGN,
) -> ProgressRecord | None:
    """Subtract ``delta`` from a counter, flooring at zero.

    Returns None without writing anything when the player has no record.
    """
    _require_count("delta", delta, 1)
    record = await _find_record(db, scope, player_id, achievement_id, scope_id)
    if record is None:
        return None
    template = await require_template(db, achievement_id)

    old = _snapshot(record)
    remaining = ProgressRecord.count - delta
    new_count = case((remaining < 0, 0), else_=remaining)
    await db.execute(
        update(ProgressRecord)
        .where(ProgressRecord.id == record.id)
        .values(
            count=new_count,
            current_level=level_case(new_count, template.upgrades),
            last_updated=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(record)

    logger.info(
        "progress_decremented",
        record_id=record.id,
        player_id=player_id,
        achievement_id=achievement_id,
        delta=delta,
        count=record.count,
        level=record.current_level,
    )
    await record_audit(
        db, actor, AuditAction.UPDATE_ACHIEVEMENT, ResourceType.ACHIEVEMENT, achievement_id,
        old_value=old, new_value=_snapshot(record), metadata=_audit_metadata(record),
    )
    return record


@persistence_guard
async def award_session_achievement(
    db: AsyncSession,
    session_id: str,
    player_id: str,
    achievement_id: str,
    count: int,
    *,
    actor: Actor,
    redis: object = None,
) -> ProgressRecord:
    """One-shot DM award: a new session-scoped record with an absolute count.

    Repeating an award for the same key creates another record; it never upserts.
    """
    _require_count("count", count, 0)
    result = await db.execute(select(CampaignSession).where(CampaignSession.id == session_id))
    session = result.scalar_one_or_none()
    if session is None:
        raise NotFoundError("session", session_id)
    template = await require_template(db, achievement_id)

    now = datetime.now(timezone.utc)
    record = ProgressRecord(
        scope=ProgressScope.SESSION.value,
        player_id=player_id,
        achievement_id=achievement_id,
        campaign_id=session.campaign_id,
        session_id=session_id,
        count=count,
        current_level=derive_level(count, template.upgrades),
        assigned_by=actor.user_id,
        earned_at=now,
        last_updated=now,
    )
    db.add(record)
    await db.commit()

    logger.info(
        "session_award_created",
        record_id=record.id,
        session_id=session_id,
        player_id=player_id,
        achievement_id=achievement_id,
        count=count,
    )
    await record_audit(
        db, actor, AuditAction.AWARD_ACHIEVEMENT, ResourceType.ACHIEVEMENT, achievement_id,
        new_value=_snapshot(record), metadata=_audit_metadata(record),
    )
    await _publish_level_up(redis, record, 0)
    return record


@persistence_guard
async def set_session_progress(
    db: AsyncSession,
    record_id: str,
    new_count: int,
    *,
    actor: Actor,
    redis: object = None,
) -> ProgressRecord:
    """Overwrite a session award's count and re-derive its level."""
    _require_count("count", new_count, 0)
    result = await db.execute(
        select(ProgressRecord).where(
            ProgressRecord.id == record_id,
            ProgressRecord.scope == ProgressScope.SESSION.value,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        raise NotFoundError("session_award", record_id)
    template = await require_template(db, record.achievement_id)

    old = _snapshot(record)
    record.count = new_count
    record.current_level = derive_level(new_count, template.upgrades)
    record.last_updated = datetime.now(timezone.utc)
    await db.commit()

    await record_audit(
        db, actor, AuditAction.UPDATE_ACHIEVEMENT, ResourceType.ACHIEVEMENT, record.achievement_id,
        old_value=old, new_value=_snapshot(record), metadata=_audit_metadata(record),
    )
    await _publish_level_up(redis, record, old["current_level"])
    return record


@persistence_guard
async def assign_achievement_to_player(
    db: AsyncSession,
    template_id: str,
    player_id: str,
    campaign_id: str,
    *,
    actor: Actor,
) -> ProgressRecord:
    """Start a campaign-scoped counter at zero. A player holds at most one per campaign."""
    await require_template(db, template_id)
    await _resolve_scope(db, ProgressScope.CAMPAIGN, campaign_id)

    existing = await _find_record(db, ProgressScope.CAMPAIGN, player_id, template_id, campaign_id)
    if existing is not None:
        raise DuplicateError("player_achievement", f"{player_id}:{template_id}")

    now = datetime.now(timezone.utc)
    record = ProgressRecord(
        scope=ProgressScope.CAMPAIGN.value,
        player_id=player_id,
        achievement_id=template_id,
        campaign_id=campaign_id,
        count=0,
        current_level=0,
        assigned_by=actor.user_id,
        earned_at=now,
        last_updated=now,
    )
    db.add(record)
    await db.commit()

    await record_audit(
        db, actor, AuditAction.ASSIGN_ACHIEVEMENT, ResourceType.ACHIEVEMENT, template_id,
        new_value=_snapshot(record), metadata=_audit_metadata(record),
    )
    return record


@persistence_guard
async def get_player_progress(db: AsyncSession, player_id: str, campaign_id: str) -> list[ProgressRecord]:
    """Campaign-scoped counters for a player."""
    result = await db.execute(
        select(ProgressRecord)
        .where(
            ProgressRecord.scope == ProgressScope.CAMPAIGN.value,
            ProgressRecord.player_id == player_id,
            ProgressRecord.campaign_id == campaign_id,
        )
        .order_by(ProgressRecord.earned_at)
    )
    return list(result.scalars().all())


@persistence_guard
async def get_player_session_progress(db: AsyncSession, session_id: str, player_id: str) -> list[ProgressRecord]:
    """Session awards a player received in one session."""
    result = await db.execute(
        select(ProgressRecord)
        .where(
            ProgressRecord.scope == ProgressScope.SESSION.value,
            ProgressRecord.session_id == session_id,
            ProgressRecord.player_id == player_id,
        )
        .order_by(ProgressRecord.earned_at)
    )
    return list(result.scalars().all())


@persistence_guard
async def get_campaign_session_awards(db: AsyncSession, campaign_id: str) -> list[ProgressRecord]:
    """Every session award across a campaign, newest first."""
    result = await db.execute(
        select(ProgressRecord)
        .where(
            ProgressRecord.scope == ProgressScope.SESSION.value,
            ProgressRecord.campaign_id == campaign_id,
        )
        .order_by(ProgressRecord.earned_at.desc())
    )
    return list(result.scalars().all())


@persistence_guard
async def get_session_awards(db: AsyncSession, player_id: str, since: datetime | None = None) -> list[ProgressRecord]:
    """A player's session award history, newest first, optionally from ``since`` onwards."""
    stmt = select(ProgressRecord).where(
        ProgressRecord.scope == ProgressScope.SESSION.value,
        ProgressRecord.player_id == player_id,
    )
    if since is not None:
        stmt = stmt.where(ProgressRecord.earned_at >= since)
    result = await db.execute(stmt.order_by(ProgressRecord.earned_at.desc()))
    return list(result.scalars().all())
