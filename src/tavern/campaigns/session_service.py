"""Session registry: play sessions inside a campaign.

Session numbers come from the campaign's ``session_sequence``, which only
ever grows, so deleting a session never frees its number. ``total_sessions``
tracks live sessions and is decremented on delete.

Creating a session is two commits: the session row, then the campaign's
counters. A failure between them leaves ``total_sessions`` stale and is
reported to the caller.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.audit.service import Actor, AuditAction, ResourceType, record_audit
from tavern.campaigns.service import require_campaign
from tavern.db.models import Campaign, CampaignSession
from tavern.errors import NotFoundError, ValidationError, persistence_guard

logger = structlog.get_logger()


class SessionStatus(str, Enum):
    """Session lifecycle labels. Any status may follow any other."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _check_duration(duration: int | None) -> None:
    if duration is None:
        return
    if isinstance(duration, bool) or not isinstance(duration, int) or duration < 0:
        raise ValidationError("duration", "must be a non-negative integer")


def _session_state(session: CampaignSession) -> dict:
    return {
        "session_number": session.session_number,
        "session_date": session.session_date,
        "status": session.status,
        "notes": session.notes,
        "duration": session.duration,
    }


@persistence_guard
async def get_session(db: AsyncSession, session_id: str) -> CampaignSession | None:
    result = await db.execute(
        select(CampaignSession).where(CampaignSession.id == session_id)
    )
    return result.scalar_one_or_none()


async def require_session(db: AsyncSession, session_id: str) -> CampaignSession:
    session = await get_session(db, session_id)
    if session is None:
        raise NotFoundError("session", session_id)
    return session


@persistence_guard
async def list_sessions(db: AsyncSession, campaign_id: str) -> list[CampaignSession]:
    """Sessions of a campaign in session-number order."""
    result = await db.execute(
        select(CampaignSession)
        .where(CampaignSession.campaign_id == campaign_id)
        .order_by(CampaignSession.session_number)
    )
    return list(result.scalars().all())


@persistence_guard
async def create_session(
    db: AsyncSession,
    actor: Actor,
    campaign_id: str,
    session_date: datetime,
    notes: str | None = None,
    duration: int | None = None,
) -> CampaignSession:
    """Schedule a new session with the next number in the campaign's sequence."""
    _check_duration(duration)
    campaign = await require_campaign(db, campaign_id)

    # Claim the next number; the row lock serializes concurrent creators
    await db.execute(
        update(Campaign)
        .where(Campaign.id == campaign_id)
        .values(session_sequence=Campaign.session_sequence + 1)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(select(Campaign.session_sequence).where(Campaign.id == campaign_id))
    session_number = result.scalar_one()

    now = datetime.now(timezone.utc)
    session = CampaignSession(
        campaign_id=campaign_id,
        session_number=session_number,
        session_date=session_date,
        dm_id=campaign.dm_id,
        status=SessionStatus.SCHEDULED.value,
        players=[],
        assigned_achievements=[],
        notes=notes,
        duration=duration,
        created_at=now,
        updated_at=now,
    )
    db.add(session)
    await db.commit()

    await db.execute(
        update(Campaign)
        .where(Campaign.id == campaign_id)
        .values(
            total_sessions=Campaign.total_sessions + 1,
            last_session_date=session_date,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info(
        "session_created",
        session_id=session.id,
        campaign_id=campaign_id,
        session_number=session_number,
    )
    await record_audit(
        db, actor, AuditAction.CREATE_SESSION, ResourceType.SESSION, session.id,
        new_value=_session_state(session),
        metadata={"campaign_id": campaign_id},
    )
    return session


@persistence_guard
async def set_session_status(
    db: AsyncSession,
    actor: Actor,
    session_id: str,
    status: str,
) -> CampaignSession:
    """Overwrite a session's status. Transitions are unrestricted."""
    try:
        new_status = SessionStatus(status)
    except ValueError as e:
        raise ValidationError("status", f"must be one of {[s.value for s in SessionStatus]}") from e

    session = await require_session(db, session_id)
    old_status = session.status
    session.status = new_status.value
    session.updated_at = datetime.now(timezone.utc)
    await db.commit()

    await record_audit(
        db, actor, AuditAction.UPDATE_SESSION, ResourceType.SESSION, session_id,
        old_value={"status": old_status},
        new_value={"status": new_status.value},
        metadata={"campaign_id": session.campaign_id},
    )
    return session


@persistence_guard
async def update_session(
    db: AsyncSession,
    actor: Actor,
    session_id: str,
    notes: str | None = None,
    duration: int | None = None,
    session_date: datetime | None = None,
) -> CampaignSession:
    """Merge-update the given fields. Omitted fields are left untouched."""
    _check_duration(duration)
    session = await require_session(db, session_id)
    old = _session_state(session)

    if notes is not None:
        session.notes = notes
    if duration is not None:
        session.duration = duration
    if session_date is not None:
        session.session_date = session_date
    session.updated_at = datetime.now(timezone.utc)
    await db.commit()

    await record_audit(
        db, actor, AuditAction.UPDATE_SESSION, ResourceType.SESSION, session_id,
        old_value=old, new_value=_session_state(session),
        metadata={"campaign_id": session.campaign_id},
    )
    return session


@persistence_guard
async def add_player_to_session(
    db: AsyncSession,
    actor: Actor,
    session_id: str,
    user_id: str,
    character_name: str,
    attended: bool = True,
) -> CampaignSession:
    """Put a player on the roster, replacing any existing entry for the same user."""
    if not character_name or not character_name.strip():
        raise ValidationError("character_name", "must be a non-empty string")
    session = await require_session(db, session_id)

    roster = [p for p in session.players if p["user_id"] != user_id]
    roster.append({
        "user_id": user_id,
        "character_name": character_name.strip(),
        "attended": attended,
        "joined_at": datetime.now(timezone.utc).isoformat(),
    })
    session.players = roster
    session.updated_at = datetime.now(timezone.utc)
    await db.commit()

    await record_audit(
        db, actor, AuditAction.UPDATE_SESSION, ResourceType.SESSION, session_id,
        new_value={"player_added": user_id, "attended": attended},
        metadata={"campaign_id": session.campaign_id},
    )
    return session


@persistence_guard
async def remove_player_from_session(
    db: AsyncSession,
    actor: Actor,
    session_id: str,
    user_id: str,
) -> CampaignSession:
    session = await require_session(db, session_id)
    session.players = [p for p in session.players if p["user_id"] != user_id]
    session.updated_at = datetime.now(timezone.utc)
    await db.commit()

    await record_audit(
        db, actor, AuditAction.UPDATE_SESSION, ResourceType.SESSION, session_id,
        new_value={"player_removed": user_id},
        metadata={"campaign_id": session.campaign_id},
    )
    return session


@persistence_guard
async def delete_session(db: AsyncSession, actor: Actor, session_id: str) -> None:
    """Delete a session and decrement the campaign's live count. Remaining numbers are kept."""
    session = await require_session(db, session_id)
    old = _session_state(session)
    campaign_id = session.campaign_id

    await db.delete(session)
    await db.execute(
        update(Campaign)
        .where(Campaign.id == campaign_id)
        .values(
            total_sessions=case(
                (Campaign.total_sessions > 0, Campaign.total_sessions - 1),
                else_=0,
            )
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info("session_deleted", session_id=session_id, campaign_id=campaign_id)
    await record_audit(
        db, actor, AuditAction.DELETE_SESSION, ResourceType.SESSION, session_id,
        old_value=old, metadata={"campaign_id": campaign_id},
    )
