"""Campaign registry: DM-owned campaigns and their players."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.audit.service import Actor, AuditAction, ResourceType, record_audit
from tavern.db.models import Campaign, CampaignPlayer
from tavern.errors import DuplicateError, NotFoundError, ValidationError, persistence_guard

logger = structlog.get_logger()


def normalize_character_name(name: str) -> str:
    return name.strip().lower()


def _require_text(field: str, value: str | None) -> str:
    if value is None or not value.strip():
        raise ValidationError(field, "must be a non-empty string")
    return value.strip()


@persistence_guard
async def create_campaign(
    db: AsyncSession,
    actor: Actor,
    name: str,
    description: str,
) -> Campaign:
    """Create a campaign owned by ``actor`` as its DM."""
    clean_name = _require_text("name", name)
    clean_description = _require_text("description", description)

    campaign = Campaign(
        name=clean_name,
        description=clean_description,
        dm_id=actor.user_id,
        dm_name=actor.username,
        is_active=True,
        assigned_achievements=[],
        total_sessions=0,
        session_sequence=0,
        created_at=datetime.now(timezone.utc),
        players=[],
    )
    db.add(campaign)
    await db.commit()

    logger.info("campaign_created", campaign_id=campaign.id, dm_id=actor.user_id)
    await record_audit(
        db, actor, AuditAction.CREATE_CAMPAIGN, ResourceType.CAMPAIGN, campaign.id,
        new_value={"name": clean_name, "description": clean_description},
    )
    return campaign


@persistence_guard
async def list_campaigns(db: AsyncSession, user_id: str | None = None) -> list[Campaign]:
    """Active campaigns, newest first.

    With ``user_id``, only campaigns that user runs or plays in.
    """
    stmt = select(Campaign).where(Campaign.is_active.is_(True))
    if user_id is not None:
        stmt = stmt.where(
            or_(
                Campaign.dm_id == user_id,
                Campaign.id.in_(
                    select(CampaignPlayer.campaign_id).where(CampaignPlayer.user_id == user_id)
                ),
            )
        )
    result = await db.execute(stmt.order_by(Campaign.created_at.desc()))
    return list(result.scalars().all())


@persistence_guard
async def get_campaign(db: AsyncSession, campaign_id: str) -> Campaign | None:
    result = await db.execute(
        select(Campaign).where(Campaign.id == campaign_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def require_campaign(db: AsyncSession, campaign_id: str) -> Campaign:
    campaign = await get_campaign(db, campaign_id)
    if campaign is None:
        raise NotFoundError("campaign", campaign_id)
    return campaign


@persistence_guard
async def join_campaign(
    db: AsyncSession,
    actor: Actor,
    campaign_id: str,
    character_name: str,
) -> Campaign:
    """Add ``actor`` to a campaign as a character.

    Character names are unique per campaign, compared trimmed and
    case-insensitively. The same user may join more than once under
    different names.
    """
    clean_name = _require_text("character_name", character_name)
    campaign = await require_campaign(db, campaign_id)

    normalized = normalize_character_name(clean_name)
    if any(normalize_character_name(p.character_name) == normalized for p in campaign.players):
        raise DuplicateError("character_name", clean_name)

    player = CampaignPlayer(
        user_id=actor.user_id,
        character_name=clean_name,
        joined_at=datetime.now(timezone.utc),
    )
    campaign.players.append(player)
    await db.commit()

    logger.info("campaign_joined", campaign_id=campaign_id, user_id=actor.user_id)
    await record_audit(
        db, actor, AuditAction.JOIN_CAMPAIGN, ResourceType.CAMPAIGN, campaign_id,
        new_value={"user_id": actor.user_id, "character_name": clean_name},
    )
    return campaign
