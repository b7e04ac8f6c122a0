"""Achievement catalog: global achievement templates and their assignment."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.audit.service import Actor, AuditAction, ResourceType, record_audit
from tavern.db.models import AchievementTemplate, Campaign, CampaignSession
from tavern.errors import DuplicateError, NotFoundError, ValidationError, persistence_guard

logger = structlog.get_logger()


def _require_text(field: str, value: Any) -> str:  # noqa: ANN401
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "must be a non-empty string")
    return value.strip()


def _require_int(field: str, value: Any, minimum: int, exclusive: bool = False) -> int:  # noqa: ANN401
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, "must be an integer")
    if exclusive and value <= minimum:
        raise ValidationError(field, f"must be greater than {minimum}")
    if not exclusive and value < minimum:
        raise ValidationError(field, f"must be at least {minimum}")
    return value


def validate_template(
    name: Any,  # noqa: ANN401
    description: Any,  # noqa: ANN401
    base_points: Any,  # noqa: ANN401
    upgrades: list[dict[str, Any]],
) -> tuple[str, str, int, list[dict[str, Any]]]:
    """Validate template input, raising ValidationError on the first violated field."""
    clean_name = _require_text("name", name)
    clean_description = _require_text("description", description)
    clean_points = _require_int("base_points", base_points, 0)

    clean_upgrades: list[dict[str, Any]] = []
    previous: int | None = None
    for index, upgrade in enumerate(upgrades):
        prefix = f"upgrades[{index}]"
        u_name = _require_text(f"{prefix}.name", upgrade.get("name"))
        u_description = _require_text(f"{prefix}.description", upgrade.get("description"))
        required = _require_int(f"{prefix}.required_count", upgrade.get("required_count"), 0, exclusive=True)
        points = _require_int(f"{prefix}.points", upgrade.get("points"), 0)
        if previous is not None and required <= previous:
            raise ValidationError(f"{prefix}.required_count", "must be greater than the previous upgrade's")
        previous = required
        clean_upgrades.append({
            "name": u_name,
            "description": u_description,
            "required_count": required,
            "points": points,
        })

    return clean_name, clean_description, clean_points, clean_upgrades


@persistence_guard
async def create_template(
    db: AsyncSession,
    actor: Actor,
    name: str,
    description: str,
    base_points: int,
    upgrades: list[dict[str, Any]],
    is_public: bool = True,
) -> AchievementTemplate:
    """Create a global achievement template. Upgrades get synthetic ids."""
    clean_name, clean_description, clean_points, clean_upgrades = validate_template(
        name, description, base_points, upgrades
    )

    stamp = int(time.time() * 1000)
    for index, upgrade in enumerate(clean_upgrades):
        upgrade["id"] = f"upgrade_{stamp}_{index}"

    template = AchievementTemplate(
        name=clean_name,
        description=clean_description,
        base_points=clean_points,
        upgrades=clean_upgrades,
        created_by=actor.user_id,
        is_public=is_public,
        created_at=datetime.now(timezone.utc),
    )
    db.add(template)
    await db.commit()

    logger.info("template_created", template_id=template.id, upgrades=len(clean_upgrades))
    await record_audit(
        db, actor, AuditAction.CREATE_ACHIEVEMENT, ResourceType.ACHIEVEMENT, template.id,
        new_value={"name": clean_name, "base_points": clean_points, "upgrades": clean_upgrades},
    )
    return template


@persistence_guard
async def list_templates(
    db: AsyncSession,
    requesting_user_id: str | None = None,
) -> list[AchievementTemplate]:
    """Public templates, plus the requesting user's private ones. Newest first."""
    visibility = AchievementTemplate.is_public.is_(True)
    if requesting_user_id is not None:
        visibility = or_(visibility, AchievementTemplate.created_by == requesting_user_id)

    result = await db.execute(
        select(AchievementTemplate)
        .where(visibility)
        .order_by(AchievementTemplate.created_at.desc())
    )
    return list(result.scalars().all())


@persistence_guard
async def get_template(db: AsyncSession, template_id: str) -> AchievementTemplate | None:
    """Fetch a template by id. Absence is not an error."""
    result = await db.execute(
        select(AchievementTemplate).where(AchievementTemplate.id == template_id)
    )
    return result.scalar_one_or_none()


async def require_template(db: AsyncSession, template_id: str) -> AchievementTemplate:
    template = await get_template(db, template_id)
    if template is None:
        raise NotFoundError("achievement_template", template_id)
    return template


@persistence_guard
async def get_templates_by_ids(db: AsyncSession, template_ids: list[str]) -> dict[str, AchievementTemplate]:
    """Batch-load templates keyed by id."""
    if not template_ids:
        return {}
    result = await db.execute(
        select(AchievementTemplate).where(AchievementTemplate.id.in_(set(template_ids)))
    )
    return {t.id: t for t in result.scalars()}


@persistence_guard
async def assign_to_campaign(
    db: AsyncSession,
    actor: Actor,
    template_id: str,
    campaign_id: str,
) -> Campaign:
    """Make a template usable in a campaign. Assigning twice is a DuplicateError."""
    await require_template(db, template_id)
    result = await db.execute(select(Campaign).where(Campaign.id == campaign_id))
    campaign = result.scalar_one_or_none()
    if campaign is None:
        raise NotFoundError("campaign", campaign_id)

    if template_id in campaign.assigned_achievements:
        raise DuplicateError("campaign_achievement", f"{campaign_id}:{template_id}")

    campaign.assigned_achievements = [*campaign.assigned_achievements, template_id]
    await db.commit()

    await record_audit(
        db, actor, AuditAction.ASSIGN_ACHIEVEMENT, ResourceType.CAMPAIGN, campaign_id,
        new_value={"achievement_id": template_id},
        metadata={"campaign_id": campaign_id, "achievement_id": template_id},
    )
    return campaign


@persistence_guard
async def list_campaign_templates(db: AsyncSession, campaign_id: str) -> list[AchievementTemplate]:
    """Templates assigned to a campaign, in assignment order."""
    result = await db.execute(select(Campaign).where(Campaign.id == campaign_id))
    campaign = result.scalar_one_or_none()
    if campaign is None:
        raise NotFoundError("campaign", campaign_id)

    templates = await get_templates_by_ids(db, campaign.assigned_achievements)
    return [templates[tid] for tid in campaign.assigned_achievements if tid in templates]


@persistence_guard
async def assign_to_session(
    db: AsyncSession,
    actor: Actor,
    session_id: str,
    template_id: str,
) -> CampaignSession:
    """Make a template awardable in a session. Repeats are absorbed (set semantics)."""
    result = await db.execute(select(CampaignSession).where(CampaignSession.id == session_id))
    session = result.scalar_one_or_none()
    if session is None:
        raise NotFoundError("session", session_id)
    await require_template(db, template_id)

    if template_id not in session.assigned_achievements:
        session.assigned_achievements = [*session.assigned_achievements, template_id]
        session.updated_at = datetime.now(timezone.utc)
    await db.commit()

    await record_audit(
        db, actor, AuditAction.ASSIGN_ACHIEVEMENT, ResourceType.ACHIEVEMENT, template_id,
        new_value={"session_id": session_id, "achievement_id": template_id},
        metadata={"session_id": session_id, "campaign_id": session.campaign_id},
    )
    return session
