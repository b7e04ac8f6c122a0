"""Achievement API endpoints: catalog, progress ledger and session awards."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.achievements import catalog, ledger
from tavern.achievements.aggregator import SessionAward, bump_user_aggregate
from tavern.achievements.levels import award_points, level_info
from tavern.achievements.schemas import (
    AssignAchievementRequest,
    AssignToPlayerRequest,
    LevelInfoResponse,
    ProgressChangeRequest,
    ProgressListResponse,
    ProgressRecordResponse,
    SessionAwardRequest,
    SessionAwardResponse,
    SetProgressRequest,
    TemplateCreateRequest,
    TemplateListResponse,
    TemplateResponse,
    UserAggregateResponse,
)
from tavern.audit.service import Actor
from tavern.auth.dependencies import get_current_actor
from tavern.dependencies import get_db, get_redis_dep

router = APIRouter(prefix="/api/v1", tags=["Achievements"])


def _records(records: list) -> ProgressListResponse:
    return ProgressListResponse(
        records=[ProgressRecordResponse.model_validate(r) for r in records],
        total=len(records),
    )


# ── Catalog ──


@router.post("/achievements", response_model=TemplateResponse, status_code=201)
async def create_achievement(
    body: TemplateCreateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    template = await catalog.create_template(
        db,
        actor,
        name=body.name,
        description=body.description,
        base_points=body.base_points,
        upgrades=[u.model_dump() for u in body.upgrades],
        is_public=body.is_public,
    )
    return TemplateResponse.model_validate(template)


@router.get("/achievements", response_model=TemplateListResponse)
async def list_achievements(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Public templates plus the caller's private ones, newest first."""
    templates = await catalog.list_templates(db, requesting_user_id=actor.user_id)
    return TemplateListResponse(
        templates=[TemplateResponse.model_validate(t) for t in templates],
        total=len(templates),
    )


@router.get("/achievements/{achievement_id}", response_model=TemplateResponse)
async def get_achievement(
    achievement_id: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    template = await catalog.get_template(db, achievement_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Achievement not found")
    return TemplateResponse.model_validate(template)


@router.get("/achievements/{achievement_id}/levels", response_model=list[LevelInfoResponse])
async def get_achievement_levels(
    achievement_id: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Every tier of a template, base tier first."""
    template = await catalog.require_template(db, achievement_id)
    return [LevelInfoResponse(**level_info(template, level)) for level in range(len(template.upgrades) + 1)]


@router.post("/campaigns/{campaign_id}/achievements", status_code=201)
async def assign_to_campaign(
    campaign_id: str,
    body: AssignAchievementRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, object]:
    campaign = await catalog.assign_to_campaign(db, actor, body.achievement_id, campaign_id)
    return {"campaign_id": campaign.id, "assigned_achievements": campaign.assigned_achievements}


@router.get("/campaigns/{campaign_id}/achievements", response_model=TemplateListResponse)
async def list_campaign_achievements(
    campaign_id: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    templates = await catalog.list_campaign_templates(db, campaign_id)
    return TemplateListResponse(
        templates=[TemplateResponse.model_validate(t) for t in templates],
        total=len(templates),
    )


@router.post("/sessions/{session_id}/achievements", status_code=201)
async def assign_to_session(
    session_id: str,
    body: AssignAchievementRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, object]:
    session = await catalog.assign_to_session(db, actor, session_id, body.achievement_id)
    return {"session_id": session.id, "assigned_achievements": session.assigned_achievements}


# ── Progress ledger ──


@router.post("/progress/increment", response_model=ProgressRecordResponse)
async def increment_progress(
    body: ProgressChangeRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    record = await ledger.increment_progress(
        db, body.player_id, body.achievement_id, body.scope_id, body.delta,
        actor=actor, scope=body.scope, redis=redis,
    )
    return ProgressRecordResponse.model_validate(record)


@router.post("/progress/decrement", response_model=ProgressRecordResponse | None)
async def decrement_progress(
    body: ProgressChangeRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Returns null when the player has no record to decrement."""
    record = await ledger.decrement_progress(
        db, body.player_id, body.achievement_id, body.scope_id, body.delta,
        actor=actor, scope=body.scope,
    )
    return ProgressRecordResponse.model_validate(record) if record is not None else None


@router.post("/progress/assign", response_model=ProgressRecordResponse, status_code=201)
async def assign_to_player(
    body: AssignToPlayerRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    record = await ledger.assign_achievement_to_player(
        db, body.achievement_id, body.player_id, body.campaign_id, actor=actor,
    )
    return ProgressRecordResponse.model_validate(record)


@router.get("/campaigns/{campaign_id}/players/{player_id}/progress", response_model=ProgressListResponse)
async def get_player_progress(
    campaign_id: str,
    player_id: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return _records(await ledger.get_player_progress(db, player_id, campaign_id))


@router.get("/campaigns/{campaign_id}/awards", response_model=ProgressListResponse)
async def get_campaign_awards(
    campaign_id: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Every session award in a campaign, newest first."""
    return _records(await ledger.get_campaign_session_awards(db, campaign_id))


# ── Session awards ──


@router.post("/sessions/{session_id}/awards", response_model=SessionAwardResponse, status_code=201)
async def award_session_achievement(
    session_id: str,
    body: SessionAwardRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Award an achievement in a session, optionally rolling it into the player's aggregate."""
    record = await ledger.award_session_achievement(
        db, session_id, body.player_id, body.achievement_id, body.count,
        actor=actor, redis=redis,
    )
    aggregate = None
    if body.rollup:
        template = await catalog.require_template(db, body.achievement_id)
        aggregate = await bump_user_aggregate(
            db,
            body.player_id,
            body.achievement_id,
            SessionAward(
                session_id=session_id,
                campaign_id=record.campaign_id,
                count=record.count,
                points=award_points(template, record.count),
                earned_at=record.earned_at,
            ),
            actor=actor,
        )
    return SessionAwardResponse(
        record=ProgressRecordResponse.model_validate(record),
        aggregate=UserAggregateResponse.model_validate(aggregate) if aggregate is not None else None,
    )


@router.get("/sessions/{session_id}/players/{player_id}/awards", response_model=ProgressListResponse)
async def get_player_session_awards(
    session_id: str,
    player_id: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return _records(await ledger.get_player_session_progress(db, session_id, player_id))


@router.put("/awards/{record_id}", response_model=ProgressRecordResponse)
async def set_award_count(
    record_id: str,
    body: SetProgressRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    record = await ledger.set_session_progress(db, record_id, body.count, actor=actor, redis=redis)
    return ProgressRecordResponse.model_validate(record)
