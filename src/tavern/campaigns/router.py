"""Campaign and session API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.audit.service import Actor
from tavern.auth.dependencies import get_current_actor
from tavern.campaigns import service, session_service
from tavern.campaigns.schemas import (
    CampaignCreateRequest,
    CampaignListResponse,
    CampaignResponse,
    JoinCampaignRequest,
    RosterEntryRequest,
    SessionCreateRequest,
    SessionListResponse,
    SessionResponse,
    SessionStatusRequest,
    SessionUpdateRequest,
)
from tavern.dependencies import get_db

router = APIRouter(prefix="/api/v1", tags=["Campaigns"])


# ── Campaigns ──


@router.post("/campaigns", response_model=CampaignResponse, status_code=201)
async def create_campaign(
    body: CampaignCreateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Create a campaign with the caller as DM."""
    campaign = await service.create_campaign(db, actor, body.name, body.description)
    return CampaignResponse.model_validate(campaign)


@router.get("/campaigns", response_model=CampaignListResponse)
async def list_campaigns(
    mine: bool = Query(False, description="Only campaigns the caller runs or plays in"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    campaigns = await service.list_campaigns(db, user_id=actor.user_id if mine else None)
    return CampaignListResponse(
        campaigns=[CampaignResponse.model_validate(c) for c in campaigns],
        total=len(campaigns),
    )


@router.get("/campaigns/{campaign_id}", response_model=CampaignResponse)
async def get_campaign(
    campaign_id: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    campaign = await service.get_campaign(db, campaign_id)
    if campaign is None:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return CampaignResponse.model_validate(campaign)


@router.post("/campaigns/{campaign_id}/join", response_model=CampaignResponse)
async def join_campaign(
    campaign_id: str,
    body: JoinCampaignRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    campaign = await service.join_campaign(db, actor, campaign_id, body.character_name)
    return CampaignResponse.model_validate(campaign)


# ── Sessions ──


@router.post("/campaigns/{campaign_id}/sessions", response_model=SessionResponse, status_code=201)
async def create_session(
    campaign_id: str,
    body: SessionCreateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.create_session(
        db, actor, campaign_id, body.session_date, notes=body.notes, duration=body.duration,
    )
    return SessionResponse.model_validate(session)


@router.get("/campaigns/{campaign_id}/sessions", response_model=SessionListResponse)
async def list_sessions(
    campaign_id: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    sessions = await session_service.list_sessions(db, campaign_id)
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(s) for s in sessions],
        total=len(sessions),
    )


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.get_session(db, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionResponse.model_validate(session)


@router.patch("/sessions/{session_id}", response_model=SessionResponse)
async def update_session(
    session_id: str,
    body: SessionUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.update_session(
        db, actor, session_id,
        notes=body.notes, duration=body.duration, session_date=body.session_date,
    )
    return SessionResponse.model_validate(session)


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(
    session_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> None:
    await session_service.delete_session(db, actor, session_id)


@router.put("/sessions/{session_id}/status", response_model=SessionResponse)
async def set_session_status(
    session_id: str,
    body: SessionStatusRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.set_session_status(db, actor, session_id, body.status)
    return SessionResponse.model_validate(session)


@router.put("/sessions/{session_id}/players/{user_id}", response_model=SessionResponse)
async def put_session_player(
    session_id: str,
    user_id: str,
    body: RosterEntryRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Add or replace a roster entry."""
    session = await session_service.add_player_to_session(
        db, actor, session_id, user_id, body.character_name, attended=body.attended,
    )
    return SessionResponse.model_validate(session)


@router.delete("/sessions/{session_id}/players/{user_id}", response_model=SessionResponse)
async def remove_session_player(
    session_id: str,
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.remove_player_from_session(db, actor, session_id, user_id)
    return SessionResponse.model_validate(session)
