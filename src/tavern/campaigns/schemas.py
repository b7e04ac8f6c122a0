"""Pydantic request/response models for campaign and session endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# --- Campaign ---


class CampaignCreateRequest(BaseModel):
    name: str
    description: str


class JoinCampaignRequest(BaseModel):
    character_name: str


class CampaignPlayerResponse(BaseModel):
    model_config = {"from_attributes": True}

    user_id: str
    character_name: str
    joined_at: datetime


class CampaignResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    name: str
    description: str
    dm_id: str
    dm_name: str
    is_active: bool
    players: list[CampaignPlayerResponse]
    assigned_achievements: list[str]
    total_sessions: int
    last_session_date: datetime | None = None
    created_at: datetime


class CampaignListResponse(BaseModel):
    campaigns: list[CampaignResponse]
    total: int


# --- Session ---


class SessionCreateRequest(BaseModel):
    session_date: datetime
    notes: str | None = None
    duration: int | None = None


class SessionUpdateRequest(BaseModel):
    session_date: datetime | None = None
    notes: str | None = None
    duration: int | None = None


class SessionStatusRequest(BaseModel):
    status: str


class RosterEntryRequest(BaseModel):
    character_name: str
    attended: bool = True


class RosterEntry(BaseModel):
    user_id: str
    character_name: str
    attended: bool
    joined_at: datetime


class SessionResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    campaign_id: str
    session_number: int
    session_date: datetime
    dm_id: str
    status: str
    players: list[RosterEntry]
    assigned_achievements: list[str]
    notes: str | None = None
    duration: int | None = None
    created_at: datetime
    updated_at: datetime


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    total: int
