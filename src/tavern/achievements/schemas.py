"""Pydantic request/response models for achievement endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from tavern.achievements.ledger import ProgressScope


# --- Catalog ---


class UpgradeInput(BaseModel):
    name: str
    description: str
    required_count: int
    points: int


class TemplateCreateRequest(BaseModel):
    name: str
    description: str
    base_points: int = 0
    upgrades: list[UpgradeInput] = []
    is_public: bool = True


class UpgradeResponse(BaseModel):
    id: str
    name: str
    description: str
    required_count: int
    points: int


class TemplateResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    name: str
    description: str
    base_points: int
    upgrades: list[UpgradeResponse]
    created_by: str
    is_public: bool
    created_at: datetime


class TemplateListResponse(BaseModel):
    templates: list[TemplateResponse]
    total: int


class LevelInfoResponse(BaseModel):
    level: int
    name: str
    description: str
    points: int
    next_required_count: int | None = None
    max_level: int


class AssignAchievementRequest(BaseModel):
    achievement_id: str


# --- Ledger ---


class ProgressChangeRequest(BaseModel):
    player_id: str
    achievement_id: str
    scope: ProgressScope = ProgressScope.CAMPAIGN
    scope_id: str
    delta: int = 1


class AssignToPlayerRequest(BaseModel):
    achievement_id: str
    player_id: str
    campaign_id: str


class SessionAwardRequest(BaseModel):
    player_id: str
    achievement_id: str
    count: int = Field(1, description="Absolute count for this award")
    rollup: bool = Field(False, description="Also fold the award into the player's global aggregate")


class SetProgressRequest(BaseModel):
    count: int


class ProgressRecordResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    scope: ProgressScope
    player_id: str
    achievement_id: str
    campaign_id: str
    session_id: str | None = None
    count: int
    current_level: int
    assigned_by: str | None = None
    earned_at: datetime
    last_updated: datetime


class ProgressListResponse(BaseModel):
    records: list[ProgressRecordResponse]
    total: int


# --- Aggregates ---


class UserAggregateResponse(BaseModel):
    model_config = {"from_attributes": True}

    user_id: str
    achievement_id: str
    total_count: int
    total_points: int
    current_level: int
    first_earned_at: datetime
    last_earned_at: datetime
    campaigns_earned_in: list[str]
    sessions_earned_in: list[str]
    last_session_earned_in: str | None = None


class UserAggregateListResponse(BaseModel):
    aggregates: list[UserAggregateResponse]
    total: int


class SessionAwardResponse(BaseModel):
    record: ProgressRecordResponse
    aggregate: UserAggregateResponse | None = None
