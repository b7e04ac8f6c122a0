"""Request/response schemas for user endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class RegisterRequest(BaseModel):
    username: str
    email: str
    display_name: str | None = None


class UserResponse(BaseModel):
    model_config = {"from_attributes": True}

    uid: str
    username: str
    email: str
    display_name: str
    total_global_points: int
    total_global_achievements: int
    created_at: datetime


class UserStatsResponse(BaseModel):
    uid: str
    total_points: int
    total_achievements: int
    unique_achievements: int
    campaigns_played: int
    sessions_played: int
    # Denormalized totals as currently stored on the user
    total_global_points: int
    total_global_achievements: int


class RecalculateResponse(BaseModel):
    uid: str
    aggregates_rebuilt: int
    total_global_points: int
    total_global_achievements: int
