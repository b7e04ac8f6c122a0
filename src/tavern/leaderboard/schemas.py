"""Pydantic response models for leaderboard endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: str
    username: str
    display_name: str
    total_points: int
    total_achievements: int
    unique_achievements: int
    last_updated: datetime


class LeaderboardResponse(BaseModel):
    period: str
    entries: list[LeaderboardEntryResponse]
    total: int


class UserRankResponse(BaseModel):
    period: str
    user_id: str
    entry: LeaderboardEntryResponse | None = None


class LeaderboardStatsResponse(BaseModel):
    period: str
    total_players: int
    average_points: int
    highest_points: int
    total_achievements: int


class ComparisonResponse(BaseModel):
    points_difference: int
    achievements_difference: int
    rank_difference: int


class CompareUsersResponse(BaseModel):
    period: str
    user_a: LeaderboardEntryResponse | None = None
    user_b: LeaderboardEntryResponse | None = None
    comparison: ComparisonResponse


class RefreshAllResponse(BaseModel):
    period: str
    succeeded: int
    failed: list[dict]


class SnapshotResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    period: str
    taken_at: datetime
    entry_count: int
    entries: list[LeaderboardEntryResponse]


class SnapshotListResponse(BaseModel):
    snapshots: list[SnapshotResponse]
    total: int
