"""Leaderboard API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.audit.service import Actor
from tavern.auth.dependencies import get_current_actor, require_admin
from tavern.dependencies import get_db
from tavern.leaderboard import service
from tavern.leaderboard.schemas import (
    CompareUsersResponse,
    LeaderboardEntryResponse,
    LeaderboardResponse,
    LeaderboardStatsResponse,
    RefreshAllResponse,
    SnapshotListResponse,
    SnapshotResponse,
    UserRankResponse,
)

router = APIRouter(prefix="/api/v1/leaderboard", tags=["Leaderboard"])


@router.get("/{period}", response_model=LeaderboardResponse)
async def get_leaderboard(
    period: str,
    limit: int | None = Query(None, ge=1, le=1000),
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Ranked page of the live leaderboard. Ranks are relative to this page."""
    entries = await service.list_leaderboard(db, service.parse_period(period), limit)
    return LeaderboardResponse(
        period=period,
        entries=[LeaderboardEntryResponse(**e) for e in entries],
        total=len(entries),
    )


@router.get("/{period}/rank/{uid}", response_model=UserRankResponse)
async def get_user_rank(
    period: str,
    uid: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    entry = await service.get_user_rank(db, uid, service.parse_period(period))
    return UserRankResponse(
        period=period,
        user_id=uid,
        entry=LeaderboardEntryResponse(**entry) if entry is not None else None,
    )


@router.get("/{period}/stats", response_model=LeaderboardStatsResponse)
async def get_leaderboard_stats(
    period: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    stats = await service.leaderboard_stats(db, service.parse_period(period))
    return LeaderboardStatsResponse(period=period, **stats)


@router.get("/{period}/compare", response_model=CompareUsersResponse)
async def compare_users(
    period: str,
    user_a: str = Query(...),
    user_b: str = Query(...),
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await service.compare_users(db, user_a, user_b, service.parse_period(period))
    return CompareUsersResponse(period=period, **result)


@router.post("/{period}/refresh", response_model=LeaderboardEntryResponse)
async def refresh_my_entry(
    period: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Recompute the caller's own entry and return it with its current rank."""
    parsed = service.parse_period(period)
    refreshed = await service.refresh_entry(db, actor.user_id, parsed, actor=actor)
    entry = await service.get_user_rank(db, actor.user_id, parsed)
    if entry is None:
        # Beyond the rank scan limit
        entry = service.entry_to_dict(refreshed, rank=0)
    return LeaderboardEntryResponse(**entry)


@router.post("/{period}/refresh-all", response_model=RefreshAllResponse)
async def refresh_all(
    period: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    tally = await service.refresh_all_entries(db, service.parse_period(period), actor=actor)
    return RefreshAllResponse(period=period, succeeded=tally.succeeded, failed=tally.failed)


@router.post("/{period}/snapshots", response_model=SnapshotResponse, status_code=201)
async def create_snapshot(
    period: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    snapshot = await service.take_snapshot(db, service.parse_period(period), actor=actor)
    return SnapshotResponse.model_validate(snapshot)


@router.get("/{period}/snapshots", response_model=SnapshotListResponse)
async def list_snapshots(
    period: str,
    limit: int = Query(10, ge=1, le=100),
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    snapshots = await service.list_snapshots(db, service.parse_period(period), limit)
    return SnapshotListResponse(
        snapshots=[SnapshotResponse.model_validate(s) for s in snapshots],
        total=len(snapshots),
    )
