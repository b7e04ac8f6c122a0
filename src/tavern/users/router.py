"""User router: all /api/v1/users/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.achievements import aggregator
from tavern.achievements.schemas import (
    ProgressListResponse,
    ProgressRecordResponse,
    UserAggregateListResponse,
    UserAggregateResponse,
)
from tavern.audit.service import Actor
from tavern.auth.dependencies import get_current_actor, require_admin
from tavern.dependencies import get_db
from tavern.users.schemas import RecalculateResponse, RegisterRequest, UserResponse, UserStatsResponse
from tavern.users.service import get_user, register_user

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


async def _require_user(db: AsyncSession, uid: str):  # noqa: ANN202
    user = await get_user(db, uid)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("", response_model=UserResponse, status_code=201)
async def register(
    body: RegisterRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Register the caller under the id carried in their token."""
    user = await register_user(db, actor.user_id, body.username, body.email, body.display_name)
    return UserResponse.model_validate(user)


@router.get("/me", response_model=UserResponse)
async def get_me(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return UserResponse.model_validate(await _require_user(db, actor.user_id))


@router.get("/{uid}/stats", response_model=UserStatsResponse)
async def get_user_stats(
    uid: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    user = await _require_user(db, uid)
    stats = await aggregator.aggregate_user_stats(db, uid)
    return UserStatsResponse(
        uid=uid,
        total_points=stats.total_points,
        total_achievements=stats.total_achievements,
        unique_achievements=stats.unique_achievements,
        campaigns_played=stats.campaigns_played,
        sessions_played=stats.sessions_played,
        total_global_points=user.total_global_points,
        total_global_achievements=user.total_global_achievements,
    )


@router.get("/{uid}/achievements", response_model=UserAggregateListResponse)
async def get_user_achievements(
    uid: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    aggregates = await aggregator.get_user_aggregates(db, uid)
    return UserAggregateListResponse(
        aggregates=[UserAggregateResponse.model_validate(a) for a in aggregates],
        total=len(aggregates),
    )


@router.get("/{uid}/achievements/{achievement_id}", response_model=UserAggregateResponse)
async def get_user_achievement(
    uid: str,
    achievement_id: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    aggregate = await aggregator.get_user_aggregate(db, uid, achievement_id)
    if aggregate is None:
        raise HTTPException(status_code=404, detail="Achievement not earned")
    return UserAggregateResponse.model_validate(aggregate)


@router.get("/{uid}/history", response_model=ProgressListResponse)
async def get_user_history(
    uid: str,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Raw session award history, newest first."""
    records = await aggregator.get_user_award_history(db, uid)
    return ProgressListResponse(
        records=[ProgressRecordResponse.model_validate(r) for r in records],
        total=len(records),
    )


@router.post("/{uid}/achievements/{achievement_id}/recompute", response_model=UserAggregateResponse | None)
async def recompute_user_achievement(
    uid: str,
    achievement_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Rebuild one aggregate from the award history. Null when nothing was earned."""
    aggregate = await aggregator.recompute_user_aggregate(db, uid, achievement_id, actor=actor)
    return UserAggregateResponse.model_validate(aggregate) if aggregate is not None else None


@router.post("/{uid}/recalculate", response_model=RecalculateResponse)
async def recalculate_user(
    uid: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rebuilt = await aggregator.recalculate_all(db, uid, actor=actor)
    user = await _require_user(db, uid)
    return RecalculateResponse(
        uid=uid,
        aggregates_rebuilt=rebuilt,
        total_global_points=user.total_global_points,
        total_global_achievements=user.total_global_achievements,
    )


@router.post("/{uid}/reconcile", response_model=UserResponse)
async def reconcile_user(
    uid: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Correct drift in the user's denormalized totals."""
    user = await aggregator.reconcile_user_totals(db, uid, actor=actor)
    return UserResponse.model_validate(user)
