"""Audit log endpoints (administrators only)."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.audit.schemas import AuditLogListResponse, AuditLogResponse
from tavern.audit.service import Actor, get_audit_logs
from tavern.auth.dependencies import require_admin
from tavern.dependencies import get_db

router = APIRouter(prefix="/api/v1", tags=["Audit"])


@router.get("/audit", response_model=AuditLogListResponse)
async def list_audit_logs(
    user_id: str | None = Query(None),
    action: str | None = Query(None),
    resource_type: str | None = Query(None),
    resource_id: str | None = Query(None),
    since: datetime | None = Query(None),
    until: datetime | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    _admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Audit records matching every given filter, newest first."""
    entries = await get_audit_logs(
        db,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        since=since,
        until=until,
        limit=limit,
    )
    return AuditLogListResponse(
        entries=[AuditLogResponse.model_validate(e) for e in entries],
        total=len(entries),
    )
