"""Append-only audit log.

Audit records are written after the primary operation has committed, through
a short-lived session of their own. A failing audit write is rolled back and
logged; it never propagates to the caller and never touches the caller's
session.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.db.models import AuditLog
from tavern.errors import persistence_guard

logger = structlog.get_logger()


@dataclass(frozen=True)
class Actor:
    """Opaque authenticated identity used for audit attribution."""

    user_id: str
    username: str


SYSTEM_ACTOR = Actor(user_id="system", username="system")


class AuditAction(str, Enum):
    CREATE_CAMPAIGN = "create_campaign"
    JOIN_CAMPAIGN = "join_campaign"
    CREATE_SESSION = "create_session"
    UPDATE_SESSION = "update_session"
    DELETE_SESSION = "delete_session"
    CREATE_ACHIEVEMENT = "create_achievement"
    ASSIGN_ACHIEVEMENT = "assign_achievement"
    AWARD_ACHIEVEMENT = "award_achievement"
    UPDATE_ACHIEVEMENT = "update_achievement"
    CREATE_USER = "create_user"
    UPDATE_USER_STATS = "update_user_stats"
    UPDATE_LEADERBOARD = "update_leaderboard"
    GENERATE_LEADERBOARD_SNAPSHOT = "generate_leaderboard_snapshot"


class ResourceType(str, Enum):
    CAMPAIGN = "campaign"
    SESSION = "session"
    ACHIEVEMENT = "achievement"
    USER = "user"
    LEADERBOARD = "leaderboard"


async def record_audit(
    db: AsyncSession,
    actor: Actor,
    action: AuditAction,
    resource_type: ResourceType,
    resource_id: str,
    old_value: Any = None,  # noqa: ANN401
    new_value: Any = None,  # noqa: ANN401
    metadata: dict[str, Any] | None = None,
) -> str | None:
    """Append one audit record. Returns its id, or None if the write failed."""
    entry = AuditLog(
        user_id=actor.user_id,
        username=actor.username,
        action=action.value,
        resource_type=resource_type.value,
        resource_id=resource_id,
        old_value=to_jsonable_python(old_value),
        new_value=to_jsonable_python(new_value),
        audit_metadata=to_jsonable_python(metadata),
        timestamp=datetime.now(timezone.utc),
    )
    try:
        async with AsyncSession(db.bind, expire_on_commit=False) as audit_db:
            audit_db.add(entry)
            await audit_db.commit()
    except SQLAlchemyError:
        logger.warning(
            "audit_write_failed",
            action=action.value,
            resource_type=resource_type.value,
            resource_id=resource_id,
            exc_info=True,
        )
        return None
    return entry.id


@persistence_guard
async def get_audit_logs(
    db: AsyncSession,
    user_id: str | None = None,
    action: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int | None = None,
) -> list[AuditLog]:
    """Query audit records, newest first."""
    stmt = select(AuditLog)
    if user_id is not None:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action is not None:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type is not None:
        stmt = stmt.where(AuditLog.resource_type == resource_type)
    if resource_id is not None:
        stmt = stmt.where(AuditLog.resource_id == resource_id)
    if since is not None:
        stmt = stmt.where(AuditLog.timestamp >= since)
    if until is not None:
        stmt = stmt.where(AuditLog.timestamp <= until)
    stmt = stmt.order_by(AuditLog.timestamp.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())
