"""User registration and lookup."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select

from tavern.audit.service import Actor, AuditAction, ResourceType, record_audit
from tavern.db.models import User
from tavern.errors import DuplicateError, ValidationError, persistence_guard

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


@persistence_guard
async def register_user(
    db: AsyncSession,
    uid: str,
    username: str,
    email: str,
    display_name: str | None = None,
) -> User:
    """
    Register a user with zeroed totals.

    Raises:
        ValidationError: If a required field is empty or the email is malformed.
        DuplicateError: If the uid, username or email (case-insensitive) is taken.
    """
    if not uid or not uid.strip():
        raise ValidationError("uid", "must be a non-empty string")
    clean_username = (username or "").strip()
    if not clean_username:
        raise ValidationError("username", "must be a non-empty string")
    clean_email = (email or "").strip()
    if "@" not in clean_email:
        raise ValidationError("email", "must be an email address")

    normalized = clean_username.lower()
    if (await db.execute(select(User.uid).where(User.uid == uid))).scalar_one_or_none():
        raise DuplicateError("user", uid)
    if (await db.execute(select(User.uid).where(User.username_normalized == normalized))).scalar_one_or_none():
        raise DuplicateError("username", clean_username)
    email_taken = await db.execute(
        select(User.uid).where(func.lower(User.email) == clean_email.lower())
    )
    if email_taken.scalar_one_or_none():
        raise DuplicateError("email", clean_email)

    user = User(
        uid=uid,
        username=clean_username,
        username_normalized=normalized,
        email=clean_email,
        display_name=(display_name or "").strip() or clean_username,
        total_global_points=0,
        total_global_achievements=0,
        created_at=datetime.now(timezone.utc),
    )
    db.add(user)
    await db.commit()

    logger.info("user_registered", uid=uid)
    await record_audit(
        db, Actor(user_id=uid, username=clean_username), AuditAction.CREATE_USER, ResourceType.USER, uid,
        new_value={"username": clean_username, "email": clean_email},
    )
    return user


@persistence_guard
async def get_user(db: AsyncSession, uid: str) -> User | None:
    result = await db.execute(
        select(User).where(User.uid == uid).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
