"""Shared test fixtures."""

from __future__ import annotations

import os

# Settings are read once per process; point them at an in-memory database first
os.environ["TAVERN_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["TAVERN_JWT_SECRET"] = "test-secret-that-is-at-least-32-bytes-long"
os.environ["TAVERN_ADMIN_USER_IDS"] = '["admin-uid"]'
os.environ["TAVERN_LOG_FORMAT"] = "console"

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.achievements.catalog import create_template
from tavern.audit.service import Actor
from tavern.auth.jwt import create_access_token
from tavern.campaigns.service import create_campaign
from tavern.campaigns.session_service import create_session
from tavern.config import get_settings
from tavern.database import close_db, get_engine, get_session, init_db
from tavern.db.base import Base
from tavern.db.models import AchievementTemplate, AuditLog, Campaign, CampaignSession, User
from tavern.main import create_app
from tavern.users.service import register_user

get_settings.cache_clear()

DM = Actor(user_id="dm-uid", username="dungeon_master")
ADMIN = Actor(user_id="admin-uid", username="admin")

THREE_TIER_UPGRADES: list[dict[str, Any]] = [
    {"name": "Veteran", "description": "Seen some things", "required_count": 5, "points": 20},
    {"name": "Hero", "description": "Songs are sung", "required_count": 10, "points": 30},
]


async def _create_schema() -> None:
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def _drop_schema() -> None:
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def drop_audit_table() -> None:
    """Remove the audit table so every later audit write fails."""
    async with get_engine().begin() as conn:
        await conn.run_sync(AuditLog.__table__.drop)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Direct database session on a fresh schema."""
    await init_db(get_settings().database_url)
    await _create_schema()
    sessions = get_session()
    session = await anext(sessions)
    yield session
    await sessions.aclose()
    await _drop_schema()
    await close_db()


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client on a fresh schema. Redis is left uninitialized."""
    app = create_app()
    await init_db(get_settings().database_url)
    await _create_schema()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await _drop_schema()
    await close_db()


def auth_headers(user_id: str, username: str | None = None) -> dict[str, str]:
    token = create_access_token(user_id, username or user_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def dm_headers() -> dict[str, str]:
    return auth_headers(DM.user_id, DM.username)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth_headers(ADMIN.user_id, ADMIN.username)


# --- Service-level factories ---


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    async def _make(uid: str, username: str | None = None) -> User:
        name = username or uid
        return await register_user(db_session, uid, name, f"{name}@example.com")

    return _make


@pytest.fixture
def make_template(db_session: AsyncSession) -> Callable[..., Awaitable[AchievementTemplate]]:
    async def _make(
        name: str = "Dragon Slayer",
        base_points: int = 10,
        upgrades: list[dict[str, Any]] | None = None,
        is_public: bool = True,
        actor: Actor = DM,
    ) -> AchievementTemplate:
        return await create_template(
            db_session,
            actor,
            name=name,
            description=f"{name} description",
            base_points=base_points,
            upgrades=[dict(u) for u in (THREE_TIER_UPGRADES if upgrades is None else upgrades)],
            is_public=is_public,
        )

    return _make


@pytest.fixture
def make_campaign(db_session: AsyncSession) -> Callable[..., Awaitable[Campaign]]:
    async def _make(name: str = "Curse of Strahd", actor: Actor = DM) -> Campaign:
        return await create_campaign(db_session, actor, name, f"{name} campaign")

    return _make


@pytest.fixture
def make_session(db_session: AsyncSession) -> Callable[..., Awaitable[CampaignSession]]:
    async def _make(campaign_id: str, actor: Actor = DM) -> CampaignSession:
        return await create_session(db_session, actor, campaign_id, datetime.now(timezone.utc))

    return _make
