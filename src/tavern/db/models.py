"""ORM models for the Tavern Tally schema.

Entities reference each other by id only. Rollups (user aggregates,
leaderboard entries, user totals) are recomputed from their inputs by the
service layer rather than maintained through relationships.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tavern.db.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Registered user with denormalized global totals."""

    __tablename__ = "users"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    username_normalized: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    total_global_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_global_achievements: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Achievement catalog
# ---------------------------------------------------------------------------


class AchievementTemplate(Base):
    """Global achievement definition with a base tier and ordered upgrades.

    ``upgrades`` holds dicts ``{id, name, description, required_count, points}``
    sorted by strictly increasing ``required_count``.
    """

    __tablename__ = "achievement_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    base_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    upgrades: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Campaigns & sessions
# ---------------------------------------------------------------------------


class Campaign(Base):
    """DM-owned container of players and sessions."""

    __tablename__ = "campaigns"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    dm_id: Mapped[str] = mapped_column(String(128), nullable=False)
    dm_name: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    assigned_achievements: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    # Live session count: decremented when a session is deleted
    total_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    # Numbering sequence: only ever incremented, so session numbers are never reused
    session_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_session_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    players: Mapped[list[CampaignPlayer]] = relationship(
        "CampaignPlayer",
        back_populates="campaign",
        lazy="selectin",
        order_by="CampaignPlayer.joined_at",
    )


class CampaignPlayer(Base):
    """A player's character in a campaign. Not unique per user_id."""

    __tablename__ = "campaign_players"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    campaign_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    character_name: Mapped[str] = mapped_column(String(128), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    campaign: Mapped[Campaign] = relationship("Campaign", back_populates="players")


class CampaignSession(Base):
    """One play session inside a campaign.

    ``players`` is the attendance roster: dicts ``{user_id, character_name, attended, joined_at}``.
    """

    __tablename__ = "campaign_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    campaign_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_number: Mapped[int] = mapped_column(Integer, nullable=False)
    session_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dm_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="scheduled", server_default="scheduled")
    players: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    assigned_achievements: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Progress ledger
# ---------------------------------------------------------------------------


class ProgressRecord(Base):
    """Per-(player, achievement, scope) counter.

    Campaign-scoped rows are keyed by (player_id, achievement_id, campaign_id).
    Session-scoped rows are keyed by (player_id, achievement_id, session_id) and
    stamped with the owning campaign_id. Session awards may repeat a key.
    """

    __tablename__ = "progress_records"
    __table_args__ = (
        Index("ix_progress_records_key", "scope", "player_id", "achievement_id", "campaign_id", "session_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)
    player_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    achievement_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("achievement_templates.id"), nullable=False
    )
    campaign_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    session_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    assigned_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class UserGlobalAchievement(Base):
    """Per-(user, achievement) rollup of session-scoped progress records."""

    __tablename__ = "user_global_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="user_global_achievements_user_achievement_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    achievement_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("achievement_templates.id"), nullable=False
    )
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    first_earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    campaigns_earned_in: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    sessions_earned_in: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    last_session_earned_in: Mapped[str | None] = mapped_column(String(36), nullable=True)


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------


class LeaderboardEntry(Base):
    """Live per-(period, user) leaderboard row. Rank is computed on read."""

    __tablename__ = "leaderboard_entries"
    __table_args__ = (
        UniqueConstraint("period", "user_id", name="leaderboard_entries_period_user_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    period: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_achievements: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    unique_achievements: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class LeaderboardSnapshot(Base):
    """Immutable frozen copy of a ranked leaderboard page."""

    __tablename__ = "leaderboard_snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    period: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    taken_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    entry_count: Mapped[int] = mapped_column(Integer, nullable=False)
    entries: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditLog(Base):
    """Append-only record of a mutating action."""

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(128), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(32), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(128), nullable=False)
    old_value: Mapped[Any | None] = mapped_column(JSONType, nullable=True)
    new_value: Mapped[Any | None] = mapped_column(JSONType, nullable=True)
    audit_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
