"""Initial schema: users, achievement catalog, campaigns, sessions,
progress ledger, global aggregates, leaderboard and audit log.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            uid VARCHAR(128) PRIMARY KEY,
            username VARCHAR(64) NOT NULL,
            username_normalized VARCHAR(64) UNIQUE NOT NULL,
            email VARCHAR(320) UNIQUE NOT NULL,
            display_name VARCHAR(128) NOT NULL,
            total_global_points INTEGER NOT NULL DEFAULT 0,
            total_global_achievements INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Achievement Templates ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievement_templates (
            id VARCHAR(36) PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            base_points INTEGER NOT NULL DEFAULT 0,
            upgrades JSONB NOT NULL DEFAULT '[]',
            created_by VARCHAR(128) NOT NULL,
            is_public BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_achievement_templates_created_by
        ON achievement_templates(created_by)
    """)

    # --- Campaigns ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS campaigns (
            id VARCHAR(36) PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            dm_id VARCHAR(128) NOT NULL,
            dm_name VARCHAR(128) NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            assigned_achievements JSONB NOT NULL DEFAULT '[]',
            total_sessions INTEGER NOT NULL DEFAULT 0,
            session_sequence INTEGER NOT NULL DEFAULT 0,
            last_session_date TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_campaigns_dm
        ON campaigns(dm_id)
    """)

    # --- Campaign Players ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS campaign_players (
            id VARCHAR(36) PRIMARY KEY,
            campaign_id VARCHAR(36) NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            user_id VARCHAR(128) NOT NULL,
            character_name VARCHAR(128) NOT NULL,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_campaign_players_campaign_id
        ON campaign_players(campaign_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_campaign_players_user
        ON campaign_players(user_id)
    """)

    # --- Campaign Sessions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS campaign_sessions (
            id VARCHAR(36) PRIMARY KEY,
            campaign_id VARCHAR(36) NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            session_number INTEGER NOT NULL,
            session_date TIMESTAMPTZ NOT NULL,
            dm_id VARCHAR(128) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'scheduled',
            players JSONB NOT NULL DEFAULT '[]',
            assigned_achievements JSONB NOT NULL DEFAULT '[]',
            notes TEXT,
            duration INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_campaign_sessions_campaign_id
        ON campaign_sessions(campaign_id, session_number)
    """)

    # --- Progress Records ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS progress_records (
            id VARCHAR(36) PRIMARY KEY,
            scope VARCHAR(16) NOT NULL,
            player_id VARCHAR(128) NOT NULL,
            achievement_id VARCHAR(36) NOT NULL REFERENCES achievement_templates(id),
            campaign_id VARCHAR(36) NOT NULL,
            session_id VARCHAR(36),
            count INTEGER NOT NULL DEFAULT 0,
            current_level INTEGER NOT NULL DEFAULT 0,
            assigned_by VARCHAR(128),
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            last_updated TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CHECK (count >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_progress_records_key
        ON progress_records(scope, player_id, achievement_id, campaign_id, session_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_progress_records_player_id
        ON progress_records(player_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_progress_records_campaign_id
        ON progress_records(campaign_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_progress_records_session_id
        ON progress_records(session_id)
    """)

    # --- User Global Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_global_achievements (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL,
            achievement_id VARCHAR(36) NOT NULL REFERENCES achievement_templates(id),
            total_count INTEGER NOT NULL DEFAULT 0,
            total_points INTEGER NOT NULL DEFAULT 0,
            current_level INTEGER NOT NULL DEFAULT 0,
            first_earned_at TIMESTAMPTZ NOT NULL,
            last_earned_at TIMESTAMPTZ NOT NULL,
            campaigns_earned_in JSONB NOT NULL DEFAULT '[]',
            sessions_earned_in JSONB NOT NULL DEFAULT '[]',
            last_session_earned_in VARCHAR(36),
            CONSTRAINT user_global_achievements_user_achievement_key UNIQUE (user_id, achievement_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_global_achievements_user_id
        ON user_global_achievements(user_id)
    """)

    # --- Leaderboard Entries ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_entries (
            id VARCHAR(36) PRIMARY KEY,
            period VARCHAR(16) NOT NULL,
            user_id VARCHAR(128) NOT NULL,
            username VARCHAR(64) NOT NULL,
            display_name VARCHAR(128) NOT NULL,
            total_points INTEGER NOT NULL DEFAULT 0,
            total_achievements INTEGER NOT NULL DEFAULT 0,
            unique_achievements INTEGER NOT NULL DEFAULT 0,
            last_updated TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT leaderboard_entries_period_user_key UNIQUE (period, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_leaderboard_entries_ranking
        ON leaderboard_entries(period, total_points DESC, unique_achievements DESC, user_id)
    """)

    # --- Leaderboard Snapshots ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_snapshots (
            id VARCHAR(36) PRIMARY KEY,
            period VARCHAR(16) NOT NULL,
            taken_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            entry_count INTEGER NOT NULL,
            entries JSONB NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_leaderboard_snapshots_period
        ON leaderboard_snapshots(period, taken_at DESC)
    """)

    # --- Audit Logs ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS audit_logs (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL,
            username VARCHAR(128) NOT NULL,
            action VARCHAR(64) NOT NULL,
            resource_type VARCHAR(32) NOT NULL,
            resource_id VARCHAR(128) NOT NULL,
            old_value JSONB,
            new_value JSONB,
            metadata JSONB,
            timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_audit_logs_user_id
        ON audit_logs(user_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_audit_logs_action
        ON audit_logs(action)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_audit_logs_timestamp
        ON audit_logs(timestamp DESC)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS audit_logs CASCADE")
    op.execute("DROP TABLE IF EXISTS leaderboard_snapshots CASCADE")
    op.execute("DROP TABLE IF EXISTS leaderboard_entries CASCADE")
    op.execute("DROP TABLE IF EXISTS user_global_achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS progress_records CASCADE")
    op.execute("DROP TABLE IF EXISTS campaign_sessions CASCADE")
    op.execute("DROP TABLE IF EXISTS campaign_players CASCADE")
    op.execute("DROP TABLE IF EXISTS campaigns CASCADE")
    op.execute("DROP TABLE IF EXISTS achievement_templates CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
