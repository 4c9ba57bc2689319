"""Gamification engine tables.

Creates users, user_progress, mission_awards, victories, user_achievements
and circle_connections with the idempotency constraints and the indexes used
by ranking aggregation.

Revision ID: 001_gamification_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_gamification_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users (mirrors the identity provider's profile attributes) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            display_name VARCHAR(64),
            country_code VARCHAR(2),
            avatar_id INTEGER,
            is_ranking_private BOOLEAN NOT NULL DEFAULT false,
            is_premium BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_users_country_code
        ON users(country_code)
    """)

    # --- User Progress (denormalized, one row per user) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_progress (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            total_xp BIGINT NOT NULL DEFAULT 0,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_check_in DATE,
            power_tokens INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_user_progress_total_xp_non_negative CHECK (total_xp >= 0),
            CONSTRAINT ck_user_progress_current_streak_non_negative CHECK (current_streak >= 0),
            CONSTRAINT ck_user_progress_longest_streak_covers_current CHECK (longest_streak >= current_streak),
            CONSTRAINT ck_user_progress_power_tokens_non_negative CHECK (power_tokens >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_progress_total_xp
        ON user_progress(total_xp)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_progress_current_streak
        ON user_progress(current_streak)
    """)

    # --- Mission Awards (append-only, one per user/mission/local date) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS mission_awards (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            mission_id VARCHAR(64) NOT NULL,
            category VARCHAR(32) NOT NULL,
            award_date DATE NOT NULL,
            xp_earned INTEGER NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_mission_awards_user_mission_date UNIQUE (user_id, mission_id, award_date)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_mission_awards_award_date
        ON mission_awards(award_date)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_mission_awards_user_date
        ON mission_awards(user_id, award_date)
    """)

    # --- Victories (append-only) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS victories (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            victory_date DATE NOT NULL,
            text TEXT NOT NULL,
            is_public BOOLEAN NOT NULL DEFAULT false,
            xp_bonus INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_victories_victory_date
        ON victories(victory_date)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_victories_user_date
        ON victories(user_id, victory_date)
    """)

    # --- User Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_achievements (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            achievement_id VARCHAR(64) NOT NULL,
            unlocked_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_achievements_user_achievement UNIQUE (user_id, achievement_id)
        )
    """)

    # --- Circle Connections ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS circle_connections (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            connected_user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_circle_connections_pair UNIQUE (user_id, connected_user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_circle_connections_connected
        ON circle_connections(connected_user_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS circle_connections CASCADE")
    op.execute("DROP TABLE IF EXISTS user_achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS victories CASCADE")
    op.execute("DROP TABLE IF EXISTS mission_awards CASCADE")
    op.execute("DROP TABLE IF EXISTS user_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
