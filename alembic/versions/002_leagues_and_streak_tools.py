"""Weekly leagues, streak shield and streak wager.

Adds the leagues and league_members tables and the shield/wager columns on
user_progress.

Revision ID: 002_leagues_and_streak_tools
Revises: 001_gamification_tables
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_leagues_and_streak_tools"
down_revision: str | None = "001_gamification_tables"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Streak shield / wager state ---
    op.execute("""
        ALTER TABLE user_progress
            ADD COLUMN IF NOT EXISTS shield_used_on DATE,
            ADD COLUMN IF NOT EXISTS wager_amount INTEGER NOT NULL DEFAULT 0,
            ADD COLUMN IF NOT EXISTS wager_date DATE
    """)
    op.execute("""
        ALTER TABLE user_progress
            ADD CONSTRAINT ck_user_progress_wager_amount_non_negative CHECK (wager_amount >= 0)
    """)

    # --- Leagues (one group of up to N users per tier and ISO week) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leagues (
            id BIGSERIAL PRIMARY KEY,
            tier VARCHAR(16) NOT NULL,
            week_start DATE NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_leagues_week_tier
        ON leagues(week_start, tier)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS league_members (
            id BIGSERIAL PRIMARY KEY,
            league_id BIGINT NOT NULL REFERENCES leagues(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            week_start DATE NOT NULL,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_league_members_user_week UNIQUE (user_id, week_start)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_league_members_league
        ON league_members(league_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS league_members CASCADE")
    op.execute("DROP TABLE IF EXISTS leagues CASCADE")
    op.execute("""
        ALTER TABLE user_progress
            DROP CONSTRAINT IF EXISTS ck_user_progress_wager_amount_non_negative,
            DROP COLUMN IF EXISTS wager_date,
            DROP COLUMN IF EXISTS wager_amount,
            DROP COLUMN IF EXISTS shield_used_on
    """)
