"""Baseline schema: profiles, study sessions, daily summaries, tasks, leaderboards.

Revision ID: 001_baseline
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_baseline"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Profiles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id UUID PRIMARY KEY,
            username VARCHAR(64),
            avatar_url TEXT,
            xp_total BIGINT NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            weekly_goal_minutes INTEGER NOT NULL DEFAULT 1200,
            show_in_leaderboard BOOLEAN NOT NULL DEFAULT true,
            is_public BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_profiles_xp_non_negative CHECK (xp_total >= 0),
            CONSTRAINT ck_profiles_level_positive CHECK (level >= 1),
            CONSTRAINT ck_profiles_streak_non_negative CHECK (current_streak >= 0),
            CONSTRAINT ck_profiles_longest_streak CHECK (longest_streak >= current_streak)
        )
    """)

    # --- Study sessions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS study_sessions (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            subject_id UUID NOT NULL,
            task_id UUID,
            started_at TIMESTAMPTZ NOT NULL,
            ended_at TIMESTAMPTZ NOT NULL,
            duration_seconds INTEGER NOT NULL,
            notes TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_study_sessions_duration_reasonable
                CHECK (duration_seconds > 0 AND duration_seconds <= 86400)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_study_sessions_user_started
        ON study_sessions(user_id, started_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_study_sessions_task_id
        ON study_sessions(task_id)
    """)

    # --- Daily summaries ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_summaries (
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            date DATE NOT NULL,
            total_seconds BIGINT NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (user_id, date)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_daily_summaries_date_user
        ON daily_summaries(date, user_id)
    """)

    # --- Tasks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            title VARCHAR(255) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'planned',
            planned_minutes INTEGER,
            logged_seconds BIGINT NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Leaderboards ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_snapshots (
            id SERIAL PRIMARY KEY,
            period VARCHAR(8) NOT NULL,
            version VARCHAR(36) NOT NULL,
            user_id UUID NOT NULL,
            rank INTEGER NOT NULL,
            total_seconds BIGINT NOT NULL,
            username VARCHAR(64),
            avatar_url TEXT,
            level INTEGER NOT NULL,
            CONSTRAINT lb_snapshots_period_version_user_key UNIQUE (period, version, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_lb_snapshots_period_version_rank
        ON leaderboard_snapshots(period, version, rank)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_refreshes (
            period VARCHAR(8) PRIMARY KEY,
            active_version VARCHAR(36),
            refreshed_at TIMESTAMPTZ,
            entry_count INTEGER NOT NULL DEFAULT 0,
            last_status VARCHAR(16) NOT NULL DEFAULT 'idle',
            last_error TEXT,
            last_attempt_at TIMESTAMPTZ
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS leaderboard_refreshes CASCADE")
    op.execute("DROP TABLE IF EXISTS leaderboard_snapshots CASCADE")
    op.execute("DROP TABLE IF EXISTS tasks CASCADE")
    op.execute("DROP TABLE IF EXISTS daily_summaries CASCADE")
    op.execute("DROP TABLE IF EXISTS study_sessions CASCADE")
    op.execute("DROP TABLE IF EXISTS profiles CASCADE")
