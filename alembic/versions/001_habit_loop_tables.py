"""Habit loop tables.

Creates users, prediction polls/votes/stats, visit streaks and freezes,
achievement unlocks, and the credit ledger.

Revision ID: 001_habit_loop_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_habit_loop_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users (mirrored from the identity service) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            display_name VARCHAR(64),
            email VARCHAR(320) UNIQUE,
            is_subscriber BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Prediction Polls ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS prediction_polls (
            id BIGSERIAL PRIMARY KEY,
            question TEXT NOT NULL,
            description TEXT,
            category VARCHAR(16) NOT NULL,
            yes_label VARCHAR(64) NOT NULL DEFAULT 'YES',
            no_label VARCHAR(64) NOT NULL DEFAULT 'NO',
            deadline TIMESTAMPTZ NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'OPEN',
            correct_answer VARCHAR(3),
            resolved_at TIMESTAMPTZ,
            base_reward_credits INTEGER NOT NULL DEFAULT 2,
            source TEXT,
            yes_count INTEGER NOT NULL DEFAULT 0,
            no_count INTEGER NOT NULL DEFAULT 0,
            difficulty VARCHAR(8),
            context_hint TEXT,
            related_ticker VARCHAR(32),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_polls_answer_iff_resolved
                CHECK ((status = 'RESOLVED') = (correct_answer IS NOT NULL))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_polls_status_deadline
        ON prediction_polls(status, deadline)
    """)

    # --- Votes ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS prediction_votes (
            id BIGSERIAL PRIMARY KEY,
            poll_id BIGINT NOT NULL REFERENCES prediction_polls(id),
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            choice VARCHAR(3) NOT NULL,
            cast_at TIMESTAMPTZ NOT NULL,
            is_correct BOOLEAN,
            credits_earned INTEGER,
            CONSTRAINT uq_votes_poll_user UNIQUE (poll_id, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_votes_user_cast
        ON prediction_votes(user_id, cast_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_votes_unscored
        ON prediction_votes(poll_id)
        WHERE credits_earned IS NULL
    """)

    # --- Prediction Stats ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS prediction_user_stats (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            total_votes INTEGER NOT NULL DEFAULT 0,
            correct_votes INTEGER NOT NULL DEFAULT 0,
            current_streak INTEGER NOT NULL DEFAULT 0,
            best_streak INTEGER NOT NULL DEFAULT 0,
            total_credits_earned INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Visit Streaks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS streak_data (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            current_streak INTEGER NOT NULL DEFAULT 0,
            last_visit_date DATE,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            broken_streak INTEGER,
            broken_last_visit DATE,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_streak_longest CHECK (longest_streak >= current_streak)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS streak_freezes (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            freeze_count INTEGER NOT NULL DEFAULT 0,
            last_used_date DATE,
            CONSTRAINT ck_freeze_count_non_negative CHECK (freeze_count >= 0)
        )
    """)

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievement_unlocks (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            achievement_id VARCHAR(32) NOT NULL,
            unlocked_on DATE NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_unlocks_user_achievement UNIQUE (user_id, achievement_id)
        )
    """)

    # --- Credit Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS credit_accounts (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            balance INTEGER NOT NULL DEFAULT 0,
            lifetime_earned INTEGER NOT NULL DEFAULT 0,
            lifetime_spent INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_credit_balance_non_negative CHECK (balance >= 0)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS credit_transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            kind VARCHAR(8) NOT NULL,
            reason VARCHAR(64) NOT NULL,
            reference VARCHAR(128),
            idempotency_key VARCHAR(256) UNIQUE,
            balance_after INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_credit_tx_user_created
        ON credit_transactions(user_id, created_at DESC)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS credit_transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS credit_accounts CASCADE")
    op.execute("DROP TABLE IF EXISTS achievement_unlocks CASCADE")
    op.execute("DROP TABLE IF EXISTS streak_freezes CASCADE")
    op.execute("DROP TABLE IF EXISTS streak_data CASCADE")
    op.execute("DROP TABLE IF EXISTS prediction_user_stats CASCADE")
    op.execute("DROP TABLE IF EXISTS prediction_votes CASCADE")
    op.execute("DROP TABLE IF EXISTS prediction_polls CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
