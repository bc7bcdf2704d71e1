"""ORM models for polls, votes, streaks, achievements and the credit ledger.

Uniqueness constraints here are the correctness backstop for concurrent
sessions: one vote per (poll, user), one unlock per (user, achievement),
one ledger row per idempotency key.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from habitloop.db.base import Base, BigIntPK

POLL_OPEN = "OPEN"
POLL_RESOLVED = "RESOLVED"
CHOICES = ("YES", "NO")
CATEGORIES = ("stocks", "crypto", "macro", "event")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table. Profile rows are owned by the identity service."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    # Mirrored from the billing/entitlement system; read-only here.
    is_subscriber: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# Predictions
# ---------------------------------------------------------------------------


class Poll(Base):
    """A single yes/no prediction question. Never deleted."""

    __tablename__ = "prediction_polls"
    __table_args__ = (
        CheckConstraint(
            "(status = 'RESOLVED') = (correct_answer IS NOT NULL)",
            name="ck_polls_answer_iff_resolved",
        ),
        Index("idx_polls_status_deadline", "status", "deadline"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    yes_label: Mapped[str] = mapped_column(String(64), nullable=False, default="YES")
    no_label: Mapped[str] = mapped_column(String(64), nullable=False, default="NO")
    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=POLL_OPEN, server_default=POLL_OPEN)
    correct_answer: Mapped[str | None] = mapped_column(String(3), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    base_reward_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=2, server_default="2")
    source: Mapped[str | None] = mapped_column(Text, nullable=True)
    yes_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    no_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    difficulty: Mapped[str | None] = mapped_column(String(8), nullable=True)
    context_hint: Mapped[str | None] = mapped_column(Text, nullable=True)
    related_ticker: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Vote(Base):
    """One user's choice on one poll — UNIQUE(poll_id, user_id), immutable once cast."""

    __tablename__ = "prediction_votes"
    __table_args__ = (
        UniqueConstraint("poll_id", "user_id", name="uq_votes_poll_user"),
        Index("idx_votes_user_cast", "user_id", "cast_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    poll_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("prediction_polls.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    choice: Mapped[str] = mapped_column(String(3), nullable=False)
    cast_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    # NULL until scored by resolution; a non-NULL value marks the vote as paid.
    credits_earned: Mapped[int | None] = mapped_column(Integer, nullable=True)


class UserPredictionStats(Base):
    """Denormalized prediction rollup — single row per user."""

    __tablename__ = "prediction_user_stats"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    total_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    correct_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    best_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_credits_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def accuracy_rate(self) -> float:
        """Percentage of correct votes, 0.0 when the user has not voted."""
        if not self.total_votes:
            return 0.0
        return round(self.correct_votes / self.total_votes * 100, 2)


# ---------------------------------------------------------------------------
# Visit streaks
# ---------------------------------------------------------------------------


class StreakData(Base):
    """Daily visit streak — single row per user."""

    __tablename__ = "streak_data"
    __table_args__ = (
        CheckConstraint("longest_streak >= current_streak", name="ck_streak_longest"),
    )

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_visit_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    # Set when today's check-in hard-reset the streak; cleared by the next day's visit.
    broken_streak: Mapped[int | None] = mapped_column(Integer, nullable=True)
    broken_last_visit: Mapped[date | None] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class StreakFreeze(Base):
    """Streak insurance inventory — single row per user."""

    __tablename__ = "streak_freezes"
    __table_args__ = (
        CheckConstraint("freeze_count >= 0", name="ck_freeze_count_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    freeze_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_used_date: Mapped[date | None] = mapped_column(Date, nullable=True)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class AchievementUnlock(Base):
    """Write-once unlock — UNIQUE(user_id, achievement_id) prevents double payout."""

    __tablename__ = "achievement_unlocks"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_unlocks_user_achievement"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_id: Mapped[str] = mapped_column(String(32), nullable=False)
    unlocked_on: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------


class CreditAccount(Base):
    """Spendable credit balance — single row per user, never negative."""

    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_balance_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lifetime_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lifetime_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CreditTransaction(Base):
    """Immutable credit movement log with idempotency key."""

    __tablename__ = "credit_transactions"
    __table_args__ = (
        Index("idx_credit_tx_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(8), nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
