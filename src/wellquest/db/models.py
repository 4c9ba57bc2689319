"""ORM models for the gamification engine.

Awards, victories and achievements are append-only audit rows. The
``user_progress`` row is the single denormalized summary per user and the
only row the engine ever updates.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
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
    false,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wellquest.db.base import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONDoc = JSON().with_variant(JSONB, "postgresql")


# ---------------------------------------------------------------------------
# Users (owned by the identity provider, read-only for the engine)
# ---------------------------------------------------------------------------


class User(Base):
    """Profile attributes the engine reads for ranking output and scoping."""

    __tablename__ = "users"
    __table_args__ = (Index("ix_users_country_code", "country_code"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    avatar_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_ranking_private: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    progress: Mapped[UserProgress | None] = relationship("UserProgress", back_populates="user", uselist=False)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class UserProgress(Base):
    """Denormalized gamification summary, one row per user."""

    __tablename__ = "user_progress"
    __table_args__ = (
        CheckConstraint("total_xp >= 0", name="total_xp_non_negative"),
        CheckConstraint("current_streak >= 0", name="current_streak_non_negative"),
        CheckConstraint("longest_streak >= current_streak", name="longest_streak_covers_current"),
        CheckConstraint("power_tokens >= 0", name="power_tokens_non_negative"),
        CheckConstraint("wager_amount >= 0", name="wager_amount_non_negative"),
        Index("ix_user_progress_total_xp", "total_xp"),
        Index("ix_user_progress_current_streak", "current_streak"),
    )

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_check_in: Mapped[date | None] = mapped_column(Date, nullable=True)
    power_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    # Local date the weekly streak shield was last spent on.
    shield_used_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    # Open wager: tokens staked on checking in on wager_date. 0 = none.
    wager_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    wager_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user: Mapped[User] = relationship("User", back_populates="progress")


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class MissionAward(Base):
    """Immutable mission completion record. One per (user, mission, local date)."""

    __tablename__ = "mission_awards"
    __table_args__ = (
        UniqueConstraint("user_id", "mission_id", "award_date", name="uq_mission_awards_user_mission_date"),
        Index("ix_mission_awards_award_date", "award_date"),
        Index("ix_mission_awards_user_date", "user_id", "award_date"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    mission_id: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    award_date: Mapped[date] = mapped_column(Date, nullable=False)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    award_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONDoc, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Victory(Base):
    """A recorded win. Append-only; feeds the victories metric and XP total."""

    __tablename__ = "victories"
    __table_args__ = (
        Index("ix_victories_victory_date", "victory_date"),
        Index("ix_victories_user_date", "user_id", "victory_date"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    victory_date: Mapped[date] = mapped_column(Date, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    xp_bonus: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UserAchievement(Base):
    """Unlocked achievement. One per (user, achievement)."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_id: Mapped[str] = mapped_column(String(64), nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# ---------------------------------------------------------------------------
# Weekly leagues
# ---------------------------------------------------------------------------


class League(Base):
    """A weekly group of users from the same tier."""

    __tablename__ = "leagues"
    __table_args__ = (Index("ix_leagues_week_tier", "week_start", "tier"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class LeagueMember(Base):
    """League membership. A user joins at most one league per week."""

    __tablename__ = "league_members"
    __table_args__ = (
        UniqueConstraint("user_id", "week_start", name="uq_league_members_user_week"),
        Index("ix_league_members_league", "league_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    league_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("leagues.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# ---------------------------------------------------------------------------
# Social
# ---------------------------------------------------------------------------


class CircleConnection(Base):
    """Directed connection request; accepted rows define the circle scope."""

    __tablename__ = "circle_connections"
    __table_args__ = (
        UniqueConstraint("user_id", "connected_user_id", name="uq_circle_connections_pair"),
        Index("ix_circle_connections_connected", "connected_user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    connected_user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
