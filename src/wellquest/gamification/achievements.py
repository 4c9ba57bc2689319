"""Threshold achievements unlocked by mission counts and streak length.

Each unlock is idempotent per (user, achievement) and pays out power tokens.
Evaluation runs inside the caller's transaction and never commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wellquest.db.models import MissionAward, UserAchievement, UserProgress
from wellquest.db.upsert import insert_ignoring_conflict

logger = logging.getLogger(__name__)

STREAK_REQUIREMENT = "streak"


@dataclass(frozen=True)
class Achievement:
    id: str
    label: str
    requirement: str  # mission category, or "streak"
    count: int
    is_premium: bool = False


ACHIEVEMENTS: list[Achievement] = [
    Achievement("detector", "Detector", "hero", 10),
    Achievement("calm_pressure", "Calm under pressure", "calm", 10),
    Achievement("limit_said", "Boundary spoken", "scripts", 5),
    Achievement("real_selfcare", "Real self-care", "selfcare", 7),
    Achievement("circle_active", "Circle activated", "support", 3),
    Achievement("sos_mode", "SOS mode", "sos_card", 10, is_premium=True),
    Achievement("strategist_badge", "Strategist", "risk_map", 5, is_premium=True),
    Achievement("week_streak", "Weekly consistency", STREAK_REQUIREMENT, 7),
    Achievement("month_warrior", "Warrior of the month", STREAK_REQUIREMENT, 30),
]


async def get_unlocked_achievements(db: AsyncSession, user_id: int) -> list[str]:
    result = await db.execute(
        select(UserAchievement.achievement_id)
        .where(UserAchievement.user_id == user_id)
        .order_by(UserAchievement.id)
    )
    return list(result.scalars())


async def _category_counts(db: AsyncSession, user_id: int) -> dict[str, int]:
    result = await db.execute(
        select(MissionAward.category, func.count(MissionAward.id))
        .where(MissionAward.user_id == user_id)
        .group_by(MissionAward.category)
    )
    return {category: count for category, count in result.all()}


async def evaluate_achievements(
    db: AsyncSession,
    user_id: int,
    streak: int,
    token_reward: int = 1,
) -> list[str]:
    """Unlock every achievement whose threshold is met. Returns newly unlocked ids."""
    unlocked = set(await get_unlocked_achievements(db, user_id))
    pending = [a for a in ACHIEVEMENTS if a.id not in unlocked]
    if not pending:
        return []

    counts: dict[str, int] = {}
    if any(a.requirement != STREAK_REQUIREMENT for a in pending):
        counts = await _category_counts(db, user_id)

    newly_unlocked: list[str] = []
    for achievement in pending:
        if achievement.requirement == STREAK_REQUIREMENT:
            reached = streak >= achievement.count
        else:
            reached = counts.get(achievement.requirement, 0) >= achievement.count
        if not reached:
            continue

        stmt = insert_ignoring_conflict(
            db,
            UserAchievement,
            {"user_id": user_id, "achievement_id": achievement.id},
            ["user_id", "achievement_id"],
        ).returning(UserAchievement.id)
        inserted = (await db.execute(stmt)).scalar_one_or_none()
        if inserted is not None:
            newly_unlocked.append(achievement.id)

    if newly_unlocked and token_reward > 0:
        await db.execute(
            update(UserProgress)
            .where(UserProgress.user_id == user_id)
            .values(
                power_tokens=UserProgress.power_tokens + token_reward * len(newly_unlocked),
                updated_at=datetime.now(timezone.utc),
            )
        )
        logger.info("User %s unlocked achievements: %s", user_id, ", ".join(newly_unlocked))

    return newly_unlocked
