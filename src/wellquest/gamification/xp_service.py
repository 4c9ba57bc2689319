"""XP ledger: idempotent mission awards, perfect-day bonus and victories."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from wellquest.db.models import MissionAward, UserProgress, Victory
from wellquest.db.upsert import insert_ignoring_conflict
from wellquest.errors import PersistenceFailure
from wellquest.gamification.achievements import evaluate_achievements
from wellquest.gamification.catalog import (
    PERFECT_DAY_CATEGORY,
    PERFECT_DAY_MISSION_ID,
    MissionCatalog,
)
from wellquest.gamification.events import (
    AchievementUnlocked,
    EngineEvent,
    EventChannel,
    XPAwarded,
    publish_all,
)
from wellquest.gamification.level_resolver import level_for_xp
from wellquest.gamification.metadata import (
    CompletionMetadata,
    dump_completion_metadata,
    parse_completion_metadata,
)
from wellquest.gamification.progress import get_or_create_progress
from wellquest.gamification.streak_service import effective_streak

logger = logging.getLogger(__name__)

DEFAULT_PERFECT_DAY_BONUS = 15
DEFAULT_VICTORY_BONUS = 10

# (minimum streak, multiplier in percent), highest first.
STREAK_MULTIPLIERS: list[tuple[int, int]] = [
    (21, 130),
    (7, 120),
    (3, 110),
    (0, 100),
]


@dataclass(frozen=True)
class AwardResult:
    success: bool
    xp_earned: int
    total_xp: int
    level: int
    reason: str | None = None
    leveled_up: bool = False
    perfect_day_bonus: int = 0
    achievements_unlocked: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class VictoryResult:
    victory_id: int
    xp_earned: int
    total_xp: int
    level: int
    leveled_up: bool = False


def streak_multiplier_percent(streak: int) -> int:
    """Multiplier for a streak length, in percent (110 == x1.10)."""
    for min_streak, percent in STREAK_MULTIPLIERS:
        if streak >= min_streak:
            return percent
    return 100


def calculate_xp(base_xp: int, streak: int) -> int:
    """floor(base_xp * multiplier), in integer arithmetic."""
    return base_xp * streak_multiplier_percent(streak) // 100


async def _increment_total_xp(db: AsyncSession, user_id: int, amount: int) -> int:
    """Atomically add ``amount`` to the user's total. Returns the new total."""
    result = await db.execute(
        update(UserProgress)
        .where(UserProgress.user_id == user_id)
        .values(
            total_xp=UserProgress.total_xp + amount,
            updated_at=datetime.now(timezone.utc),
        )
        .returning(UserProgress.total_xp)
    )
    return int(result.scalar_one())


async def _insert_award(
    db: AsyncSession,
    user_id: int,
    mission_id: str,
    category: str,
    award_date: date,
    xp: int,
    metadata: dict,
) -> int | None:
    """Insert an award row. Returns its id, or None if one already exists for that day."""
    stmt = insert_ignoring_conflict(
        db,
        MissionAward,
        {
            "user_id": user_id,
            "mission_id": mission_id,
            "category": category,
            "award_date": award_date,
            "xp_earned": xp,
            "award_metadata": metadata,
        },
        ["user_id", "mission_id", "award_date"],
    ).returning(MissionAward.id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def _award_perfect_day(
    db: AsyncSession,
    catalog: MissionCatalog,
    user_id: int,
    award_date: date,
    bonus_xp: int,
) -> int:
    """Grant the perfect-day bonus once the day's required set is complete. Returns XP granted."""
    required = {m.id for m in catalog.required_missions(award_date)}
    if not required:
        return 0

    result = await db.execute(
        select(MissionAward.mission_id).where(
            MissionAward.user_id == user_id,
            MissionAward.award_date == award_date,
            MissionAward.mission_id.in_(required),
        )
    )
    completed = set(result.scalars())
    if completed != required:
        return 0

    award_id = await _insert_award(
        db, user_id, PERFECT_DAY_MISSION_ID, PERFECT_DAY_CATEGORY, award_date,
        bonus_xp, {"missions": sorted(required)},
    )
    if award_id is None:
        return 0
    await _increment_total_xp(db, user_id, bonus_xp)
    logger.info("User %s completed a perfect day on %s (+%d XP)", user_id, award_date, bonus_xp)
    return bonus_xp


async def award_mission(
    db: AsyncSession,
    user_id: int,
    mission_id: str,
    base_xp: int,
    local_date: date,
    metadata: CompletionMetadata | None = None,
    *,
    category: str | None = None,
    catalog: MissionCatalog | None = None,
    channel: EventChannel | None = None,
    perfect_day_bonus: int = DEFAULT_PERFECT_DAY_BONUS,
    token_reward: int = 1,
) -> AwardResult:
    """Award a mission completion once per (user, mission, local date).

    A repeat for the same day returns ``success=False, reason="duplicate"``
    and grants nothing. The award row, the XP increment, an eventual
    perfect-day bonus (only when ``catalog`` is given) and achievement
    unlocks are committed together or not at all. The progress row stays
    locked for the whole transaction, so awards for one user apply one at
    a time and the perfect-day check sees every earlier award of the day.
    """
    if base_xp <= 0:
        raise ValueError(f"base_xp must be positive, got {base_xp}")
    if mission_id == PERFECT_DAY_MISSION_ID:
        raise ValueError(f"'{PERFECT_DAY_MISSION_ID}' cannot be awarded directly")

    category = category or (metadata.category if metadata is not None else mission_id)
    stored_metadata = dump_completion_metadata(metadata) if metadata is not None else {}

    try:
        progress = await get_or_create_progress(db, user_id, for_update=True)
        streak = effective_streak(
            progress.current_streak, progress.last_check_in, local_date, progress.shield_used_on,
        )
        xp = calculate_xp(base_xp, streak)

        award_id = await _insert_award(db, user_id, mission_id, category, local_date, xp, stored_metadata)
        if award_id is None:
            total_xp = progress.total_xp
            await db.commit()
            logger.info("Duplicate award ignored: user=%s mission=%s date=%s", user_id, mission_id, local_date)
            return AwardResult(
                success=False,
                xp_earned=0,
                total_xp=total_xp,
                level=level_for_xp(total_xp),
                reason="duplicate",
            )

        total_xp = await _increment_total_xp(db, user_id, xp)

        bonus = 0
        if catalog is not None and perfect_day_bonus > 0:
            bonus = await _award_perfect_day(db, catalog, user_id, local_date, perfect_day_bonus)
            total_xp += bonus

        unlocked = await evaluate_achievements(db, user_id, streak, token_reward)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.error("Award of %s to user %s violated a constraint", mission_id, user_id, exc_info=True)
        raise PersistenceFailure("award_mission", user_id, retryable=False) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Award of %s to user %s on %s failed", mission_id, user_id, local_date, exc_info=True)
        raise PersistenceFailure("award_mission", user_id) from exc

    old_level = level_for_xp(total_xp - xp - bonus)
    new_level = level_for_xp(total_xp)
    logger.info(
        "Awarded %d XP to user %s for %s (streak %d, base %d). Total: %d",
        xp, user_id, mission_id, streak, base_xp, total_xp,
    )

    mission_total = total_xp - bonus
    mission_level = level_for_xp(mission_total)
    events: list[EngineEvent] = [
        XPAwarded(user_id, "mission", mission_id, xp, mission_total, mission_level,
                  mission_level > old_level, local_date),
    ]
    if bonus:
        events.append(
            XPAwarded(user_id, "perfect_day", PERFECT_DAY_MISSION_ID, bonus, total_xp, new_level,
                      new_level > mission_level, local_date)
        )
    events.extend(AchievementUnlocked(user_id, a, token_reward) for a in unlocked)
    await publish_all(channel, events)

    return AwardResult(
        success=True,
        xp_earned=xp,
        total_xp=total_xp,
        level=new_level,
        leveled_up=new_level > old_level,
        perfect_day_bonus=bonus,
        achievements_unlocked=tuple(unlocked),
    )


async def complete_catalog_mission(
    db: AsyncSession,
    catalog: MissionCatalog,
    user_id: int,
    mission_id: str,
    local_date: date,
    raw_metadata: dict | None = None,
    *,
    channel: EventChannel | None = None,
    perfect_day_bonus: int = DEFAULT_PERFECT_DAY_BONUS,
    token_reward: int = 1,
) -> AwardResult:
    """Award a catalog mission. Raises KeyError for unknown mission ids."""
    mission = catalog.get(mission_id)
    metadata = parse_completion_metadata(mission.category, raw_metadata)
    return await award_mission(
        db,
        user_id,
        mission.id,
        mission.base_xp,
        local_date,
        metadata,
        category=mission.category,
        catalog=catalog,
        channel=channel,
        perfect_day_bonus=perfect_day_bonus,
        token_reward=token_reward,
    )


async def record_victory(
    db: AsyncSession,
    user_id: int,
    text: str,
    local_date: date,
    *,
    is_public: bool = False,
    bonus_xp: int = DEFAULT_VICTORY_BONUS,
    channel: EventChannel | None = None,
) -> VictoryResult:
    """Append a victory and grant its flat XP bonus. No daily limit."""
    text = text.strip()
    if not text:
        raise ValueError("Victory text must not be empty")
    if bonus_xp < 0:
        raise ValueError(f"bonus_xp must be non-negative, got {bonus_xp}")

    try:
        await get_or_create_progress(db, user_id, for_update=True)
        victory = Victory(
            user_id=user_id,
            victory_date=local_date,
            text=text,
            is_public=is_public,
            xp_bonus=bonus_xp,
        )
        db.add(victory)
        await db.flush()
        total_xp = await _increment_total_xp(db, user_id, bonus_xp)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.error("Recording victory for user %s violated a constraint", user_id, exc_info=True)
        raise PersistenceFailure("record_victory", user_id, retryable=False) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Recording victory for user %s failed", user_id, exc_info=True)
        raise PersistenceFailure("record_victory", user_id) from exc

    old_level = level_for_xp(total_xp - bonus_xp)
    new_level = level_for_xp(total_xp)
    await publish_all(
        channel,
        [XPAwarded(user_id, "victory", str(victory.id), bonus_xp, total_xp, new_level,
                   new_level > old_level, local_date)],
    )
    return VictoryResult(
        victory_id=victory.id,
        xp_earned=bonus_xp,
        total_xp=total_xp,
        level=new_level,
        leveled_up=new_level > old_level,
    )
