"""Daily streak tracking driven by one check-in per local calendar day.

The transition rules live in ``next_streak_state`` (pure); ``check_in``
applies them to the stored progress row inside a single locked transaction.
Premium users may spend one streak shield per ISO week to cover a day they
will miss; the next check-in then continues the streak across that day.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from wellquest.db.models import User
from wellquest.errors import PersistenceFailure
from wellquest.gamification.achievements import evaluate_achievements
from wellquest.gamification.events import (
    AchievementUnlocked,
    EngineEvent,
    EventChannel,
    StreakUpdated,
    publish_all,
)
from wellquest.gamification.progress import get_or_create_progress
from wellquest.gamification.wager_service import DEFAULT_WIN_PERCENT, settle_open_wager

logger = logging.getLogger(__name__)


class CheckInStatus(str, Enum):
    STARTED = "started"
    CONTINUED = "continued"
    SHIELDED = "shielded"
    RESET = "reset"
    ALREADY_CHECKED_IN = "already_checked_in"
    OUT_OF_ORDER = "out_of_order"


# Statuses that change stored state.
ACCEPTED_STATUSES = frozenset(
    {CheckInStatus.STARTED, CheckInStatus.CONTINUED, CheckInStatus.SHIELDED, CheckInStatus.RESET}
)


class ShieldStatus(str, Enum):
    ACTIVATED = "activated"
    NOT_PREMIUM = "not_premium"
    ALREADY_USED = "already_used"
    NOT_NEEDED = "not_needed"
    NO_STREAK = "no_streak"


@dataclass(frozen=True)
class StreakState:
    current_streak: int
    longest_streak: int
    last_check_in: date | None
    shield_date: date | None = None


@dataclass(frozen=True)
class CheckInResult:
    status: CheckInStatus
    current_streak: int
    longest_streak: int
    last_check_in: date | None
    achievements_unlocked: tuple[str, ...] = ()
    wager_won: bool | None = None
    wager_tokens_delta: int = 0

    @property
    def accepted(self) -> bool:
        return self.status in ACCEPTED_STATUSES


@dataclass(frozen=True)
class ShieldResult:
    status: ShieldStatus
    shield_used_on: date | None
    available_this_week: bool

    @property
    def activated(self) -> bool:
        return self.status is ShieldStatus.ACTIVATED


def _shield_bridges(shield_date: date | None, last_check_in: date) -> bool:
    return shield_date is not None and shield_date == last_check_in + timedelta(days=1)


def shield_available(shield_used_on: date | None, as_of: date) -> bool:
    """True if no shield was spent in the ISO week containing ``as_of``."""
    week_start = as_of - timedelta(days=as_of.weekday())
    return shield_used_on is None or shield_used_on < week_start


def next_streak_state(state: StreakState, today: date) -> tuple[CheckInStatus, StreakState]:
    """Apply one check-in dated ``today`` to ``state``.

    Same-day repeats and dates before the last check-in leave the state
    untouched. A one-day gap covered by the shield continues the streak.
    """
    if state.last_check_in is None:
        status, current = CheckInStatus.STARTED, 1
    else:
        diff_days = (today - state.last_check_in).days
        if diff_days < 0:
            return CheckInStatus.OUT_OF_ORDER, state
        if diff_days == 0:
            return CheckInStatus.ALREADY_CHECKED_IN, state
        if diff_days == 1:
            status, current = CheckInStatus.CONTINUED, state.current_streak + 1
        elif diff_days == 2 and _shield_bridges(state.shield_date, state.last_check_in):
            status, current = CheckInStatus.SHIELDED, state.current_streak + 1
        else:
            status, current = CheckInStatus.RESET, 1

    return status, StreakState(
        current_streak=current,
        longest_streak=max(state.longest_streak, current),
        last_check_in=today,
        shield_date=state.shield_date,
    )


def effective_streak(
    current_streak: int,
    last_check_in: date | None,
    as_of: date,
    shield_date: date | None = None,
) -> int:
    """Streak in force on ``as_of``.

    On or after the last check-in the streak is alive if that check-in was
    ``as_of`` or the day before (two days before when a shield covers the
    day in between), else 0. For a date before the last check-in the value
    is counted back along the current run, and is 0 when the run started
    after ``as_of``. A shield date inside the counted span is taken as a
    day without a check-in.
    """
    if last_check_in is None or current_streak <= 0:
        return 0

    if last_check_in <= as_of:
        grace = 2 if _shield_bridges(shield_date, last_check_in) else 1
        return current_streak if (as_of - last_check_in).days <= grace else 0

    check_ins_after = (last_check_in - as_of).days
    if shield_date is not None and as_of < shield_date < last_check_in:
        check_ins_after -= 1
    return max(current_streak - check_ins_after, 0)


async def check_in(
    db: AsyncSession,
    user_id: int,
    today: date,
    *,
    channel: EventChannel | None = None,
    token_reward: int = 1,
    wager_win_percent: int = DEFAULT_WIN_PERCENT,
) -> CheckInResult:
    """Record the user's check-in for the local date ``today``.

    Streak, longest streak and last check-in date are written as one update,
    together with the settlement of an open wager. Raises PersistenceFailure
    if the transaction cannot be committed; in that case nothing was stored.
    """
    try:
        progress = await get_or_create_progress(db, user_id, for_update=True)
        before = StreakState(
            progress.current_streak, progress.longest_streak, progress.last_check_in, progress.shield_used_on,
        )
        status, after = next_streak_state(before, today)

        if status not in ACCEPTED_STATUSES:
            # Commit anyway: releases the row lock and keeps a freshly created row.
            await db.commit()
            if status is CheckInStatus.OUT_OF_ORDER:
                logger.info(
                    "Rejected out-of-order check-in for user %s: %s is before %s",
                    user_id, today, before.last_check_in,
                )
            return CheckInResult(status, before.current_streak, before.longest_streak, before.last_check_in)

        progress.current_streak = after.current_streak
        progress.longest_streak = after.longest_streak
        progress.last_check_in = after.last_check_in
        progress.updated_at = datetime.now(timezone.utc)
        await db.flush()

        unlocked = await evaluate_achievements(db, user_id, after.current_streak, token_reward)
        settled = await settle_open_wager(db, progress, today, win_percent=wager_win_percent)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.error("Check-in for user %s on %s violated a constraint", user_id, today, exc_info=True)
        raise PersistenceFailure("check_in", user_id, retryable=False) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Check-in for user %s on %s failed", user_id, today, exc_info=True)
        raise PersistenceFailure("check_in", user_id) from exc

    if status is CheckInStatus.RESET:
        logger.info("User %s streak reset (was %d)", user_id, before.current_streak)
    elif status is CheckInStatus.SHIELDED:
        logger.info("User %s streak kept by shield used on %s", user_id, before.shield_date)

    events: list[EngineEvent] = [
        StreakUpdated(
            user_id=user_id,
            status=status.value,
            current_streak=after.current_streak,
            longest_streak=after.longest_streak,
            check_in_date=today,
        )
    ]
    events.extend(AchievementUnlocked(user_id, a, token_reward) for a in unlocked)
    if settled is not None:
        events.append(settled)
    await publish_all(channel, events)

    return CheckInResult(
        status=status,
        current_streak=after.current_streak,
        longest_streak=after.longest_streak,
        last_check_in=after.last_check_in,
        achievements_unlocked=tuple(unlocked),
        wager_won=settled.won if settled else None,
        wager_tokens_delta=settled.tokens_delta if settled else 0,
    )


async def activate_shield(db: AsyncSession, user_id: int, today: date) -> ShieldResult:
    """Spend this week's streak shield on ``today`` (premium only).

    The shield covers a day the user has not checked in on, while the
    streak is still alive from yesterday. Refusals are reported in the
    result status and change nothing.
    """
    try:
        progress = await get_or_create_progress(db, user_id, for_update=True)
        is_premium = (await db.execute(select(User.is_premium).where(User.id == user_id))).scalar_one()

        if not is_premium:
            status = ShieldStatus.NOT_PREMIUM
        elif not shield_available(progress.shield_used_on, today):
            status = ShieldStatus.ALREADY_USED
        elif progress.last_check_in == today:
            status = ShieldStatus.NOT_NEEDED
        elif progress.current_streak == 0 or progress.last_check_in != today - timedelta(days=1):
            status = ShieldStatus.NO_STREAK
        else:
            status = ShieldStatus.ACTIVATED
            progress.shield_used_on = today
            progress.updated_at = datetime.now(timezone.utc)
        shield_used_on = progress.shield_used_on
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Shield activation for user %s on %s failed", user_id, today, exc_info=True)
        raise PersistenceFailure("activate_shield", user_id) from exc

    if status is ShieldStatus.ACTIVATED:
        logger.info("User %s shielded streak of %d on %s", user_id, progress.current_streak, today)
    return ShieldResult(status, shield_used_on, shield_available(shield_used_on, today))
