"""Streak wagers: stake power tokens on checking in on a given day.

A wager placed for local date D is won by checking in on D and pays
``win_percent`` of the stake on top of the balance. Any later check-in or
wager finds it lost and deducts the stake, never below 0 tokens. Nothing
is deducted when the wager is placed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from wellquest.db.models import UserProgress
from wellquest.errors import PersistenceFailure
from wellquest.gamification.events import EventChannel, WagerSettled, publish_all
from wellquest.gamification.progress import get_or_create_progress

logger = logging.getLogger(__name__)

DEFAULT_WIN_PERCENT = 50


class WagerStatus(str, Enum):
    PLACED = "placed"
    ALREADY_ACTIVE = "already_active"
    ALREADY_CHECKED_IN = "already_checked_in"
    INSUFFICIENT_TOKENS = "insufficient_tokens"


@dataclass(frozen=True)
class WagerResult:
    status: WagerStatus
    amount: int
    wager_date: date | None
    power_tokens: int
    settled: WagerSettled | None = None

    @property
    def placed(self) -> bool:
        return self.status is WagerStatus.PLACED


def wager_payout(amount: int, won: bool, win_percent: int = DEFAULT_WIN_PERCENT) -> int:
    """Token change on settlement: +floor(amount * win_percent / 100) or -amount."""
    return amount * win_percent // 100 if won else -amount


async def settle_open_wager(
    db: AsyncSession,
    progress: UserProgress,
    as_of: date,
    *,
    win_percent: int = DEFAULT_WIN_PERCENT,
) -> WagerSettled | None:
    """Settle the open wager on a locked progress row, inside the caller's transaction.

    Won when the last check-in is the wager date, lost once ``as_of`` is
    past it. Returns None when there is nothing to settle yet.
    """
    amount, wager_date = progress.wager_amount, progress.wager_date
    if amount <= 0 or wager_date is None:
        return None

    won = progress.last_check_in == wager_date
    if not won and as_of <= wager_date:
        return None

    delta = wager_payout(amount, won, win_percent)
    if won:
        new_balance = UserProgress.power_tokens + delta
    else:
        new_balance = case((UserProgress.power_tokens > amount, UserProgress.power_tokens - amount), else_=0)

    result = await db.execute(
        update(UserProgress)
        .where(UserProgress.user_id == progress.user_id)
        .values(
            power_tokens=new_balance,
            wager_amount=0,
            wager_date=None,
            updated_at=datetime.now(timezone.utc),
        )
        .returning(UserProgress.power_tokens)
        .execution_options(synchronize_session=False)
    )
    tokens = int(result.scalar_one())
    set_committed_value(progress, "power_tokens", tokens)
    set_committed_value(progress, "wager_amount", 0)
    set_committed_value(progress, "wager_date", None)

    logger.info(
        "User %s %s wager of %d tokens for %s (balance %d)",
        progress.user_id, "won" if won else "lost", amount, wager_date, tokens,
    )
    return WagerSettled(
        user_id=progress.user_id,
        won=won,
        amount=amount,
        tokens_delta=delta,
        power_tokens=tokens,
        wager_date=wager_date,
    )


async def place_wager(
    db: AsyncSession,
    user_id: int,
    amount: int,
    today: date,
    *,
    channel: EventChannel | None = None,
    win_percent: int = DEFAULT_WIN_PERCENT,
) -> WagerResult:
    """Stake ``amount`` tokens on checking in on ``today``.

    A stale wager from an earlier day is settled first. Only one wager can
    be open, the day must not already have a check-in and the stake must
    be covered by the current balance.
    """
    if amount <= 0:
        raise ValueError(f"Wager amount must be positive, got {amount}")

    try:
        progress = await get_or_create_progress(db, user_id, for_update=True)
        settled = await settle_open_wager(db, progress, today, win_percent=win_percent)

        if progress.wager_amount > 0:
            status = WagerStatus.ALREADY_ACTIVE
        elif progress.last_check_in == today:
            status = WagerStatus.ALREADY_CHECKED_IN
        elif progress.power_tokens < amount:
            status = WagerStatus.INSUFFICIENT_TOKENS
        else:
            status = WagerStatus.PLACED
            progress.wager_amount = amount
            progress.wager_date = today
            progress.updated_at = datetime.now(timezone.utc)

        result = WagerResult(
            status=status,
            amount=progress.wager_amount,
            wager_date=progress.wager_date,
            power_tokens=progress.power_tokens,
            settled=settled,
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.error("Wager for user %s violated a constraint", user_id, exc_info=True)
        raise PersistenceFailure("place_wager", user_id, retryable=False) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Wager for user %s on %s failed", user_id, today, exc_info=True)
        raise PersistenceFailure("place_wager", user_id) from exc

    if result.placed:
        logger.info("User %s wagered %d tokens on %s", user_id, amount, today)
    if settled is not None:
        await publish_all(channel, [settled])
    return result


async def settle_wager(
    db: AsyncSession,
    user_id: int,
    as_of: date,
    *,
    channel: EventChannel | None = None,
    win_percent: int = DEFAULT_WIN_PERCENT,
) -> WagerSettled | None:
    """Settle the user's open wager if its day has been decided by ``as_of``."""
    try:
        progress = await get_or_create_progress(db, user_id, for_update=True)
        settled = await settle_open_wager(db, progress, as_of, win_percent=win_percent)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Wager settlement for user %s failed", user_id, exc_info=True)
        raise PersistenceFailure("settle_wager", user_id) from exc

    if settled is not None:
        await publish_all(channel, [settled])
    return settled
