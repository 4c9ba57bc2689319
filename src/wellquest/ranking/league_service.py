"""Weekly leagues: small same-tier groups ranked by the XP earned that week.

A user joins a league on their first league request of an ISO week. The
tier comes from their total XP at that moment and the league is the oldest
one of that tier and week with a free seat; a new one is opened when all
are full. Standings are recomputed from the award ledger, so no separate
weekly counter has to be kept in step with awards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from wellquest.db.models import League, LeagueMember
from wellquest.db.upsert import insert_ignoring_conflict
from wellquest.errors import PersistenceFailure
from wellquest.gamification.level_resolver import league_for_xp, level_for_xp
from wellquest.gamification.progress import get_or_create_progress
from wellquest.gamification.streak_service import effective_streak
from wellquest.ranking.ranking_service import RankEntry, _load_participants, _xp_in_window, assign_ranks
from wellquest.ranking.windows import RankingPeriod, get_monday, window_for

logger = logging.getLogger(__name__)

DEFAULT_LEAGUE_SIZE = 20


@dataclass
class LeagueStanding:
    league_id: int
    tier: str
    week_start: date
    week_key: str
    entries: list[RankEntry] = field(default_factory=list)
    hidden: list[RankEntry] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.entries)


async def _membership(db: AsyncSession, user_id: int, week_start: date) -> int | None:
    result = await db.execute(
        select(LeagueMember.league_id).where(
            LeagueMember.user_id == user_id,
            LeagueMember.week_start == week_start,
        )
    )
    return result.scalar_one_or_none()


async def _league_with_seat(db: AsyncSession, tier: str, week_start: date, league_size: int) -> int | None:
    """Oldest league of (tier, week) with fewer than ``league_size`` members."""
    result = await db.execute(
        select(League.id)
        .where(League.tier == tier, League.week_start == week_start)
        .order_by(League.id)
        .with_for_update()
    )
    league_ids = list(result.scalars())
    if not league_ids:
        return None

    counts = dict(
        (
            await db.execute(
                select(LeagueMember.league_id, func.count(LeagueMember.id))
                .where(LeagueMember.league_id.in_(league_ids))
                .group_by(LeagueMember.league_id)
            )
        ).all()
    )
    for league_id in league_ids:
        if counts.get(league_id, 0) < league_size:
            return league_id
    return None


async def assign_league(
    db: AsyncSession,
    user_id: int,
    as_of: date,
    *,
    league_size: int = DEFAULT_LEAGUE_SIZE,
) -> int:
    """League id of the user for the ISO week of ``as_of``, joining one if needed.

    Runs in the caller's transaction and does not commit.
    """
    week_start = get_monday(as_of)
    league_id = await _membership(db, user_id, week_start)
    if league_id is not None:
        return league_id

    progress = await get_or_create_progress(db, user_id)
    tier = league_for_xp(progress.total_xp)

    league_id = await _league_with_seat(db, tier, week_start, league_size)
    if league_id is None:
        league = League(tier=tier, week_start=week_start)
        db.add(league)
        await db.flush()
        league_id = league.id
        logger.info("Opened %s league %s for week of %s", tier, league_id, week_start)

    await db.execute(
        insert_ignoring_conflict(
            db,
            LeagueMember,
            {"league_id": league_id, "user_id": user_id, "week_start": week_start},
            ["user_id", "week_start"],
        )
    )
    # A concurrent request of the same user may have joined first.
    joined = await _membership(db, user_id, week_start)
    logger.info("User %s joined %s league %s for week of %s", user_id, tier, joined, week_start)
    return joined  # type: ignore[return-value]


async def build_league(
    db: AsyncSession,
    user_id: int,
    as_of: date | None = None,
    *,
    league_size: int = DEFAULT_LEAGUE_SIZE,
) -> LeagueStanding:
    """The user's league for the week of ``as_of`` with standings by weekly XP.

    Ties are broken by user id. Private members are kept aside in
    ``hidden`` exactly as in the public rankings.
    """
    if league_size < 1:
        raise ValueError(f"league_size must be >= 1, got {league_size}")
    if as_of is None:
        as_of = datetime.now(timezone.utc).date()

    try:
        league_id = await assign_league(db, user_id, as_of, league_size=league_size)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("League assignment for user %s failed", user_id, exc_info=True)
        raise PersistenceFailure("assign_league", user_id) from exc

    league = await db.get(League, league_id)
    member_ids = list(
        (await db.execute(select(LeagueMember.user_id).where(LeagueMember.league_id == league_id))).scalars()
    )

    window = window_for(RankingPeriod.WEEKLY, as_of)
    standing = LeagueStanding(
        league_id=league_id,
        tier=league.tier,
        week_start=league.week_start,
        week_key=window.key,
    )

    participants = await _load_participants(db, member_ids)
    weekly_xp = await _xp_in_window(db, window.start, window.end, member_ids)
    values = {p.user_id: weekly_xp.get(p.user_id, 0) for p in participants}
    private = {p.user_id for p in participants if p.is_private}

    by_id = {p.user_id: p for p in participants}
    for member_id, rank in assign_ranks(values, private):
        p = by_id[member_id]
        entry = RankEntry(
            user_id=member_id,
            alias=p.alias,
            avatar_id=p.avatar_id,
            level=level_for_xp(p.total_xp),
            league=league.tier,
            streak=effective_streak(p.current_streak, p.last_check_in, as_of, p.shield_used_on),
            value=values[member_id],
            rank=rank,
            is_private=p.is_private,
        )
        (standing.hidden if p.is_private else standing.entries).append(entry)
    return standing
