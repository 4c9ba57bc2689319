"""Ranking aggregator: recomputed on query from the ledger and progress rows.

A ranking is defined by (period, scope, metric[, level]). Participants are
ordered by metric value descending, ties broken by user id ascending.
Users who opted out of the public ranking are kept aside in ``hidden``
with the rank they would hold among the public entries, so ``find_self``
works for them too.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from itertools import chain
from typing import Any

from redis.asyncio import Redis
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from wellquest.db.models import CircleConnection, MissionAward, User, UserProgress, Victory
from wellquest.errors import PopulationUnavailable
from wellquest.gamification.level_resolver import league_for_xp, level_for_xp
from wellquest.gamification.streak_service import effective_streak
from wellquest.ranking.windows import RankingPeriod, RankingWindow, previous_window, window_for

logger = logging.getLogger(__name__)

CONNECTION_ACCEPTED = "accepted"
DEFAULT_PODIUM_SIZE = 3

_ALIAS_ADJECTIVES = ["Brave", "Strong", "Serene", "Bright", "Wise", "Noble"]
_ALIAS_NOUNS = ["Warrior", "Guardian", "Strategist", "Mentor", "Explorer", "Leader"]


class RankingScope(str, Enum):
    GLOBAL = "global"
    CIRCLE = "circle"
    COUNTRY = "country"


class RankingMetric(str, Enum):
    XP = "xp"
    STREAK = "streak"
    VICTORIES = "victories"


@dataclass
class RankEntry:
    user_id: int
    alias: str
    avatar_id: int | None
    level: int
    league: str
    streak: int
    value: int
    rank: int
    rank_change: int = 0  # positive = moved up
    is_private: bool = False


@dataclass
class Ranking:
    period: str
    scope: str
    metric: str
    window_key: str
    level_filter: int | None = None
    entries: list[RankEntry] = field(default_factory=list)
    hidden: list[RankEntry] = field(default_factory=list)
    podium_size: int = DEFAULT_PODIUM_SIZE

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def podium(self) -> list[RankEntry]:
        return self.entries[: self.podium_size]

    @property
    def remainder(self) -> list[RankEntry]:
        return self.entries[self.podium_size :]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Ranking:
        data = dict(data)
        data["entries"] = [RankEntry(**e) for e in data.get("entries", [])]
        data["hidden"] = [RankEntry(**e) for e in data.get("hidden", [])]
        return cls(**data)


@dataclass(frozen=True)
class _Participant:
    user_id: int
    alias: str
    avatar_id: int | None
    is_private: bool
    total_xp: int
    current_streak: int
    last_check_in: date | None
    shield_used_on: date | None = None


def generate_alias(user_id: int) -> str:
    """Deterministic adjective + noun alias for users without a display name."""
    digest = sum(ord(c) for c in str(user_id))
    return f"{_ALIAS_ADJECTIVES[digest % len(_ALIAS_ADJECTIVES)]}{_ALIAS_NOUNS[(digest * 7) % len(_ALIAS_NOUNS)]}"


def assign_ranks(values: dict[int, int], private: set[int] | frozenset[int] = frozenset()) -> list[tuple[int, int]]:
    """Order users by value desc, user id asc. Returns [(user_id, rank)] in that order.

    Public users get contiguous ranks 1..n. A private user gets
    1 + the number of public users ordered ahead of them.
    """
    ordered = sorted(values, key=lambda uid: (-values[uid], uid))
    ranked: list[tuple[int, int]] = []
    public_ahead = 0
    for uid in ordered:
        if uid in private:
            ranked.append((uid, public_ahead + 1))
        else:
            public_ahead += 1
            ranked.append((uid, public_ahead))
    return ranked


def find_self(user_id: int, ranking: Ranking) -> RankEntry | None:
    """The user's own entry, whether public or hidden. None if not in the population."""
    for entry in chain(ranking.entries, ranking.hidden):
        if entry.user_id == user_id:
            return entry
    return None


# ---------------------------------------------------------------------------
# Population
# ---------------------------------------------------------------------------


async def _resolve_population(db: AsyncSession, requester_id: int, scope: RankingScope) -> list[int] | None:
    """User ids in scope, or None for the global scope (every progress row)."""
    if scope is RankingScope.GLOBAL:
        return None

    if scope is RankingScope.CIRCLE:
        result = await db.execute(
            select(CircleConnection.user_id, CircleConnection.connected_user_id).where(
                CircleConnection.status == CONNECTION_ACCEPTED,
                or_(
                    CircleConnection.user_id == requester_id,
                    CircleConnection.connected_user_id == requester_id,
                ),
            )
        )
        members = {requester_id}
        for user_id, connected_user_id in result.all():
            members.update((user_id, connected_user_id))
        if len(members) == 1:
            raise PopulationUnavailable(scope.value, "no accepted connections")
        return sorted(members)

    country = (
        await db.execute(select(User.country_code).where(User.id == requester_id))
    ).scalar_one_or_none()
    if not country:
        raise PopulationUnavailable(scope.value, "requester has no country")
    result = await db.execute(select(User.id).where(User.country_code == country))
    return list(result.scalars())


async def _load_participants(db: AsyncSession, user_ids: list[int] | None) -> list[_Participant]:
    stmt = select(
        User.id,
        User.display_name,
        User.avatar_id,
        User.is_ranking_private,
        UserProgress.total_xp,
        UserProgress.current_streak,
        UserProgress.last_check_in,
        UserProgress.shield_used_on,
    )
    if user_ids is None:
        stmt = stmt.select_from(UserProgress).join(User, User.id == UserProgress.user_id)
    else:
        stmt = (
            stmt.select_from(User)
            .outerjoin(UserProgress, UserProgress.user_id == User.id)
            .where(User.id.in_(user_ids))
        )

    result = await db.execute(stmt)
    return [
        _Participant(
            user_id=row.id,
            alias=row.display_name or generate_alias(row.id),
            avatar_id=row.avatar_id,
            is_private=bool(row.is_ranking_private),
            total_xp=row.total_xp or 0,
            current_streak=row.current_streak or 0,
            last_check_in=row.last_check_in,
            shield_used_on=row.shield_used_on,
        )
        for row in result
    ]


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


async def _xp_in_window(
    db: AsyncSession, start: date | None, end: date, user_ids: list[int] | None,
) -> dict[int, int]:
    """Mission XP plus victory bonus XP dated within [start, end]."""
    award_q = (
        select(MissionAward.user_id, func.sum(MissionAward.xp_earned))
        .where(MissionAward.award_date <= end)
        .group_by(MissionAward.user_id)
    )
    victory_q = (
        select(Victory.user_id, func.sum(Victory.xp_bonus))
        .where(Victory.victory_date <= end)
        .group_by(Victory.user_id)
    )
    if start is not None:
        award_q = award_q.where(MissionAward.award_date >= start)
        victory_q = victory_q.where(Victory.victory_date >= start)
    if user_ids is not None:
        award_q = award_q.where(MissionAward.user_id.in_(user_ids))
        victory_q = victory_q.where(Victory.user_id.in_(user_ids))

    totals: dict[int, int] = defaultdict(int)
    for query in (award_q, victory_q):
        for user_id, xp in (await db.execute(query)).all():
            totals[user_id] += int(xp or 0)
    return totals


async def _victory_counts(
    db: AsyncSession, start: date | None, end: date, user_ids: list[int] | None,
) -> dict[int, int]:
    query = (
        select(Victory.user_id, func.count(Victory.id))
        .where(Victory.victory_date <= end)
        .group_by(Victory.user_id)
    )
    if start is not None:
        query = query.where(Victory.victory_date >= start)
    if user_ids is not None:
        query = query.where(Victory.user_id.in_(user_ids))
    return {user_id: count for user_id, count in (await db.execute(query)).all()}


async def _metric_values(
    db: AsyncSession,
    metric: RankingMetric,
    window: RankingWindow,
    participants: list[_Participant],
    user_ids: list[int] | None,
    *,
    current: bool,
) -> dict[int, int]:
    """Metric value for every participant (0 when nothing is recorded)."""
    if metric is RankingMetric.STREAK:
        return {
            p.user_id: effective_streak(p.current_streak, p.last_check_in, window.reference, p.shield_used_on)
            for p in participants
        }
    if metric is RankingMetric.XP:
        if current and window.start is None:
            return {p.user_id: p.total_xp for p in participants}
        values = await _xp_in_window(db, window.start, window.end, user_ids)
    else:
        values = await _victory_counts(db, window.start, window.end, user_ids)
    return {p.user_id: values.get(p.user_id, 0) for p in participants}


async def _previous_ranks(
    db: AsyncSession,
    metric: RankingMetric,
    window: RankingWindow,
    participants: list[_Participant],
    user_ids: list[int] | None,
    private: set[int],
) -> dict[int, int]:
    """Ranks over the preceding window; empty when there is no comparable history."""
    # Streak state is not historized.
    if metric is RankingMetric.STREAK:
        return {}
    try:
        values = await _metric_values(
            db, metric, previous_window(window), participants, user_ids, current=False,
        )
    except SQLAlchemyError:
        logger.warning("Previous-window ranking failed; rank changes default to 0", exc_info=True)
        await db.rollback()
        return {}
    return dict(assign_ranks(values, private))


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


def build_cache_key(
    period: RankingPeriod,
    scope: RankingScope,
    metric: RankingMetric,
    level_filter: int | None,
    as_of: date,
    requester_id: int,
) -> str:
    """Redis key for a cached ranking. Non-global scopes depend on the requester."""
    key = f"ranking:{period.value}:{scope.value}:{metric.value}:{level_filter or 'all'}:{as_of.isoformat()}"
    if scope is not RankingScope.GLOBAL:
        key += f":{requester_id}"
    return key


async def _read_cache(redis: Redis, key: str) -> Ranking | None:
    try:
        cached = await redis.get(key)
    except Exception:
        logger.warning("Ranking cache read failed for %s", key, exc_info=True)
        return None
    if not cached:
        return None
    try:
        return Ranking.from_dict(json.loads(cached))
    except (ValueError, TypeError):
        logger.warning("Discarding malformed cached ranking %s", key, exc_info=True)
        return None


async def _write_cache(redis: Redis, key: str, ranking: Ranking, ttl: int) -> None:
    try:
        await redis.set(key, json.dumps(ranking.to_dict()), ex=ttl)
    except Exception:
        logger.warning("Ranking cache write failed for %s", key, exc_info=True)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def build_ranking(
    db: AsyncSession,
    requester_id: int,
    period: RankingPeriod | str,
    scope: RankingScope | str,
    metric: RankingMetric | str,
    level_filter: int | None = None,
    *,
    as_of: date | None = None,
    redis: Redis | None = None,
    cache_ttl: int = 30,
    podium_size: int = DEFAULT_PODIUM_SIZE,
) -> Ranking:
    """Build the ranking for (period, scope, metric), optionally restricted to one level.

    Read-only. An unresolvable population (no circle, no country) yields an
    empty ranking. ``rank_change`` compares against the preceding window
    and is 0 when that cannot be computed.
    """
    period = RankingPeriod(period)
    scope = RankingScope(scope)
    metric = RankingMetric(metric)
    if level_filter is not None and level_filter < 1:
        raise ValueError(f"level_filter must be >= 1, got {level_filter}")
    if as_of is None:
        as_of = datetime.now(timezone.utc).date()

    window = window_for(period, as_of)
    ranking = Ranking(
        period=period.value,
        scope=scope.value,
        metric=metric.value,
        window_key=window.key,
        level_filter=level_filter,
        podium_size=podium_size,
    )

    cache_key = build_cache_key(period, scope, metric, level_filter, as_of, requester_id)
    if redis is not None:
        cached = await _read_cache(redis, cache_key)
        if cached is not None:
            return cached

    try:
        user_ids = await _resolve_population(db, requester_id, scope)
    except PopulationUnavailable as exc:
        logger.info("Empty %s ranking for user %s: %s", scope.value, requester_id, exc.reason)
        return ranking

    participants = await _load_participants(db, user_ids)
    if level_filter is not None:
        participants = [p for p in participants if level_for_xp(p.total_xp) == level_filter]
        user_ids = [p.user_id for p in participants]
    if not participants:
        return ranking

    values = await _metric_values(db, metric, window, participants, user_ids, current=True)
    private = {p.user_id for p in participants if p.is_private}
    previous = await _previous_ranks(db, metric, window, participants, user_ids, private)

    by_id = {p.user_id: p for p in participants}
    for user_id, rank in assign_ranks(values, private):
        p = by_id[user_id]
        entry = RankEntry(
            user_id=user_id,
            alias=p.alias,
            avatar_id=p.avatar_id,
            level=level_for_xp(p.total_xp),
            league=league_for_xp(p.total_xp),
            streak=effective_streak(p.current_streak, p.last_check_in, window.reference, p.shield_used_on),
            value=values[user_id],
            rank=rank,
            rank_change=previous[user_id] - rank if user_id in previous else 0,
            is_private=p.is_private,
        )
        (ranking.hidden if p.is_private else ranking.entries).append(entry)

    if redis is not None:
        await _write_cache(redis, cache_key, ranking, cache_ttl)
    return ranking
