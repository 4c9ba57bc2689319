"""Ranking API endpoints."""

from __future__ import annotations

from datetime import date
from itertools import chain

from fastapi import APIRouter, Depends, Query
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from wellquest.auth.dependencies import get_current_user_id
from wellquest.config import get_settings
from wellquest.dependencies import get_db, get_redis_dep, resolve_local_date
from wellquest.ranking.league_service import build_league
from wellquest.ranking.ranking_service import (
    RankEntry,
    RankingMetric,
    RankingScope,
    build_ranking,
    find_self,
)
from wellquest.ranking.schemas import LeagueResponse, MyRankResponse, RankEntryResponse, RankingResponse
from wellquest.ranking.windows import RankingPeriod

router = APIRouter(prefix="/api/v1", tags=["Ranking"])


def _entry_response(entry: RankEntry, current_user_id: int) -> RankEntryResponse:
    return RankEntryResponse(
        rank=entry.rank,
        rank_change=entry.rank_change,
        user_id=str(entry.user_id),
        alias=entry.alias,
        avatar_id=entry.avatar_id,
        level=entry.level,
        league=entry.league,
        streak=entry.streak,
        value=entry.value,
        is_current_user=entry.user_id == current_user_id,
    )


@router.get("/ranking", response_model=RankingResponse)
async def get_ranking(
    period: RankingPeriod = Query(RankingPeriod.WEEKLY),
    scope: RankingScope = Query(RankingScope.GLOBAL),
    metric: RankingMetric = Query(RankingMetric.XP),
    level: int | None = Query(None, ge=1),
    limit: int | None = Query(None, ge=1, le=500),
    local_date: date | None = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    redis: Redis | None = Depends(get_redis_dep),
):
    """Podium, the following entries (up to ``limit``) and the caller's own position."""
    settings = get_settings()
    ranking = await build_ranking(
        db,
        user_id,
        period,
        scope,
        metric,
        level,
        as_of=resolve_local_date(local_date),
        redis=redis,
        cache_ttl=settings.ranking_cache_ttl_seconds,
        podium_size=settings.ranking_podium_size,
    )
    me = find_self(user_id, ranking)
    limit = limit or settings.ranking_default_limit

    return RankingResponse(
        period=ranking.period,
        scope=ranking.scope,
        metric=ranking.metric,
        window=ranking.window_key,
        level_filter=ranking.level_filter,
        total=ranking.total,
        podium=[_entry_response(e, user_id) for e in ranking.podium],
        entries=[_entry_response(e, user_id) for e in ranking.remainder[:limit]],
        me=_entry_response(me, user_id) if me else None,
        me_is_private=me.is_private if me else False,
    )


@router.get("/ranking/me", response_model=MyRankResponse)
async def get_my_rank(
    period: RankingPeriod = Query(RankingPeriod.WEEKLY),
    scope: RankingScope = Query(RankingScope.GLOBAL),
    metric: RankingMetric = Query(RankingMetric.XP),
    local_date: date | None = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    redis: Redis | None = Depends(get_redis_dep),
):
    """The caller's own position, also when hidden from the public ranking."""
    settings = get_settings()
    ranking = await build_ranking(
        db,
        user_id,
        period,
        scope,
        metric,
        as_of=resolve_local_date(local_date),
        redis=redis,
        cache_ttl=settings.ranking_cache_ttl_seconds,
        podium_size=settings.ranking_podium_size,
    )
    me = find_self(user_id, ranking)
    return MyRankResponse(
        period=ranking.period,
        scope=ranking.scope,
        metric=ranking.metric,
        total=ranking.total,
        entry=_entry_response(me, user_id) if me else None,
        is_private=me.is_private if me else False,
    )


@router.get("/ranking/league", response_model=LeagueResponse)
async def get_my_league(
    local_date: date | None = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """The caller's weekly league, joining one on the first request of the week."""
    settings = get_settings()
    standing = await build_league(
        db,
        user_id,
        resolve_local_date(local_date),
        league_size=settings.league_size,
    )
    me = next((e for e in chain(standing.entries, standing.hidden) if e.user_id == user_id), None)
    return LeagueResponse(
        league_id=standing.league_id,
        tier=standing.tier,
        week=standing.week_key,
        week_start=standing.week_start,
        total=standing.total,
        members=[_entry_response(e, user_id) for e in standing.entries],
        me=_entry_response(me, user_id) if me else None,
    )
