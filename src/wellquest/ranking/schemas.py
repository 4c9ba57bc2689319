"""Pydantic response models for ranking endpoints."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel


class RankEntryResponse(BaseModel):
    rank: int
    rank_change: int = 0
    user_id: str
    alias: str
    avatar_id: int | None = None
    level: int
    league: str
    streak: int
    value: int
    is_current_user: bool = False


class RankingResponse(BaseModel):
    period: str
    scope: str
    metric: str
    window: str
    level_filter: int | None = None
    total: int
    podium: list[RankEntryResponse]
    entries: list[RankEntryResponse]
    me: RankEntryResponse | None = None
    me_is_private: bool = False


class MyRankResponse(BaseModel):
    period: str
    scope: str
    metric: str
    total: int
    entry: RankEntryResponse | None = None
    is_private: bool = False


class LeagueResponse(BaseModel):
    league_id: int
    tier: str
    week: str
    week_start: date
    total: int
    members: list[RankEntryResponse]
    me: RankEntryResponse | None = None
