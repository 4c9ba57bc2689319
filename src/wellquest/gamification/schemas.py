"""Pydantic request/response models for gamification endpoints."""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, Field

# --- Requests ---


class CheckInRequest(BaseModel):
    local_date: date | None = None


class MissionCompleteRequest(BaseModel):
    local_date: date | None = None
    metadata: dict[str, Any] | None = None


class VictoryRequest(BaseModel):
    text: str = Field(min_length=1, max_length=500)
    local_date: date | None = None
    is_public: bool = False


class ShieldRequest(BaseModel):
    local_date: date | None = None


class WagerRequest(BaseModel):
    amount: int = Field(gt=0)
    local_date: date | None = None


# --- Responses ---


class CheckInResponse(BaseModel):
    status: str
    accepted: bool
    current_streak: int
    longest_streak: int
    last_check_in: date | None
    achievements_unlocked: list[str] = []
    wager_won: bool | None = None
    wager_tokens_delta: int = 0


class AwardResponse(BaseModel):
    success: bool
    reason: str | None = None
    mission_id: str
    xp_earned: int
    perfect_day_bonus: int = 0
    total_xp: int
    level: int
    leveled_up: bool = False
    achievements_unlocked: list[str] = []


class VictoryResponse(BaseModel):
    victory_id: int
    xp_earned: int
    total_xp: int
    level: int
    leveled_up: bool = False


class LevelResponse(BaseModel):
    total_xp: int
    level: int
    xp_into_level: int
    xp_for_next_level: int
    progress_percent: float
    next_level_at: int
    league: str


class ProgressResponse(BaseModel):
    total_xp: int
    level: LevelResponse
    current_streak: int
    longest_streak: int
    last_check_in: date | None
    power_tokens: int
    streak_multiplier: float
    achievements: list[str] = []
    shield_available: bool = False
    shield_used_on: date | None = None
    wager_amount: int = 0
    wager_date: date | None = None


class MissionResponse(BaseModel):
    id: str
    category: str
    title: str
    base_xp: int
    is_premium: bool = False
    completed: bool = False


class TodayMissionsResponse(BaseModel):
    local_date: date
    missions: list[MissionResponse]
    perfect_day: bool = False


class ShieldResponse(BaseModel):
    status: str
    activated: bool
    shield_used_on: date | None
    available_this_week: bool


class WagerSettlementResponse(BaseModel):
    won: bool
    amount: int
    tokens_delta: int
    wager_date: date


class WagerResponse(BaseModel):
    status: str
    placed: bool
    amount: int
    wager_date: date | None
    power_tokens: int
    settled: WagerSettlementResponse | None = None


class AchievementResponse(BaseModel):
    id: str
    label: str
    requirement: str
    count: int
    is_premium: bool = False
    unlocked: bool = False
