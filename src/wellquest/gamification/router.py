"""Gamification API endpoints: check-ins, mission awards, victories, progress, shield and wagers."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wellquest.auth.dependencies import get_current_user_id
from wellquest.config import get_settings
from wellquest.db.models import MissionAward, User, UserProgress
from wellquest.dependencies import get_catalog, get_db, get_event_channel, resolve_local_date
from wellquest.gamification import streak_service, wager_service, xp_service
from wellquest.gamification.achievements import ACHIEVEMENTS, get_unlocked_achievements
from wellquest.gamification.catalog import PERFECT_DAY_MISSION_ID, MissionCatalog
from wellquest.gamification.events import EventChannel
from wellquest.gamification.level_resolver import league_for_xp, resolve_level
from wellquest.gamification.schemas import (
    AchievementResponse,
    AwardResponse,
    CheckInRequest,
    CheckInResponse,
    LevelResponse,
    MissionCompleteRequest,
    MissionResponse,
    ProgressResponse,
    ShieldRequest,
    ShieldResponse,
    TodayMissionsResponse,
    VictoryRequest,
    VictoryResponse,
    WagerRequest,
    WagerResponse,
    WagerSettlementResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


def _level_response(total_xp: int) -> LevelResponse:
    info = resolve_level(total_xp)
    return LevelResponse(
        total_xp=total_xp,
        level=info.level,
        xp_into_level=info.xp_into_level,
        xp_for_next_level=info.xp_for_next_level,
        progress_percent=info.progress_percent,
        next_level_at=info.next_level_at,
        league=league_for_xp(total_xp),
    )


# ── Public endpoints ──


@router.get("/levels/{total_xp}", response_model=LevelResponse)
async def get_level(total_xp: int = Path(ge=0)):
    """Resolve the level and progress for a cumulative XP amount."""
    return _level_response(total_xp)


# ── Authenticated endpoints ──


@router.post("/checkins", response_model=CheckInResponse)
async def post_check_in(
    body: CheckInRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    channel: EventChannel = Depends(get_event_channel),
):
    """Record today's check-in and advance the streak."""
    settings = get_settings()
    result = await streak_service.check_in(
        db,
        user_id,
        resolve_local_date(body.local_date),
        channel=channel,
        token_reward=settings.achievement_token_reward,
        wager_win_percent=settings.wager_win_percent,
    )
    return CheckInResponse(
        status=result.status.value,
        accepted=result.accepted,
        current_streak=result.current_streak,
        longest_streak=result.longest_streak,
        last_check_in=result.last_check_in,
        achievements_unlocked=list(result.achievements_unlocked),
        wager_won=result.wager_won,
        wager_tokens_delta=result.wager_tokens_delta,
    )


@router.post("/missions/{mission_id}/complete", response_model=AwardResponse)
async def complete_mission(
    mission_id: str,
    body: MissionCompleteRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    catalog: MissionCatalog = Depends(get_catalog),
    channel: EventChannel = Depends(get_event_channel),
):
    """Complete a catalog mission. A repeat on the same local date returns success=false."""
    settings = get_settings()
    local_date = resolve_local_date(body.local_date)
    try:
        result = await xp_service.complete_catalog_mission(
            db,
            catalog,
            user_id,
            mission_id,
            local_date,
            body.metadata,
            channel=channel,
            perfect_day_bonus=settings.perfect_day_bonus_xp,
            token_reward=settings.achievement_token_reward,
        )
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Mission '{mission_id}' not found") from None
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return AwardResponse(
        success=result.success,
        reason=result.reason,
        mission_id=mission_id,
        xp_earned=result.xp_earned,
        perfect_day_bonus=result.perfect_day_bonus,
        total_xp=result.total_xp,
        level=result.level,
        leveled_up=result.leveled_up,
        achievements_unlocked=list(result.achievements_unlocked),
    )


@router.post("/victories", response_model=VictoryResponse, status_code=201)
async def post_victory(
    body: VictoryRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    channel: EventChannel = Depends(get_event_channel),
):
    """Record a victory and grant its flat XP bonus."""
    settings = get_settings()
    try:
        result = await xp_service.record_victory(
            db,
            user_id,
            body.text,
            resolve_local_date(body.local_date),
            is_public=body.is_public,
            bonus_xp=settings.victory_bonus_xp,
            channel=channel,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return VictoryResponse(
        victory_id=result.victory_id,
        xp_earned=result.xp_earned,
        total_xp=result.total_xp,
        level=result.level,
        leveled_up=result.leveled_up,
    )


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(
    local_date: date | None = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Current XP, level, effective streak and unlocked achievements."""
    today = resolve_local_date(local_date)
    result = await db.execute(select(UserProgress).where(UserProgress.user_id == user_id))
    progress = result.scalar_one_or_none()

    is_premium = bool(
        (await db.execute(select(User.is_premium).where(User.id == user_id))).scalar_one_or_none()
    )

    total_xp = progress.total_xp if progress else 0
    streak = (
        streak_service.effective_streak(
            progress.current_streak, progress.last_check_in, today, progress.shield_used_on,
        )
        if progress
        else 0
    )
    return ProgressResponse(
        total_xp=total_xp,
        level=_level_response(total_xp),
        current_streak=streak,
        longest_streak=progress.longest_streak if progress else 0,
        last_check_in=progress.last_check_in if progress else None,
        power_tokens=progress.power_tokens if progress else 0,
        streak_multiplier=xp_service.streak_multiplier_percent(streak) / 100,
        achievements=await get_unlocked_achievements(db, user_id),
        shield_available=is_premium
        and streak_service.shield_available(progress.shield_used_on if progress else None, today),
        shield_used_on=progress.shield_used_on if progress else None,
        wager_amount=progress.wager_amount if progress else 0,
        wager_date=progress.wager_date if progress else None,
    )


@router.get("/missions/today", response_model=TodayMissionsResponse)
async def get_today_missions(
    local_date: date | None = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    catalog: MissionCatalog = Depends(get_catalog),
):
    """The day's required missions with the caller's completion state."""
    today = resolve_local_date(local_date)
    result = await db.execute(
        select(MissionAward.mission_id).where(
            MissionAward.user_id == user_id,
            MissionAward.award_date == today,
        )
    )
    completed = set(result.scalars())

    return TodayMissionsResponse(
        local_date=today,
        missions=[
            MissionResponse(
                id=m.id,
                category=m.category,
                title=m.title,
                base_xp=m.base_xp,
                is_premium=m.is_premium,
                completed=m.id in completed,
            )
            for m in catalog.required_missions(today)
        ],
        perfect_day=PERFECT_DAY_MISSION_ID in completed,
    )


@router.get("/achievements", response_model=list[AchievementResponse])
async def list_achievements(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Every achievement with the caller's unlock state."""
    unlocked = set(await get_unlocked_achievements(db, user_id))
    return [
        AchievementResponse(
            id=a.id,
            label=a.label,
            requirement=a.requirement,
            count=a.count,
            is_premium=a.is_premium,
            unlocked=a.id in unlocked,
        )
        for a in ACHIEVEMENTS
    ]


@router.post("/streak/shield", response_model=ShieldResponse)
async def post_streak_shield(
    body: ShieldRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Spend this week's streak shield on today (premium only)."""
    result = await streak_service.activate_shield(db, user_id, resolve_local_date(body.local_date))
    if result.status is streak_service.ShieldStatus.NOT_PREMIUM:
        raise HTTPException(status_code=403, detail="The streak shield requires a premium account")
    return ShieldResponse(
        status=result.status.value,
        activated=result.activated,
        shield_used_on=result.shield_used_on,
        available_this_week=result.available_this_week,
    )


@router.post("/wagers", response_model=WagerResponse)
async def post_wager(
    body: WagerRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    channel: EventChannel = Depends(get_event_channel),
):
    """Stake power tokens on checking in today."""
    settings = get_settings()
    result = await wager_service.place_wager(
        db,
        user_id,
        body.amount,
        resolve_local_date(body.local_date),
        channel=channel,
        win_percent=settings.wager_win_percent,
    )
    settled = result.settled
    return WagerResponse(
        status=result.status.value,
        placed=result.placed,
        amount=result.amount,
        wager_date=result.wager_date,
        power_tokens=result.power_tokens,
        settled=WagerSettlementResponse(
            won=settled.won,
            amount=settled.amount,
            tokens_delta=settled.tokens_delta,
            wager_date=settled.wager_date,
        )
        if settled
        else None,
    )
