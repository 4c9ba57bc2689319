"""Service tests for the streak shield and streak wagers."""

from __future__ import annotations

from datetime import date, timedelta

import pytest
import pytest_asyncio

from wellquest.db.models import UserProgress
from wellquest.gamification.events import EventChannel, WagerSettled
from wellquest.gamification.streak_service import CheckInStatus, ShieldStatus, activate_shield, check_in
from wellquest.gamification.wager_service import WagerStatus, place_wager, settle_wager, wager_payout

MONDAY = date(2026, 10, 19)


@pytest_asyncio.fixture
async def premium(make_user):
    return await make_user(is_premium=True)


@pytest_asyncio.fixture
async def user(make_user):
    return await make_user()


async def _progress(db, user_id: int) -> UserProgress:
    return await db.get(UserProgress, user_id, populate_existing=True)


async def _give_tokens(db, user_id: int, tokens: int) -> None:
    progress = await _progress(db, user_id)
    progress.power_tokens = tokens
    await db.commit()


async def _give_tokens_after_first_check_in(db, user_id: int, tokens: int) -> None:
    await check_in(db, user_id, MONDAY - timedelta(days=1))
    await _give_tokens(db, user_id, tokens)


class TestShield:
    @pytest.mark.asyncio
    async def test_shield_carries_streak_over_missed_day(self, db_session, premium):
        await check_in(db_session, premium.id, MONDAY)
        await check_in(db_session, premium.id, MONDAY + timedelta(days=1))

        shield = await activate_shield(db_session, premium.id, MONDAY + timedelta(days=2))
        result = await check_in(db_session, premium.id, MONDAY + timedelta(days=3))

        assert shield.activated
        assert shield.available_this_week is False
        assert result.status is CheckInStatus.SHIELDED
        assert result.current_streak == 3

    @pytest.mark.asyncio
    async def test_requires_premium(self, db_session, user):
        await check_in(db_session, user.id, MONDAY)
        result = await activate_shield(db_session, user.id, MONDAY + timedelta(days=1))

        assert result.status is ShieldStatus.NOT_PREMIUM
        assert (await _progress(db_session, user.id)).shield_used_on is None

    @pytest.mark.asyncio
    async def test_once_per_iso_week(self, db_session, premium):
        await check_in(db_session, premium.id, MONDAY)
        await activate_shield(db_session, premium.id, MONDAY + timedelta(days=1))
        await check_in(db_session, premium.id, MONDAY + timedelta(days=2))

        again = await activate_shield(db_session, premium.id, MONDAY + timedelta(days=3))
        assert again.status is ShieldStatus.ALREADY_USED

        await check_in(db_session, premium.id, MONDAY + timedelta(days=6))
        next_week = await activate_shield(db_session, premium.id, MONDAY + timedelta(days=7))
        assert next_week.status is ShieldStatus.ACTIVATED

    @pytest.mark.asyncio
    async def test_not_needed_after_check_in(self, db_session, premium):
        await check_in(db_session, premium.id, MONDAY)
        result = await activate_shield(db_session, premium.id, MONDAY)
        assert result.status is ShieldStatus.NOT_NEEDED

    @pytest.mark.asyncio
    async def test_lapsed_streak_cannot_be_shielded(self, db_session, premium):
        await check_in(db_session, premium.id, MONDAY)
        result = await activate_shield(db_session, premium.id, MONDAY + timedelta(days=3))
        assert result.status is ShieldStatus.NO_STREAK


class TestWager:
    def test_payout(self):
        assert wager_payout(10, won=True) == 5
        assert wager_payout(5, won=True) == 2
        assert wager_payout(10, won=False) == -10

    @pytest.mark.asyncio
    async def test_won_by_checking_in_that_day(self, db_session, user):
        await check_in(db_session, user.id, MONDAY - timedelta(days=1))
        await _give_tokens(db_session, user.id, 10)

        placed = await place_wager(db_session, user.id, 6, MONDAY)
        result = await check_in(db_session, user.id, MONDAY)

        assert placed.status is WagerStatus.PLACED
        assert placed.power_tokens == 10
        assert result.wager_won is True
        assert result.wager_tokens_delta == 3
        progress = await _progress(db_session, user.id)
        assert progress.power_tokens == 13
        assert progress.wager_amount == 0
        assert progress.wager_date is None

    @pytest.mark.asyncio
    async def test_lost_on_next_check_in(self, db_session, user):
        await check_in(db_session, user.id, MONDAY - timedelta(days=1))
        await _give_tokens(db_session, user.id, 10)
        await place_wager(db_session, user.id, 4, MONDAY)

        result = await check_in(db_session, user.id, MONDAY + timedelta(days=1))

        assert result.wager_won is False
        assert result.wager_tokens_delta == -4
        assert (await _progress(db_session, user.id)).power_tokens == 6

    @pytest.mark.asyncio
    async def test_loss_never_goes_below_zero(self, db_session, user):
        await _give_tokens_after_first_check_in(db_session, user.id, 5)
        await place_wager(db_session, user.id, 5, MONDAY)
        progress = await _progress(db_session, user.id)
        progress.power_tokens = 2
        await db_session.commit()

        settled = await settle_wager(db_session, user.id, MONDAY + timedelta(days=1))

        assert settled is not None
        assert settled.won is False
        assert settled.power_tokens == 0

    @pytest.mark.asyncio
    async def test_open_wager_not_settled_early(self, db_session, user):
        await _give_tokens_after_first_check_in(db_session, user.id, 5)
        await place_wager(db_session, user.id, 3, MONDAY)

        assert await settle_wager(db_session, user.id, MONDAY) is None
        assert (await _progress(db_session, user.id)).wager_amount == 3

    @pytest.mark.asyncio
    async def test_refusals(self, db_session, user):
        await _give_tokens_after_first_check_in(db_session, user.id, 5)

        too_much = await place_wager(db_session, user.id, 6, MONDAY)
        assert too_much.status is WagerStatus.INSUFFICIENT_TOKENS

        await place_wager(db_session, user.id, 2, MONDAY)
        second = await place_wager(db_session, user.id, 2, MONDAY)
        assert second.status is WagerStatus.ALREADY_ACTIVE
        assert second.amount == 2

        await check_in(db_session, user.id, MONDAY)
        after_check_in = await place_wager(db_session, user.id, 1, MONDAY)
        assert after_check_in.status is WagerStatus.ALREADY_CHECKED_IN

    @pytest.mark.asyncio
    async def test_stale_wager_settled_before_new_one(self, db_session, user):
        await _give_tokens_after_first_check_in(db_session, user.id, 10)
        await place_wager(db_session, user.id, 4, MONDAY)
        channel = EventChannel()
        received = []
        channel.subscribe(received.append, event_types=(WagerSettled,))

        result = await place_wager(db_session, user.id, 3, MONDAY + timedelta(days=2), channel=channel)

        assert result.status is WagerStatus.PLACED
        assert result.settled is not None
        assert result.settled.won is False
        assert result.power_tokens == 6
        assert [e.tokens_delta for e in received] == [-4]

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, db_session, user):
        with pytest.raises(ValueError):
            await place_wager(db_session, user.id, 0, MONDAY)
