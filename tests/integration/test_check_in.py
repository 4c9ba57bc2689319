"""Service tests for daily check-ins."""

from __future__ import annotations

from datetime import date, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from wellquest.db.models import UserProgress
from wellquest.errors import PersistenceFailure
from wellquest.gamification import streak_service
from wellquest.gamification.events import EventChannel, StreakUpdated
from wellquest.gamification.streak_service import CheckInStatus, check_in

D = date(2026, 3, 10)


@pytest_asyncio.fixture
async def user(make_user):
    return await make_user()


async def _progress(db, user_id: int) -> UserProgress:
    return await db.get(UserProgress, user_id, populate_existing=True)


class TestCheckIn:
    @pytest.mark.asyncio
    async def test_three_consecutive_days(self, db_session, user):
        for n in range(3):
            result = await check_in(db_session, user.id, D + timedelta(days=n))

        assert result.status is CheckInStatus.CONTINUED
        assert result.current_streak == 3
        progress = await _progress(db_session, user.id)
        assert progress.current_streak == 3
        assert progress.longest_streak == 3
        assert progress.last_check_in == D + timedelta(days=2)

    @pytest.mark.asyncio
    async def test_gap_resets(self, db_session, user):
        await check_in(db_session, user.id, D)
        await check_in(db_session, user.id, D + timedelta(days=1))
        result = await check_in(db_session, user.id, D + timedelta(days=5))

        assert result.status is CheckInStatus.RESET
        assert result.current_streak == 1
        assert result.longest_streak == 2

    @pytest.mark.asyncio
    async def test_same_day_twice(self, db_session, user):
        await check_in(db_session, user.id, D)
        result = await check_in(db_session, user.id, D)

        assert result.status is CheckInStatus.ALREADY_CHECKED_IN
        assert result.accepted is False
        assert result.current_streak == 1

    @pytest.mark.asyncio
    async def test_out_of_order_changes_nothing(self, db_session, user):
        await check_in(db_session, user.id, D)
        await check_in(db_session, user.id, D + timedelta(days=1))
        result = await check_in(db_session, user.id, D - timedelta(days=3))

        assert result.status is CheckInStatus.OUT_OF_ORDER
        progress = await _progress(db_session, user.id)
        assert progress.current_streak == 2
        assert progress.last_check_in == D + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_publishes_streak_event(self, db_session, user):
        channel = EventChannel()
        received = []
        channel.subscribe(received.append, event_types=(StreakUpdated,))

        await check_in(db_session, user.id, D, channel=channel)
        await check_in(db_session, user.id, D, channel=channel)

        assert len(received) == 1
        assert received[0].status == "started"
        assert received[0].check_in_date == D

    @pytest.mark.asyncio
    async def test_store_failure_raises_persistence_failure(self, db_session, user, monkeypatch):
        async def broken(*_args, **_kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(streak_service, "evaluate_achievements", broken)

        with pytest.raises(PersistenceFailure):
            await check_in(db_session, user.id, D)

        count = await db_session.execute(select(func.count()).select_from(UserProgress))
        assert count.scalar_one() == 0
