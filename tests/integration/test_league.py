"""Service tests for weekly leagues."""

from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from wellquest.db.models import League, LeagueMember, MissionAward, UserProgress
from wellquest.ranking.league_service import build_league

AS_OF = date(2026, 10, 21)  # Wednesday, ISO week 2026-W43
MONDAY = date(2026, 10, 19)


async def _progress(db, user, total_xp=0):
    db.add(UserProgress(user_id=user.id, total_xp=total_xp))
    await db.commit()


async def _award(db, user, day, xp, mission_id="hero"):
    db.add(MissionAward(
        user_id=user.id, mission_id=mission_id, category=mission_id,
        award_date=day, xp_earned=xp, award_metadata={},
    ))
    await db.commit()


class TestAssignment:
    @pytest.mark.asyncio
    async def test_tier_from_total_xp(self, db_session, make_user):
        newcomer = await make_user()
        veteran = await make_user()
        await _progress(db_session, veteran, total_xp=3_200)

        mine = await build_league(db_session, newcomer.id, AS_OF)
        theirs = await build_league(db_session, veteran.id, AS_OF)

        assert mine.tier == "bronze"
        assert theirs.tier == "gold"
        assert mine.league_id != theirs.league_id
        assert mine.week_start == MONDAY
        assert mine.week_key == "2026-W43"

    @pytest.mark.asyncio
    async def test_leagues_fill_in_order_up_to_size(self, db_session, make_user):
        users = [await make_user() for _ in range(5)]

        leagues = [(await build_league(db_session, u.id, AS_OF, league_size=2)).league_id for u in users]

        assert leagues[0] == leagues[1]
        assert leagues[2] == leagues[3]
        assert len(set(leagues)) == 3
        sizes = await db_session.execute(
            select(func.count(LeagueMember.id)).group_by(LeagueMember.league_id).order_by(LeagueMember.league_id)
        )
        assert list(sizes.scalars()) == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_membership_fixed_for_the_week(self, db_session, make_user):
        me = await make_user()
        first = await build_league(db_session, me.id, MONDAY)

        progress = await db_session.get(UserProgress, me.id, populate_existing=True)
        progress.total_xp = 600
        await db_session.commit()

        later = await build_league(db_session, me.id, AS_OF)
        next_week = await build_league(db_session, me.id, MONDAY + timedelta(days=7))

        assert later.league_id == first.league_id
        assert later.tier == "bronze"
        assert next_week.tier == "silver"
        assert next_week.league_id != first.league_id
        count = await db_session.execute(select(func.count(League.id)))
        assert count.scalar_one() == 2


class TestStandings:
    @pytest.mark.asyncio
    async def test_ranked_by_this_weeks_xp(self, db_session, make_user):
        a = await make_user(display_name="A")
        b = await make_user(display_name="B")
        c = await make_user(display_name="C")
        for u in (a, b, c):
            await build_league(db_session, u.id, AS_OF)
        await _award(db_session, a, MONDAY - timedelta(days=2), 400)
        await _award(db_session, a, MONDAY, 30)
        await _award(db_session, b, AS_OF, 50)
        await _award(db_session, c, MONDAY, 30)

        standing = await build_league(db_session, c.id, AS_OF)

        assert [(e.user_id, e.rank, e.value) for e in standing.entries] == [
            (b.id, 1, 50),
            (a.id, 2, 30),
            (c.id, 3, 30),
        ]
        assert all(e.league == "bronze" for e in standing.entries)
        assert all(e.rank_change == 0 for e in standing.entries)

    @pytest.mark.asyncio
    async def test_private_member_hidden(self, db_session, make_user):
        a = await make_user()
        hidden = await make_user(is_ranking_private=True)
        for u in (a, hidden):
            await build_league(db_session, u.id, AS_OF)
        await _award(db_session, hidden, AS_OF, 90)

        standing = await build_league(db_session, hidden.id, AS_OF)

        assert [e.user_id for e in standing.entries] == [a.id]
        assert standing.total == 1
        assert [(e.user_id, e.rank) for e in standing.hidden] == [(hidden.id, 1)]

    @pytest.mark.asyncio
    async def test_invalid_size_rejected(self, db_session, make_user):
        me = await make_user()
        with pytest.raises(ValueError):
            await build_league(db_session, me.id, AS_OF, league_size=0)
