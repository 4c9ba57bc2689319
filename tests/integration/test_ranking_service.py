"""Service tests for the ranking aggregator."""

from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from wellquest.db.models import MissionAward, UserProgress, Victory
from wellquest.ranking import ranking_service
from wellquest.ranking.ranking_service import build_ranking, find_self, generate_alias

AS_OF = date(2026, 10, 21)  # Wednesday, ISO week 2026-W43
THIS_WEEK = date(2026, 10, 20)
LAST_WEEK = date(2026, 10, 14)


async def _progress(db, user, *, total_xp=0, streak=0, last_check_in=None):
    db.add(UserProgress(
        user_id=user.id,
        total_xp=total_xp,
        current_streak=streak,
        longest_streak=streak,
        last_check_in=last_check_in,
    ))
    await db.commit()


async def _award(db, user, day, xp, mission_id="hero"):
    db.add(MissionAward(
        user_id=user.id, mission_id=mission_id, category=mission_id,
        award_date=day, xp_earned=xp, award_metadata={},
    ))
    await db.commit()


async def _victory(db, user, day, xp=10):
    db.add(Victory(user_id=user.id, victory_date=day, text="win", xp_bonus=xp))
    await db.commit()


class FakeRedis:
    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value


class BrokenRedis:
    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ex=None):
        raise ConnectionError("redis down")


class TestGlobalXp:
    @pytest.mark.asyncio
    async def test_weekly_order_and_ties(self, db_session, make_user):
        a = await make_user(display_name="A")
        b = await make_user(display_name="B")
        c = await make_user(display_name="C")
        for u in (a, b, c):
            await _progress(db_session, u)
        await _award(db_session, a, THIS_WEEK, 50)
        await _award(db_session, a, LAST_WEEK, 500)
        await _award(db_session, b, THIS_WEEK, 80)
        await _award(db_session, c, THIS_WEEK, 50)

        ranking = await build_ranking(db_session, a.id, "weekly", "global", "xp", as_of=AS_OF)

        assert [(e.user_id, e.rank, e.value) for e in ranking.entries] == [
            (b.id, 1, 80),
            (a.id, 2, 50),
            (c.id, 3, 50),
        ]
        assert ranking.window_key == "2026-W43"

    @pytest.mark.asyncio
    async def test_rank_change_against_previous_week(self, db_session, make_user):
        a = await make_user()
        b = await make_user()
        c = await make_user()
        for u in (a, b, c):
            await _progress(db_session, u)
        await _award(db_session, a, LAST_WEEK, 500)
        await _award(db_session, b, THIS_WEEK, 80)
        await _award(db_session, a, THIS_WEEK, 50)

        ranking = await build_ranking(db_session, a.id, "weekly", "global", "xp", as_of=AS_OF)
        changes = {e.user_id: e.rank_change for e in ranking.entries}

        assert changes == {b.id: 1, a.id: -1, c.id: 0}

    @pytest.mark.asyncio
    async def test_victory_bonus_counts_as_xp(self, db_session, make_user):
        a = await make_user()
        b = await make_user()
        await _progress(db_session, a)
        await _progress(db_session, b)
        await _award(db_session, a, THIS_WEEK, 20)
        await _victory(db_session, b, THIS_WEEK, xp=10)
        await _victory(db_session, b, THIS_WEEK, xp=10)
        await _victory(db_session, b, THIS_WEEK, xp=10)

        ranking = await build_ranking(db_session, a.id, "weekly", "global", "xp", as_of=AS_OF)
        assert [(e.user_id, e.value) for e in ranking.entries] == [(b.id, 30), (a.id, 20)]

    @pytest.mark.asyncio
    async def test_repeated_builds_are_identical(self, db_session, make_user):
        users = [await make_user() for _ in range(6)]
        for i, u in enumerate(users):
            await _progress(db_session, u)
            await _award(db_session, u, THIS_WEEK, 10 * (i % 3))

        first = await build_ranking(db_session, users[0].id, "weekly", "global", "xp", as_of=AS_OF)
        second = await build_ranking(db_session, users[0].id, "weekly", "global", "xp", as_of=AS_OF)

        assert first.to_dict() == second.to_dict()
        assert [e.rank for e in first.entries] == list(range(1, 7))

    @pytest.mark.asyncio
    async def test_users_without_progress_are_not_ranked_globally(self, db_session, make_user):
        a = await make_user()
        await make_user()
        await _progress(db_session, a)

        ranking = await build_ranking(db_session, a.id, "weekly", "global", "xp", as_of=AS_OF)
        assert [e.user_id for e in ranking.entries] == [a.id]

    @pytest.mark.asyncio
    async def test_alias_falls_back_to_generated(self, db_session, make_user):
        named = await make_user(display_name="Lu")
        anonymous = await make_user()
        await _progress(db_session, named)
        await _progress(db_session, anonymous)

        ranking = await build_ranking(db_session, named.id, "weekly", "global", "xp", as_of=AS_OF)
        aliases = {e.user_id: e.alias for e in ranking.entries}

        assert aliases[named.id] == "Lu"
        assert aliases[anonymous.id] == generate_alias(anonymous.id)


class TestPrivacy:
    @pytest.mark.asyncio
    async def test_private_user_hidden_but_found(self, db_session, make_user):
        a = await make_user()
        hidden = await make_user(is_ranking_private=True)
        b = await make_user()
        for u in (a, hidden, b):
            await _progress(db_session, u)
        await _award(db_session, a, THIS_WEEK, 60)
        await _award(db_session, hidden, THIS_WEEK, 40)
        await _award(db_session, b, THIS_WEEK, 20)

        ranking = await build_ranking(db_session, hidden.id, "weekly", "global", "xp", as_of=AS_OF)

        assert [(e.user_id, e.rank) for e in ranking.entries] == [(a.id, 1), (b.id, 2)]
        assert ranking.total == 2
        me = find_self(hidden.id, ranking)
        assert me is not None
        assert me.is_private is True
        assert me.rank == 2
        assert me.value == 40


class TestScopes:
    @pytest.mark.asyncio
    async def test_circle_is_requester_plus_accepted_connections(self, db_session, make_user, connect):
        me = await make_user()
        friend = await make_user()
        follower = await make_user()
        pending = await make_user()
        stranger = await make_user()
        for u in (me, friend, follower, pending, stranger):
            await _progress(db_session, u)
        await connect(me, friend)
        await connect(follower, me)
        await connect(me, pending, status="pending")

        ranking = await build_ranking(db_session, me.id, "weekly", "circle", "xp", as_of=AS_OF)
        assert {e.user_id for e in ranking.entries} == {me.id, friend.id, follower.id}

    @pytest.mark.asyncio
    async def test_circle_without_connections_is_empty(self, db_session, make_user):
        me = await make_user()
        await _progress(db_session, me)

        ranking = await build_ranking(db_session, me.id, "weekly", "circle", "xp", as_of=AS_OF)

        assert ranking.entries == []
        assert ranking.total == 0
        assert find_self(me.id, ranking) is None

    @pytest.mark.asyncio
    async def test_country(self, db_session, make_user):
        me = await make_user(country_code="ES")
        compatriot = await make_user(country_code="ES")
        await make_user(country_code="FR")

        ranking = await build_ranking(db_session, me.id, "monthly", "country", "xp", as_of=AS_OF)
        assert {e.user_id for e in ranking.entries} == {me.id, compatriot.id}

    @pytest.mark.asyncio
    async def test_country_unknown_is_empty(self, db_session, make_user):
        me = await make_user()
        await make_user(country_code="ES")

        ranking = await build_ranking(db_session, me.id, "weekly", "country", "xp", as_of=AS_OF)
        assert ranking.entries == []


class TestMetrics:
    @pytest.mark.asyncio
    async def test_victories_in_month(self, db_session, make_user):
        a = await make_user()
        b = await make_user()
        await _progress(db_session, a)
        await _progress(db_session, b)
        await _victory(db_session, a, date(2026, 10, 2))
        await _victory(db_session, b, date(2026, 10, 3))
        await _victory(db_session, b, date(2026, 10, 20))
        await _victory(db_session, a, date(2026, 9, 30))

        ranking = await build_ranking(db_session, a.id, "monthly", "global", "victories", as_of=AS_OF)
        assert [(e.user_id, e.value) for e in ranking.entries] == [(b.id, 2), (a.id, 1)]
        # September: a 1, b 0
        assert {e.user_id: e.rank_change for e in ranking.entries} == {b.id: 1, a.id: -1}

    @pytest.mark.asyncio
    async def test_streak_uses_effective_streak_and_no_deltas(self, db_session, make_user):
        active = await make_user()
        lapsed = await make_user()
        await _progress(db_session, active, streak=5, last_check_in=AS_OF)
        await _progress(db_session, lapsed, streak=9, last_check_in=AS_OF - timedelta(days=3))

        ranking = await build_ranking(db_session, active.id, "weekly", "global", "streak", as_of=AS_OF)

        assert [(e.user_id, e.value) for e in ranking.entries] == [(active.id, 5), (lapsed.id, 0)]
        assert all(e.rank_change == 0 for e in ranking.entries)

    @pytest.mark.asyncio
    async def test_historical_uses_total_xp(self, db_session, make_user):
        a = await make_user()
        b = await make_user()
        await _progress(db_session, a, total_xp=3_200)
        await _progress(db_session, b, total_xp=450)

        ranking = await build_ranking(db_session, b.id, "historical", "global", "xp", as_of=AS_OF)

        top = ranking.entries[0]
        assert (top.user_id, top.value, top.league, top.level) == (a.id, 3_200, "gold", 6)
        assert ranking.entries[1].league == "bronze"

    @pytest.mark.asyncio
    async def test_level_filter(self, db_session, make_user):
        low = await make_user()
        mid = await make_user()
        high = await make_user()
        await _progress(db_session, low, total_xp=50)
        await _progress(db_session, mid, total_xp=150)
        await _progress(db_session, high, total_xp=950)

        ranking = await build_ranking(db_session, low.id, "historical", "global", "xp", level_filter=2, as_of=AS_OF)
        assert [e.user_id for e in ranking.entries] == [mid.id]

    @pytest.mark.asyncio
    async def test_invalid_dimension_rejected(self, db_session, make_user):
        me = await make_user()
        with pytest.raises(ValueError):
            await build_ranking(db_session, me.id, "yearly", "global", "xp", as_of=AS_OF)

class TestRankChange:
    @pytest.mark.asyncio
    async def test_historical_compares_with_end_of_previous_week(self, db_session, make_user):
        early = await make_user()
        late = await make_user()
        await _progress(db_session, early, total_xp=100)
        await _progress(db_session, late, total_xp=150)
        await _award(db_session, early, LAST_WEEK, 100)
        await _award(db_session, late, THIS_WEEK, 150)

        ranking = await build_ranking(db_session, early.id, "historical", "global", "xp", as_of=AS_OF)

        assert [(e.user_id, e.rank, e.rank_change) for e in ranking.entries] == [
            (late.id, 1, 1),
            (early.id, 2, -1),
        ]

    @pytest.mark.asyncio
    async def test_unavailable_previous_window_gives_zero_deltas(self, db_session, make_user, monkeypatch):
        a = await make_user()
        b = await make_user()
        await _progress(db_session, a)
        await _progress(db_session, b)
        await _award(db_session, a, LAST_WEEK, 500)
        await _award(db_session, b, THIS_WEEK, 80)

        calls = []
        real_xp_in_window = ranking_service._xp_in_window

        async def failing_on_previous(*args, **kwargs):
            calls.append(args[1:3])
            if len(calls) == 2:
                raise OperationalError("SELECT mission_awards", {}, Exception("statement timeout"))
            return await real_xp_in_window(*args, **kwargs)

        monkeypatch.setattr(ranking_service, "_xp_in_window", failing_on_previous)

        ranking = await build_ranking(db_session, a.id, "weekly", "global", "xp", as_of=AS_OF)

        assert len(calls) == 2
        assert [(e.user_id, e.rank, e.value) for e in ranking.entries] == [(b.id, 1, 80), (a.id, 2, 0)]
        assert all(e.rank_change == 0 for e in ranking.entries)



class TestCache:
    @pytest.mark.asyncio
    async def test_cached_ranking_is_reused(self, db_session, make_user):
        a = await make_user()
        await _progress(db_session, a)
        await _award(db_session, a, THIS_WEEK, 20)
        redis = FakeRedis()

        first = await build_ranking(db_session, a.id, "weekly", "global", "xp", as_of=AS_OF, redis=redis)
        await _award(db_session, a, THIS_WEEK, 30, mission_id="calm")
        second = await build_ranking(db_session, a.id, "weekly", "global", "xp", as_of=AS_OF, redis=redis)

        assert len(redis.store) == 1
        assert second == first
        assert second.entries[0].value == 20

    @pytest.mark.asyncio
    async def test_cache_failure_is_ignored(self, db_session, make_user):
        a = await make_user()
        await _progress(db_session, a)

        ranking = await build_ranking(
            db_session, a.id, "weekly", "global", "xp", as_of=AS_OF, redis=BrokenRedis(),
        )
        assert [e.user_id for e in ranking.entries] == [a.id]
