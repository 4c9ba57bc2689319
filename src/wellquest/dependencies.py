"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator
from datetime import date, datetime, timezone

from fastapi import HTTPException, Request

from wellquest.database import get_session as _get_session
from wellquest.gamification.catalog import MissionCatalog
from wellquest.gamification.events import EventChannel
from wellquest.redis_client import get_redis as _get_redis

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object | None, None]:
    """Yield the Redis client (or None) as a FastAPI dependency."""
    yield _get_redis()


def get_event_channel(request: Request) -> EventChannel:
    """Return the application's award notification channel."""
    return request.app.state.event_channel


def get_catalog(request: Request) -> MissionCatalog:
    """Return the mission catalog configured on the application."""
    return request.app.state.catalog


def resolve_local_date(local_date: date | None) -> date:
    """The caller's local calendar date, defaulting to today in UTC.

    Local dates more than one day away from the UTC date cannot belong to
    any real timezone and are rejected with 422.
    """
    today = datetime.now(timezone.utc).date()
    if local_date is None:
        return today
    if abs((local_date - today).days) > 1:
        raise HTTPException(status_code=422, detail=f"local_date {local_date} is not a current local date")
    return local_date
