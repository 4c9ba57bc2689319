"""Shared test fixtures.

Service and API tests run against an in-memory SQLite database built from
the ORM metadata. Redis is disabled (``None``) everywhere.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from wellquest.auth.jwt import create_access_token
from wellquest.config import Settings
from wellquest.db.base import Base
from wellquest.db.models import CircleConnection, User
from wellquest.dependencies import get_db, get_redis_dep
from wellquest.main import create_app

MakeUser = Callable[..., Awaitable[User]]


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db_session: AsyncSession) -> MakeUser:
    """Factory creating committed users: ``await make_user(country_code="ES")``."""

    async def _make(**kwargs) -> User:
        user = User(**kwargs)
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
def connect(db_session: AsyncSession) -> Callable[..., Awaitable[None]]:
    """Factory creating a circle connection between two users."""

    async def _connect(a: User, b: User, status: str = "accepted") -> None:
        db_session.add(CircleConnection(user_id=a.id, connected_user_id=b.id, status=status))
        await db_session.commit()

    return _connect


@pytest.fixture
def today():
    return datetime.now(timezone.utc).date()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(redis_enabled=False, log_format="console", jwt_secret="test-secret")


@pytest.fixture
def app(
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
    monkeypatch: pytest.MonkeyPatch,
) -> FastAPI:
    """App with the database and Redis dependencies overridden."""
    monkeypatch.setattr("wellquest.auth.jwt.get_settings", lambda: test_settings)
    monkeypatch.setattr("wellquest.gamification.router.get_settings", lambda: test_settings)
    monkeypatch.setattr("wellquest.ranking.router.get_settings", lambda: test_settings)

    app = create_app(settings=test_settings)

    async def _db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def _no_redis() -> AsyncGenerator[None, None]:
        yield None

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_redis_dep] = _no_redis
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers(test_settings: Settings) -> Callable[[int], dict[str, str]]:
    def _headers(user_id: int) -> dict[str, str]:
        token = create_access_token(user_id, settings=test_settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers
