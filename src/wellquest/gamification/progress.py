"""User progress row access."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wellquest.db.models import User, UserProgress
from wellquest.db.upsert import insert_ignoring_conflict
from wellquest.errors import UnknownUser


async def get_or_create_progress(
    db: AsyncSession,
    user_id: int,
    *,
    for_update: bool = False,
) -> UserProgress:
    """Get the user's progress row, creating it on first use.

    Creation is an idempotent insert so two first requests racing each other
    both end up reading the same row. With ``for_update`` the row stays
    locked until the surrounding transaction ends (ignored by SQLite).
    Raises UnknownUser when there is no profile to attach the row to.
    """
    exists = (await db.execute(select(User.id).where(User.id == user_id))).scalar_one_or_none()
    if exists is None:
        raise UnknownUser(user_id)

    await db.execute(
        insert_ignoring_conflict(db, UserProgress, {"user_id": user_id}, ["user_id"])
    )
    stmt = (
        select(UserProgress)
        .where(UserProgress.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one()
