from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from account_lifecycle.models.user import Profile


async def get_profile(session: AsyncSession, user_id: uuid.UUID) -> Profile | None:
    return await session.get(Profile, user_id)


async def set_deactivated_at(session: AsyncSession, user_id: uuid.UUID, value: datetime | None) -> None:
    """Set or clear the soft-lock flag. Does not commit; callers own the transaction."""
    result = await session.execute(sa.update(Profile).where(Profile.id == user_id).values(deactivated_at=value))
    if result.rowcount == 0 and value is not None:
        session.add(Profile(id=user_id, deactivated_at=value))
    await session.flush()


async def delete_profile(session: AsyncSession, user_id: uuid.UUID) -> int:
    result = await session.execute(sa.delete(Profile).where(Profile.id == user_id))
    return int(result.rowcount or 0)
