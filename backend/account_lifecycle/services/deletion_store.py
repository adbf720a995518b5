from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from account_lifecycle.core import security
from account_lifecycle.models.deletion import AccountDeletionRequest

_MAX_ERROR_LENGTH = 2000


def ensure_utc(dt: datetime | None) -> datetime | None:
    if not dt:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _open_request_clause():
    return sa.and_(
        AccountDeletionRequest.is_restored.is_(False),
        AccountDeletionRequest.purged_at.is_(None),
    )


def is_eligible_for_purge(request: AccountDeletionRequest, *, now: datetime | None = None) -> bool:
    if request.is_restored or request.purged_at is not None:
        return False
    scheduled = ensure_utc(request.scheduled_for_deletion_at)
    now_utc = ensure_utc(now) or utcnow()
    return scheduled is not None and now_utc > scheduled


async def create_request(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    grace_period: timedelta,
    now: datetime | None = None,
) -> AccountDeletionRequest:
    """Insert an open request. Flushes but does not commit."""
    now_utc = ensure_utc(now) or utcnow()
    request = AccountDeletionRequest(
        user_id=user_id,
        requested_at=now_utc,
        scheduled_for_deletion_at=now_utc + grace_period,
        restoration_token=security.generate_restoration_token(),
        is_restored=False,
        attempts=0,
    )
    session.add(request)
    await session.flush()
    return request


async def get_open_request_for_user(session: AsyncSession, user_id: uuid.UUID) -> AccountDeletionRequest | None:
    result = await session.execute(
        sa.select(AccountDeletionRequest)
        .where(AccountDeletionRequest.user_id == user_id, _open_request_clause())
        .order_by(AccountDeletionRequest.requested_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_by_token(session: AsyncSession, token: str) -> AccountDeletionRequest | None:
    result = await session.execute(
        sa.select(AccountDeletionRequest).where(AccountDeletionRequest.restoration_token == token)
    )
    return result.scalar_one_or_none()


async def mark_restored(session: AsyncSession, request_id: uuid.UUID, *, now: datetime | None = None) -> bool:
    """Conditionally flip an open, unclaimed request to restored. False when the guard no longer holds."""
    result = await session.execute(
        sa.update(AccountDeletionRequest)
        .where(
            AccountDeletionRequest.id == request_id,
            _open_request_clause(),
            AccountDeletionRequest.claimed_at.is_(None),
        )
        .values(is_restored=True, restored_at=ensure_utc(now) or utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def list_due_requests(
    session: AsyncSession,
    *,
    now: datetime,
    limit: int,
    stale_claim_before: datetime,
) -> Sequence[AccountDeletionRequest]:
    """Overdue, open requests not held by a live claim, oldest deadline first."""
    result = await session.execute(
        sa.select(AccountDeletionRequest)
        .where(
            _open_request_clause(),
            AccountDeletionRequest.scheduled_for_deletion_at < now,
            sa.or_(
                AccountDeletionRequest.claimed_at.is_(None),
                AccountDeletionRequest.claimed_at < stale_claim_before,
            ),
        )
        .order_by(AccountDeletionRequest.scheduled_for_deletion_at.asc())
        .limit(max(1, int(limit)))
    )
    return result.scalars().all()


async def claim_request(
    session: AsyncSession,
    request_id: uuid.UUID,
    *,
    claimed_by: str,
    now: datetime,
    stale_claim_before: datetime,
) -> bool:
    """Optimistic claim; exactly one concurrent caller wins. Commits."""
    result = await session.execute(
        sa.update(AccountDeletionRequest)
        .where(
            AccountDeletionRequest.id == request_id,
            _open_request_clause(),
            AccountDeletionRequest.scheduled_for_deletion_at < now,
            sa.or_(
                AccountDeletionRequest.claimed_at.is_(None),
                AccountDeletionRequest.claimed_at < stale_claim_before,
            ),
        )
        .values(claimed_at=now, claimed_by=claimed_by)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1


async def release_claim(session: AsyncSession, request_id: uuid.UUID, *, claimed_by: str, error: str) -> None:
    await session.execute(
        sa.update(AccountDeletionRequest)
        .where(AccountDeletionRequest.id == request_id, AccountDeletionRequest.claimed_by == claimed_by)
        .values(
            claimed_at=None,
            claimed_by=None,
            attempts=AccountDeletionRequest.attempts + 1,
            last_error=(error or "unknown error")[:_MAX_ERROR_LENGTH],
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()


async def mark_purged(session: AsyncSession, request_id: uuid.UUID, *, now: datetime) -> None:
    """Terminal state; the row stays as an audit record and is never selected again. Does not commit."""
    await session.execute(
        sa.update(AccountDeletionRequest)
        .where(AccountDeletionRequest.id == request_id)
        .values(purged_at=now, attempts=AccountDeletionRequest.attempts + 1, last_error=None)
        .execution_options(synchronize_session=False)
    )
