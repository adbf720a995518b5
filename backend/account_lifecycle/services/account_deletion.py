from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from account_lifecycle.core import metrics
from account_lifecycle.core.config import settings
from account_lifecycle.core.errors import (
    AccountNotFound,
    AlreadyRestored,
    DeletionAlreadyPending,
    DeletionInProgress,
    DeletionStoreError,
    InvalidRestorationToken,
    MissingInput,
    UpstreamError,
)
from account_lifecycle.services import deletion_store, profiles
from account_lifecycle.services import email as email_service
from account_lifecycle.services.identity import IdentityGateway, IdentityProviderError

logger = logging.getLogger(__name__)

INITIATED_MESSAGE = "Account deletion process initiated. An email has been sent to you."
RESTORED_MESSAGE = "Your account has been successfully restored."


@dataclass(frozen=True)
class DeletionNotice:
    user_id: uuid.UUID
    email: str | None
    restoration_token: str
    scheduled_for: datetime


@dataclass(frozen=True)
class DeletionInitiated:
    message: str
    request_id: uuid.UUID
    scheduled_for_deletion_at: datetime


@dataclass(frozen=True)
class AccountRestored:
    message: str
    user_id: uuid.UUID


@dataclass(frozen=True)
class DeletionStatus:
    pending: bool
    requested_at: datetime | None = None
    scheduled_for_deletion_at: datetime | None = None


def grace_period() -> timedelta:
    return timedelta(days=max(1, int(settings.account_deletion_grace_days or 30)))


async def send_deletion_notice(notice: DeletionNotice) -> bool:
    """Best-effort cancellation email. Never raises: the deletion is already recorded."""
    if not notice.email:
        logger.warning("account_deletion_notice_skipped", extra={"user_id": str(notice.user_id), "reason": "no_email"})
        return False
    try:
        sent = await email_service.send_account_deletion_scheduled(
            notice.email, notice.restoration_token, notice.scheduled_for, grace_days=grace_period().days
        )
    except Exception:
        logger.exception("account_deletion_notice_failed", extra={"user_id": str(notice.user_id)})
        metrics.record_notification_failure()
        return False
    if not sent:
        logger.warning("account_deletion_notice_not_sent", extra={"user_id": str(notice.user_id)})
        metrics.record_notification_failure()
    return bool(sent)


async def initiate_account_deletion(
    session: AsyncSession,
    user_id: uuid.UUID,
    *,
    identity: IdentityGateway,
    notify: Callable[[DeletionNotice], object] | None = None,
    now: datetime | None = None,
) -> DeletionInitiated:
    """Deactivate the profile and schedule hard deletion after the grace period.

    The profile flag and the request row are written in one transaction, so a
    failure leaves neither behind. ``notify`` receives the notice to dispatch;
    when omitted the email is sent inline (still best-effort).
    """
    now_utc = deletion_store.ensure_utc(now) or deletion_store.utcnow()

    try:
        account = await identity.get_account(user_id)
    except IdentityProviderError as exc:
        raise UpstreamError(f"Failed to load account: {exc}") from exc
    if account is None:
        raise AccountNotFound()

    try:
        if await deletion_store.get_open_request_for_user(session, user_id) is not None:
            raise DeletionAlreadyPending()
        await profiles.set_deactivated_at(session, user_id, now_utc)
        request = await deletion_store.create_request(session, user_id=user_id, grace_period=grace_period(), now=now_utc)
        notice = DeletionNotice(
            user_id=user_id,
            email=account.email,
            restoration_token=request.restoration_token,
            scheduled_for=request.scheduled_for_deletion_at,
        )
        result = DeletionInitiated(
            message=INITIATED_MESSAGE,
            request_id=request.id,
            scheduled_for_deletion_at=request.scheduled_for_deletion_at,
        )
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        # Lost a race with a concurrent initiate for the same user.
        raise DeletionAlreadyPending() from exc
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("account_deletion_initiate_failed", extra={"user_id": str(user_id), "error": str(exc)})
        raise DeletionStoreError() from exc

    metrics.record_deletion_initiated()
    logger.info(
        "account_deletion_initiated",
        extra={
            "user_id": str(user_id),
            "request_id": str(result.request_id),
            "scheduled_for": result.scheduled_for_deletion_at.isoformat(),
        },
    )

    if notify is None:
        await send_deletion_notice(notice)
    else:
        try:
            notify(notice)
        except Exception:
            logger.exception("account_deletion_notice_dispatch_failed", extra={"user_id": str(user_id)})
    return result


async def restore_account(
    session: AsyncSession,
    token: str | None,
    *,
    now: datetime | None = None,
) -> AccountRestored:
    token_clean = (token or "").strip()
    if not token_clean:
        raise MissingInput("Restoration token is required.")

    try:
        request = await deletion_store.get_by_token(session, token_clean)
    except SQLAlchemyError as exc:
        raise DeletionStoreError("Failed to look up the restoration token, please retry.") from exc
    if request is None:
        raise InvalidRestorationToken()
    if request.is_restored:
        raise AlreadyRestored()
    if request.purged_at is not None or request.claimed_at is not None:
        raise DeletionInProgress()

    request_id = request.id
    user_id = request.user_id
    try:
        await profiles.set_deactivated_at(session, user_id, None)
        restored = await deletion_store.mark_restored(session, request_id, now=now)
        if not restored:
            await session.rollback()
        else:
            await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("account_restore_failed", extra={"request_id": str(request_id), "error": str(exc)})
        raise DeletionStoreError("Failed to restore the account, please retry.") from exc

    if not restored:
        # Someone else moved the row between our read and the guarded update.
        await session.refresh(request)
        if request.is_restored:
            raise AlreadyRestored()
        raise DeletionInProgress()

    metrics.record_account_restored()
    logger.info("account_restored", extra={"user_id": str(user_id), "request_id": str(request_id)})
    return AccountRestored(message=RESTORED_MESSAGE, user_id=user_id)


async def get_deletion_status(session: AsyncSession, user_id: uuid.UUID) -> DeletionStatus:
    request = await deletion_store.get_open_request_for_user(session, user_id)
    if request is None:
        return DeletionStatus(pending=False)
    return DeletionStatus(
        pending=True,
        requested_at=deletion_store.ensure_utc(request.requested_at),
        scheduled_for_deletion_at=deletion_store.ensure_utc(request.scheduled_for_deletion_at),
    )
