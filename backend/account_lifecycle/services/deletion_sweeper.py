from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from account_lifecycle.core import metrics, security
from account_lifecycle.core.config import settings
from account_lifecycle.core.errors import SweepFailed, SweepUnauthorized
from account_lifecycle.services import deletion_store, profiles
from account_lifecycle.services.identity import IdentityGateway

logger = logging.getLogger(__name__)

_OUTCOME_DELETED = "deleted"
_OUTCOME_SKIPPED = "skipped"
_OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class SweepFailure:
    user_id: uuid.UUID
    request_id: uuid.UUID
    reason: str


@dataclass
class SweepSummary:
    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: list[SweepFailure] = field(default_factory=list)


@dataclass(frozen=True)
class _Candidate:
    request_id: uuid.UUID
    user_id: uuid.UUID


@dataclass(frozen=True)
class _ItemOutcome:
    candidate: _Candidate
    status: str
    reason: str | None = None


def authorize_trigger(presented_secret: str | None) -> None:
    """Fail closed: an unset CRON_SECRET rejects every caller."""
    if not security.secrets_match(presented_secret, settings.cron_secret):
        logger.warning("account_deletion_sweep_unauthorized")
        raise SweepUnauthorized()


async def _load_candidates(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    now: datetime,
    limit: int,
    stale_claim_before: datetime,
) -> list[_Candidate]:
    try:
        async with session_factory() as session:
            rows = await deletion_store.list_due_requests(
                session, now=now, limit=limit, stale_claim_before=stale_claim_before
            )
            return [_Candidate(request_id=row.id, user_id=row.user_id) for row in rows]
    except SQLAlchemyError as exc:
        logger.error("account_deletion_sweep_query_failed", extra={"error": str(exc)})
        raise SweepFailed(f"Failed to fetch deletion requests: {exc}") from exc


async def _release(
    session_factory: async_sessionmaker[AsyncSession],
    candidate: _Candidate,
    *,
    run_id: str,
    reason: str,
) -> None:
    try:
        async with session_factory() as session:
            await deletion_store.release_claim(session, candidate.request_id, claimed_by=run_id, error=reason)
    except SQLAlchemyError as exc:
        # The claim expires after the claim timeout, so the row is retried later anyway.
        logger.error(
            "account_deletion_claim_release_failed",
            extra={"request_id": str(candidate.request_id), "error": str(exc)},
        )


async def _finalize(
    session_factory: async_sessionmaker[AsyncSession],
    candidate: _Candidate,
    *,
    now: datetime,
) -> None:
    try:
        async with session_factory() as session:
            await deletion_store.mark_purged(session, candidate.request_id, now=now)
            await profiles.delete_profile(session, candidate.user_id)
            await session.commit()
    except SQLAlchemyError as exc:
        # Identity is already gone; a later run re-claims after the timeout and the idempotent delete succeeds.
        logger.error(
            "account_deletion_finalize_failed",
            extra={"request_id": str(candidate.request_id), "user_id": str(candidate.user_id), "error": str(exc)},
        )


async def _process_candidate(
    candidate: _Candidate,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    identity: IdentityGateway,
    semaphore: asyncio.Semaphore,
    run_id: str,
    now: datetime,
    claim_timeout: int,
    item_timeout: float,
) -> _ItemOutcome:
    async with semaphore:
        # Claims are stamped with the wall clock at claim time; `now` only decides which rows are due.
        claimed_at = deletion_store.utcnow()
        try:
            async with session_factory() as session:
                claimed = await deletion_store.claim_request(
                    session,
                    candidate.request_id,
                    claimed_by=run_id,
                    now=claimed_at,
                    stale_claim_before=claimed_at - timedelta(seconds=claim_timeout),
                )
        except SQLAlchemyError as exc:
            return _ItemOutcome(candidate, _OUTCOME_FAILED, f"claim failed: {exc}")
        if not claimed:
            return _ItemOutcome(candidate, _OUTCOME_SKIPPED)

        try:
            existed = await asyncio.wait_for(identity.delete_user(candidate.user_id), timeout=item_timeout)
        except asyncio.TimeoutError:
            reason = f"identity deletion timed out after {item_timeout:g}s"
            await _release(session_factory, candidate, run_id=run_id, reason=reason)
            return _ItemOutcome(candidate, _OUTCOME_FAILED, reason)
        except Exception as exc:
            reason = str(exc) or exc.__class__.__name__
            await _release(session_factory, candidate, run_id=run_id, reason=reason)
            return _ItemOutcome(candidate, _OUTCOME_FAILED, reason)

        if not existed:
            logger.info("account_deletion_identity_absent", extra={"user_id": str(candidate.user_id)})
        await _finalize(session_factory, candidate, now=now)
        return _ItemOutcome(candidate, _OUTCOME_DELETED)


def _record_outcome(summary: SweepSummary, outcome: _ItemOutcome, *, run_id: str) -> None:
    context = {
        "run_id": run_id,
        "user_id": str(outcome.candidate.user_id),
        "request_id": str(outcome.candidate.request_id),
    }
    if outcome.status == _OUTCOME_DELETED:
        summary.succeeded += 1
        logger.info("account_deletion_purged", extra=context)
    elif outcome.status == _OUTCOME_SKIPPED:
        summary.skipped += 1
        logger.info("account_deletion_claimed_elsewhere", extra=context)
    else:
        reason = outcome.reason or "unknown error"
        summary.failed.append(
            SweepFailure(user_id=outcome.candidate.user_id, request_id=outcome.candidate.request_id, reason=reason)
        )
        logger.error("account_deletion_purge_failed", extra={**context, "error": reason})


async def run_sweep(
    *,
    session_factory: async_sessionmaker[AsyncSession],
    identity: IdentityGateway,
    now: datetime | None = None,
    limit: int | None = None,
    concurrency: int | None = None,
    claim_timeout_seconds: int | None = None,
    item_timeout_seconds: float | None = None,
) -> SweepSummary:
    """Hard-delete every overdue, non-restored request's identity.

    Items are independent: each runs in its own task and session, and a
    failure or timeout is recorded on the summary without touching siblings.
    """
    run_id = uuid.uuid4().hex
    started_at = deletion_store.utcnow()
    now_utc = deletion_store.ensure_utc(now) or started_at
    limit_clean = max(1, min(int(limit or settings.account_deletion_batch_limit or 200), 5000))
    concurrency_clean = max(1, int(concurrency or settings.account_deletion_sweep_concurrency or 1))
    claim_timeout = max(1, int(claim_timeout_seconds or settings.account_deletion_claim_timeout_seconds or 900))
    item_timeout = float(item_timeout_seconds or settings.account_deletion_item_timeout_seconds or 30.0)
    stale_claim_before = started_at - timedelta(seconds=claim_timeout)

    logger.info("account_deletion_sweep_started", extra={"run_id": run_id})
    candidates = await _load_candidates(
        session_factory, now=now_utc, limit=limit_clean, stale_claim_before=stale_claim_before
    )
    summary = SweepSummary(run_id=run_id, started_at=started_at, processed=len(candidates))

    if candidates:
        semaphore = asyncio.Semaphore(concurrency_clean)
        results = await asyncio.gather(
            *(
                _process_candidate(
                    candidate,
                    session_factory=session_factory,
                    identity=identity,
                    semaphore=semaphore,
                    run_id=run_id,
                    now=now_utc,
                    claim_timeout=claim_timeout,
                    item_timeout=item_timeout,
                )
                for candidate in candidates
            ),
            return_exceptions=True,
        )
        for candidate, result in zip(candidates, results):
            if isinstance(result, BaseException):
                result = _ItemOutcome(candidate, _OUTCOME_FAILED, str(result) or result.__class__.__name__)
            _record_outcome(summary, result, run_id=run_id)

    summary.finished_at = deletion_store.utcnow()
    metrics.record_sweep(succeeded=summary.succeeded, failed=len(summary.failed), skipped=summary.skipped)
    logger.info(
        "account_deletion_sweep_completed",
        extra={
            "run_id": run_id,
            "processed": summary.processed,
            "succeeded": summary.succeeded,
            "skipped": summary.skipped,
            "failed": len(summary.failed),
        },
    )
    return summary


async def trigger_sweep(
    presented_secret: str | None,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    identity: IdentityGateway,
    now: datetime | None = None,
) -> SweepSummary:
    """Entry point for the external periodic trigger."""
    authorize_trigger(presented_secret)
    return await run_sweep(session_factory=session_factory, identity=identity, now=now)
