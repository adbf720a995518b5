from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from fastapi import FastAPI

from account_lifecycle.core.config import settings
from account_lifecycle.db.session import SessionLocal
from account_lifecycle.services import deletion_sweeper, leader_lock
from account_lifecycle.services.identity import IdentityGateway, build_identity_gateway

logger = logging.getLogger(__name__)

LOCK_NAME = "account_deletion_sweeper"


async def _run_once(identity: IdentityGateway) -> None:
    summary = await deletion_sweeper.run_sweep(session_factory=SessionLocal, identity=identity)
    if summary.failed:
        logger.warning(
            "account_deletion_scheduler_partial_failure",
            extra={"run_id": summary.run_id, "failed": len(summary.failed)},
        )


def _make_loop(identity: IdentityGateway):
    async def _loop(stop: asyncio.Event) -> None:
        interval = max(30, int(settings.account_deletion_poll_interval_seconds or 3600))
        while not stop.is_set():
            try:
                await _run_once(identity)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.warning("account_deletion_scheduler_failed", extra={"error": str(exc)})

            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=interval)

    return _loop


def start(app: FastAPI, identity: IdentityGateway | None = None) -> None:
    """In-process alternative to the external cron trigger; off by default."""
    if not settings.account_deletion_scheduler_enabled:
        return
    if getattr(app.state, "account_deletion_scheduler_task", None) is not None:
        return

    gateway = identity or build_identity_gateway(SessionLocal)
    stop_event = asyncio.Event()
    task = asyncio.create_task(leader_lock.run_as_leader(name=LOCK_NAME, stop=stop_event, work=_make_loop(gateway)))
    app.state.account_deletion_scheduler_stop = stop_event
    app.state.account_deletion_scheduler_task = task
    logger.info("account_deletion_scheduler_started")


async def stop(app: FastAPI) -> None:
    stop_event = getattr(app.state, "account_deletion_scheduler_stop", None)
    task = getattr(app.state, "account_deletion_scheduler_task", None)
    if stop_event:
        stop_event.set()
    if task:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    for attr in ("account_deletion_scheduler_stop", "account_deletion_scheduler_task"):
        if getattr(app.state, attr, None) is not None:
            delattr(app.state, attr)
