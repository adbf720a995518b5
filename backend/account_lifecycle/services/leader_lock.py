from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from account_lifecycle.core.config import settings
from account_lifecycle.db.session import engine

logger = logging.getLogger(__name__)

_RETRY_SECONDS = 15
_LOCK_ENGINE: AsyncEngine | None = None


def _supports_advisory_locks() -> bool:
    return (engine.url.get_backend_name() or "").lower() == "postgresql"


def lock_key(name: str) -> int:
    """Stable signed BIGINT derived from the lock name."""
    digest = hashlib.blake2b(str(name or "").encode("utf-8"), digest_size=8).digest()
    return int(int.from_bytes(digest, "big", signed=False) % (2**63 - 1))


def _lock_engine() -> AsyncEngine:
    # Advisory locks are session scoped, so the holder pins one connection for the whole loop.
    global _LOCK_ENGINE
    if _LOCK_ENGINE is None:
        _LOCK_ENGINE = create_async_engine(
            settings.database_url,
            echo=False,
            pool_size=1,
            max_overflow=0,
            pool_pre_ping=True,
        )
    return _LOCK_ENGINE


async def dispose() -> None:
    global _LOCK_ENGINE
    if _LOCK_ENGINE is not None:
        await _LOCK_ENGINE.dispose()
        _LOCK_ENGINE = None


async def run_as_leader(
    *,
    name: str,
    stop: asyncio.Event,
    work: Callable[[asyncio.Event], Awaitable[None]],
    retry_seconds: int = _RETRY_SECONDS,
) -> None:
    """Run ``work`` on exactly one replica.

    Uses a Postgres advisory lock; other backends (sqlite in tests and local
    dev) have a single process and run the work directly.
    """
    if not _supports_advisory_locks():
        await work(stop)
        return

    key = lock_key(name)
    retry = max(5, int(retry_seconds or _RETRY_SECONDS))

    while not stop.is_set():
        try:
            async with _lock_engine().connect() as conn:
                acquired = bool((await conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": key})).scalar())
                if not acquired:
                    with suppress(asyncio.TimeoutError):
                        await asyncio.wait_for(stop.wait(), timeout=retry)
                    continue

                logger.info("leader_lock_acquired", extra={"lock_name": name})
                try:
                    await work(stop)
                finally:
                    with suppress(Exception):
                        await conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": key})
                return
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.warning("leader_lock_failed", extra={"lock_name": name, "error": str(exc)})
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=retry)
