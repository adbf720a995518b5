from __future__ import annotations

import logging
import math
import time
from collections import defaultdict, deque
from typing import Awaitable, Callable, DefaultDict, Deque, Hashable

from fastapi import HTTPException, Request, status

from account_lifecycle.core.redis_client import get_redis

WindowBucket = Deque[float]

logger = logging.getLogger(__name__)


def _too_many_requests(retry_after_seconds: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Too many requests",
        headers={"Retry-After": str(max(1, retry_after_seconds))},
    )


def _enforce_limit(bucket: WindowBucket, limit: int, window_seconds: int, now: float) -> None:
    while bucket and now - bucket[0] > window_seconds:
        bucket.popleft()
    if len(bucket) >= limit:
        retry_after = int(math.ceil(bucket[0] + window_seconds - now)) if bucket else 1
        raise _too_many_requests(retry_after)
    bucket.append(now)


async def _enforce_limit_redis(*, key: Hashable, identifier: Hashable, limit: int, window_seconds: int, now: float) -> bool:
    """Fixed-window counter in Redis. Returns False when Redis is unavailable so the caller falls back to memory."""
    client = get_redis()
    if client is None:
        return False
    try:
        now_int = int(now)
        window = now_int // max(1, int(window_seconds))
        redis_key = f"rate_limit:{key}:{identifier}:{window}"
        count = await client.incr(redis_key)
        if count == 1:
            await client.expire(redis_key, int(window_seconds))
        if int(count) > int(limit):
            raise _too_many_requests(int(window_seconds) - (now_int % max(1, int(window_seconds))))
        return True
    except HTTPException:
        raise
    except Exception as exc:
        logger.warning("redis_rate_limit_failed", extra={"error": str(exc)})
        return False


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "anon"


def per_identifier_limiter(
    identifier_fn: Callable[[Request], Hashable],
    limit: int,
    window_seconds: int,
    key: Hashable,
) -> Callable[[Request], Awaitable[None]]:
    """
    Rate limiter keyed by a dynamic identifier (e.g., client IP).

    Args:
        identifier_fn: function that maps the request to an identifier.
        limit: max requests allowed in the window; <= 0 disables the limiter.
        window_seconds: rolling window length in seconds.
        key: bucket namespace (e.g., "account:restore").
    """
    buckets: DefaultDict[Hashable, WindowBucket] = defaultdict(deque)

    async def dependency(request: Request) -> None:
        if limit <= 0:
            return
        ident = identifier_fn(request)
        now = time.time()
        enforced = await _enforce_limit_redis(key=key, identifier=ident, limit=limit, window_seconds=window_seconds, now=now)
        if not enforced:
            _enforce_limit(buckets[ident], limit, window_seconds, now)

    dependency.buckets = buckets  # type: ignore[attr-defined]
    return dependency
