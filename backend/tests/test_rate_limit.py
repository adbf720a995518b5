import asyncio

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from account_lifecycle.core.rate_limit import client_ip, per_identifier_limiter


def _request(host: str) -> Request:
    return Request({"type": "http", "method": "POST", "path": "/", "headers": [], "client": (host, 1234)})


def test_limiter_blocks_after_limit_per_identifier() -> None:
    limiter = per_identifier_limiter(client_ip, 2, 60, "test:restore")

    async def scenario() -> None:
        await limiter(_request("10.0.0.1"))
        await limiter(_request("10.0.0.1"))
        with pytest.raises(HTTPException) as exc:
            await limiter(_request("10.0.0.1"))
        assert exc.value.status_code == 429
        assert int(exc.value.headers["Retry-After"]) >= 1
        # Other callers keep their own bucket.
        await limiter(_request("10.0.0.2"))

    asyncio.run(scenario())
    assert set(limiter.buckets) == {"10.0.0.1", "10.0.0.2"}


def test_limiter_disabled_with_zero_limit() -> None:
    limiter = per_identifier_limiter(client_ip, 0, 60, "test:off")

    async def scenario() -> None:
        for _ in range(50):
            await limiter(_request("10.0.0.1"))

    asyncio.run(scenario())
    assert not limiter.buckets
