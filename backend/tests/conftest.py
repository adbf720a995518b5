import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Iterable

import pytest

# Keep tests hermetic: no outbound Sentry, no Postgres, no Redis.
os.environ["SENTRY_DSN"] = ""
os.environ["REDIS_URL"] = ""
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from account_lifecycle import models  # noqa: E402,F401
from account_lifecycle.api.v1 import account as account_api  # noqa: E402
from account_lifecycle.core import metrics  # noqa: E402
from account_lifecycle.db.base import Base  # noqa: E402
from account_lifecycle.services.identity import (  # noqa: E402
    IdentityAccount,
    IdentityGateway,
    IdentityProviderError,
    LinkedIdentity,
)

CRON_SECRET = "test-cron-secret-0123456789abcdef0123456789"


class FakeIdentityGateway(IdentityGateway):
    """In-memory identity provider that records every call."""

    def __init__(self) -> None:
        self.accounts: dict[uuid.UUID, IdentityAccount] = {}
        self.calls: list[tuple[str, uuid.UUID]] = []
        self.delete_failures: dict[uuid.UUID, Exception] = {}
        self.delete_delay: float = 0.0
        self.unlink_error: IdentityProviderError | None = None
        self.get_error: IdentityProviderError | None = None
        self.unlink_tokens: list[str | None] = []

    def add_account(
        self,
        *,
        email: str = "user@example.com",
        has_password: bool = True,
        providers: Iterable[str] = (),
        user_id: uuid.UUID | None = None,
    ) -> IdentityAccount:
        account = IdentityAccount(
            user_id=user_id or uuid.uuid4(),
            email=email,
            has_password=has_password,
            identities=[LinkedIdentity(id=uuid.uuid4().hex, provider=p, email=email) for p in providers],
        )
        self.accounts[account.user_id] = account
        return account

    def count(self, name: str, user_id: uuid.UUID | None = None) -> int:
        return sum(1 for call, uid in self.calls if call == name and (user_id is None or uid == user_id))

    async def create_user(self, email, password=None, *, linked=()):
        account = self.add_account(email=email, has_password=bool(password), providers=[p for p, _ in linked])
        self.calls.append(("create_user", account.user_id))
        return account

    async def get_account(self, user_id):
        self.calls.append(("get_account", user_id))
        if self.get_error is not None:
            raise self.get_error
        return self.accounts.get(user_id)

    async def delete_user(self, user_id):
        self.calls.append(("delete_user", user_id))
        if self.delete_delay:
            await asyncio.sleep(self.delete_delay)
        if user_id in self.delete_failures:
            raise self.delete_failures[user_id]
        return self.accounts.pop(user_id, None) is not None

    async def unlink_identity(self, user_id, identity, *, access_token=None):
        self.calls.append(("unlink_identity", user_id))
        self.unlink_tokens.append(access_token)
        if self.unlink_error is not None:
            raise self.unlink_error
        account = self.accounts[user_id]
        account.identities = [item for item in account.identities if item.id != identity.id]


@pytest.fixture
def fake_identity() -> FakeIdentityGateway:
    return FakeIdentityGateway()


@pytest.fixture
def database(tmp_path):
    """Async context manager yielding a session factory over a fresh file-backed SQLite database."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'accounts.db'}"

    @asynccontextmanager
    async def _open():
        engine = create_async_engine(url, connect_args={"timeout": 30})
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        try:
            yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
        finally:
            await engine.dispose()

    return _open


@pytest.fixture
def cron_secret(monkeypatch: pytest.MonkeyPatch) -> str:
    from account_lifecycle.core.config import settings

    monkeypatch.setattr(settings, "cron_secret", CRON_SECRET)
    return CRON_SECRET


@pytest.fixture(autouse=True)
def _reset_process_state() -> Generator[None, None, None]:
    # Rate-limit buckets and counters are process-global and can leak across tests.
    account_api.restore_rate_limit.buckets.clear()
    metrics.reset()
    yield
    account_api.restore_rate_limit.buckets.clear()
    metrics.reset()

