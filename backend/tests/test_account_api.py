import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict

import pytest
import sqlalchemy as sa
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from account_lifecycle.core import security
from account_lifecycle.core.config import settings
from account_lifecycle.core.dependencies import get_identity_gateway
from account_lifecycle.db.base import Base
from account_lifecycle.db.session import get_session, get_session_factory
from account_lifecycle.main import app
from account_lifecycle.models.deletion import AccountDeletionRequest
from account_lifecycle.models.user import Profile
from account_lifecycle.services import account_deletion


@pytest.fixture
def test_app(fake_identity, monkeypatch: pytest.MonkeyPatch) -> Dict[str, object]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())

    async def override_get_session():
        async with SessionLocal() as session:
            yield session

    # The in-memory database has a single shared connection.
    monkeypatch.setattr(settings, "account_deletion_sweep_concurrency", 1)

    notices = []

    async def capture_notice(notice) -> bool:
        notices.append(notice)
        return True

    monkeypatch.setattr(account_deletion, "send_deletion_notice", capture_notice)

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: SessionLocal
    app.dependency_overrides[get_identity_gateway] = lambda: fake_identity
    client = TestClient(app)
    yield {"client": client, "session_factory": SessionLocal, "identity": fake_identity, "notices": notices}
    client.close()
    app.dependency_overrides.clear()


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def create_account_token(test_app: Dict[str, object], *, has_password: bool = True, providers=()) -> tuple:
    identity = test_app["identity"]
    account = identity.add_account(email="ana@example.com", has_password=has_password, providers=providers)

    async def seed_profile() -> None:
        async with test_app["session_factory"]() as session:
            session.add(Profile(id=account.user_id, display_name="Ana"))
            await session.commit()

    asyncio.run(seed_profile())
    return account, security.create_access_token(str(account.user_id), email=account.email)


def test_deletion_restore_flow(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    account, token = create_account_token(test_app)

    res = client.post("/api/v1/account/deletion", headers=auth_headers(token))
    assert res.status_code == 202, res.text
    assert res.json()["message"] == "Account deletion process initiated. An email has been sent to you."
    scheduled = datetime.fromisoformat(res.json()["scheduled_for_deletion_at"])
    assert scheduled - datetime.now(timezone.utc) > timedelta(days=29)

    notices = test_app["notices"]
    assert len(notices) == 1
    assert notices[0].email == "ana@example.com"

    status_res = client.get("/api/v1/account/deletion", headers=auth_headers(token))
    assert status_res.status_code == 200, status_res.text
    assert status_res.json()["pending"] is True

    again = client.post("/api/v1/account/deletion", headers=auth_headers(token))
    assert again.status_code == 409, again.text
    assert again.json()["code"] == "deletion_pending"

    restore = client.post("/api/v1/account/deletion/restore", json={"token": notices[0].restoration_token})
    assert restore.status_code == 200, restore.text
    assert restore.json() == {"message": "Your account has been successfully restored."}

    restore_again = client.post("/api/v1/account/deletion/restore", json={"token": notices[0].restoration_token})
    assert restore_again.status_code == 409
    assert restore_again.json()["code"] == "already_restored"

    status_after = client.get("/api/v1/account/deletion", headers=auth_headers(token))
    assert status_after.json() == {"pending": False, "requested_at": None, "scheduled_for_deletion_at": None}


def test_initiate_requires_authentication(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    assert client.post("/api/v1/account/deletion").status_code == 401
    bad = client.post("/api/v1/account/deletion", headers=auth_headers("not-a-jwt"))
    assert bad.status_code == 401
    assert bad.json()["detail"] == "Invalid token"


def test_restore_errors(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    missing = client.post("/api/v1/account/deletion/restore", json={})
    assert missing.status_code == 400
    assert missing.json()["code"] == "validation_error"

    unknown = client.post("/api/v1/account/deletion/restore", json={"token": "nope"})
    assert unknown.status_code == 404
    assert unknown.json() == {"detail": "Invalid or expired restoration token.", "code": "invalid_token"}

    malformed = client.post("/api/v1/account/deletion/restore", json={"token": ["a"]})
    assert malformed.status_code == 422
    assert malformed.json()["code"] == "validation_error"


def test_restore_is_rate_limited(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    for _ in range(settings.restore_rate_limit):
        assert client.post("/api/v1/account/deletion/restore", json={"token": "guess"}).status_code == 404
    limited = client.post("/api/v1/account/deletion/restore", json={"token": "guess"})
    assert limited.status_code == 429
    assert "Retry-After" in limited.headers


def test_identities_and_unlink(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    identity = test_app["identity"]
    account, token = create_account_token(test_app, has_password=True, providers=["google"])

    listed = client.get("/api/v1/account/identities", headers=auth_headers(token))
    assert listed.status_code == 200, listed.text
    assert listed.json() == {"has_password": True, "identities": [{"provider": "google", "email": "ana@example.com"}]}

    res = client.post("/api/v1/account/identities/unlink", json={"provider": "google"}, headers=auth_headers(token))
    assert res.status_code == 200, res.text
    assert res.json() == {"message": "google account has been successfully unlinked."}
    assert identity.unlink_tokens == [token]

    not_linked = client.post("/api/v1/account/identities/unlink", json={"provider": "google"}, headers=auth_headers(token))
    assert not_linked.status_code == 404
    assert not_linked.json()["code"] == "provider_not_linked"


def test_unlink_without_password_is_refused(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    identity = test_app["identity"]
    account, token = create_account_token(test_app, has_password=False, providers=["google"])

    res = client.post("/api/v1/account/identities/unlink", json={"provider": "google"}, headers=auth_headers(token))
    assert res.status_code == 400
    assert res.json() == {
        "detail": "You must set a password before unlinking your social account.",
        "code": "no_password_set",
    }
    assert identity.count("unlink_identity") == 0


def test_sweep_endpoint(test_app: Dict[str, object], cron_secret: str) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    identity = test_app["identity"]
    account, token = create_account_token(test_app)
    assert client.post("/api/v1/account/deletion", headers=auth_headers(token)).status_code == 202

    unauthorized = client.post("/api/v1/jobs/account-deletions/sweep", headers=auth_headers("wrong"))
    assert unauthorized.status_code == 401
    assert unauthorized.json()["code"] == "unauthorized"
    assert identity.count("delete_user") == 0

    nothing_due = client.post("/api/v1/jobs/account-deletions/sweep", headers=auth_headers(cron_secret))
    assert nothing_due.status_code == 200, nothing_due.text
    assert nothing_due.json()["processed"] == 0

    async def backdate() -> None:
        async with test_app["session_factory"]() as session:
            await session.execute(
                sa.update(AccountDeletionRequest).values(
                    scheduled_for_deletion_at=datetime.now(timezone.utc) - timedelta(minutes=1)
                )
            )
            await session.commit()

    asyncio.run(backdate())

    res = client.post("/api/v1/jobs/account-deletions/sweep", headers=auth_headers(cron_secret))
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["processed"] == 1
    assert body["succeeded"] == 1
    assert body["failed"] == []
    assert identity.count("delete_user", account.user_id) == 1


def test_health_and_request_id(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    res = client.get("/api/v1/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
    assert res.headers.get("X-Request-ID")
    assert res.headers.get("X-Content-Type-Options") == "nosniff"
