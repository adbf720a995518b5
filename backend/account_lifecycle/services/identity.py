from __future__ import annotations

import abc
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx
import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from account_lifecycle.core import security
from account_lifecycle.core.config import settings
from account_lifecycle.models.user import Profile, User, UserIdentity

logger = logging.getLogger(__name__)

PASSWORD_PROVIDER = "email"


class IdentityProviderError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class LinkedIdentity:
    id: str
    provider: str
    subject: str | None = None
    email: str | None = None


@dataclass
class IdentityAccount:
    user_id: uuid.UUID
    email: str | None
    has_password: bool
    identities: list[LinkedIdentity] = field(default_factory=list)

    def find_identity(self, provider: str) -> LinkedIdentity | None:
        wanted = (provider or "").strip().lower()
        for identity in self.identities:
            if identity.provider.lower() == wanted:
                return identity
        return None


class IdentityGateway(abc.ABC):
    """Boundary to whatever owns credentials and sessions."""

    @abc.abstractmethod
    async def create_user(
        self,
        email: str,
        password: str | None = None,
        *,
        linked: Iterable[tuple[str, str | None]] = (),
    ) -> IdentityAccount:
        """Create an identity; ``linked`` is (provider, subject) pairs for social logins."""

    @abc.abstractmethod
    async def get_account(self, user_id: uuid.UUID) -> IdentityAccount | None: ...

    async def list_identities(self, user_id: uuid.UUID) -> list[LinkedIdentity]:
        account = await self.get_account(user_id)
        return list(account.identities) if account else []

    @abc.abstractmethod
    async def delete_user(self, user_id: uuid.UUID) -> bool:
        """Hard delete. Returns False when the identity was already gone."""

    @abc.abstractmethod
    async def unlink_identity(
        self,
        user_id: uuid.UUID,
        identity: LinkedIdentity,
        *,
        access_token: str | None = None,
    ) -> None: ...


class LocalIdentityGateway(IdentityGateway):
    """Identities stored in this service's own database (users / user_identities)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _to_account(user: User) -> IdentityAccount:
        return IdentityAccount(
            user_id=user.id,
            email=user.email,
            has_password=bool(user.hashed_password),
            identities=[
                LinkedIdentity(id=str(row.id), provider=row.provider, subject=row.provider_subject, email=row.email)
                for row in sorted(user.identities, key=lambda row: row.provider)
            ],
        )

    async def create_user(
        self,
        email: str,
        password: str | None = None,
        *,
        linked: Iterable[tuple[str, str | None]] = (),
    ) -> IdentityAccount:
        email_norm = (email or "").strip().lower()
        if not email_norm:
            raise IdentityProviderError("Email is required", status_code=422)
        try:
            async with self._session_factory() as session:
                user = User(
                    email=email_norm,
                    hashed_password=security.hash_password(password) if password else None,
                    identities=[
                        UserIdentity(provider=provider.strip().lower(), provider_subject=subject, email=email_norm)
                        for provider, subject in linked
                    ],
                )
                session.add(user)
                await session.flush()
                session.add(Profile(id=user.id))
                account = self._to_account(user)
                await session.commit()
                return account
        except IntegrityError as exc:
            raise IdentityProviderError("A user with this email already exists", status_code=409) from exc
        except SQLAlchemyError as exc:
            raise IdentityProviderError(f"Failed to create user: {exc}") from exc

    async def get_account(self, user_id: uuid.UUID) -> IdentityAccount | None:
        try:
            async with self._session_factory() as session:
                user = await session.get(User, user_id)
                return self._to_account(user) if user else None
        except SQLAlchemyError as exc:
            raise IdentityProviderError(f"Failed to load user: {exc}") from exc

    async def delete_user(self, user_id: uuid.UUID) -> bool:
        try:
            async with self._session_factory() as session:
                user = await session.get(User, user_id)
                if user is None:
                    return False
                await session.delete(user)
                await session.execute(sa.delete(Profile).where(Profile.id == user_id))
                await session.commit()
                return True
        except SQLAlchemyError as exc:
            raise IdentityProviderError(f"Failed to delete user: {exc}") from exc

    async def unlink_identity(
        self,
        user_id: uuid.UUID,
        identity: LinkedIdentity,
        *,
        access_token: str | None = None,
    ) -> None:
        try:
            identity_id = uuid.UUID(str(identity.id))
        except ValueError as exc:
            raise IdentityProviderError("Unknown identity", status_code=404) from exc
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    sa.delete(UserIdentity).where(UserIdentity.id == identity_id, UserIdentity.user_id == user_id)
                )
                if result.rowcount == 0:
                    await session.rollback()
                    raise IdentityProviderError("Identity is not linked to this user", status_code=404)
                await session.commit()
        except SQLAlchemyError as exc:
            raise IdentityProviderError(f"Failed to unlink identity: {exc}") from exc


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in ("msg", "message", "error_description", "error"):
            value = payload.get(key)
            if value:
                return str(value)
    return f"HTTP {response.status_code}"


class SupabaseIdentityGateway(IdentityGateway):
    """GoTrue (Supabase Auth) admin REST API, authenticated with the service-role key."""

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._service_role_key = service_role_key
        self._timeout = timeout
        self._transport = transport

    def _client(self, *, bearer: str | None = None) -> httpx.AsyncClient:
        headers = {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {bearer or self._service_role_key}",
        }
        return httpx.AsyncClient(
            base_url=f"{self._base_url}/auth/v1",
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    @staticmethod
    def _to_account(payload: dict[str, Any]) -> IdentityAccount:
        identities: list[LinkedIdentity] = []
        has_password = False
        for raw in payload.get("identities") or []:
            provider = str(raw.get("provider") or "").lower()
            if provider == PASSWORD_PROVIDER:
                has_password = True
                continue
            data = raw.get("identity_data") or {}
            identities.append(
                LinkedIdentity(
                    id=str(raw.get("identity_id") or raw.get("id") or ""),
                    provider=provider,
                    subject=str(raw.get("id") or data.get("sub") or "") or None,
                    email=data.get("email"),
                )
            )
        return IdentityAccount(
            user_id=uuid.UUID(str(payload["id"])),
            email=payload.get("email"),
            has_password=has_password,
            identities=identities,
        )

    async def _send(self, method: str, path: str, *, bearer: str | None = None, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client(bearer=bearer) as client:
                return await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise IdentityProviderError(f"Identity provider unreachable: {exc}") from exc

    async def create_user(
        self,
        email: str,
        password: str | None = None,
        *,
        linked: Iterable[tuple[str, str | None]] = (),
    ) -> IdentityAccount:
        body: dict[str, Any] = {"email": email, "email_confirm": True}
        if password:
            body["password"] = password
        response = await self._send("POST", "/admin/users", json=body)
        if response.status_code >= 400:
            raise IdentityProviderError(_error_message(response), status_code=response.status_code)
        return self._to_account(response.json())

    async def get_account(self, user_id: uuid.UUID) -> IdentityAccount | None:
        response = await self._send("GET", f"/admin/users/{user_id}")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise IdentityProviderError(_error_message(response), status_code=response.status_code)
        return self._to_account(response.json())

    async def delete_user(self, user_id: uuid.UUID) -> bool:
        response = await self._send("DELETE", f"/admin/users/{user_id}")
        if response.status_code == 404:
            logger.info("identity_already_deleted", extra={"user_id": str(user_id)})
            return False
        if response.status_code >= 400:
            raise IdentityProviderError(_error_message(response), status_code=response.status_code)
        return True

    async def unlink_identity(
        self,
        user_id: uuid.UUID,
        identity: LinkedIdentity,
        *,
        access_token: str | None = None,
    ) -> None:
        # Unlinking is a user-scoped endpoint; it needs the caller's own session token.
        if not access_token:
            raise IdentityProviderError("A user access token is required to unlink an identity", status_code=401)
        response = await self._send("DELETE", f"/user/identities/{identity.id}", bearer=access_token)
        if response.status_code >= 400:
            raise IdentityProviderError(_error_message(response), status_code=response.status_code)


def build_identity_gateway(session_factory: async_sessionmaker[AsyncSession]) -> IdentityGateway:
    provider = (settings.identity_provider or "local").strip().lower()
    if provider == "supabase":
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for IDENTITY_PROVIDER=supabase")
        return SupabaseIdentityGateway(
            settings.supabase_url,
            settings.supabase_service_role_key,
            timeout=float(settings.identity_request_timeout_seconds),
        )
    if provider == "local":
        return LocalIdentityGateway(session_factory)
    raise RuntimeError(f"Unsupported IDENTITY_PROVIDER: {provider}")
