from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from account_lifecycle.core import metrics
from account_lifecycle.core.errors import (
    AccountNotFound,
    MissingInput,
    NoPasswordSet,
    ProviderError,
    ProviderNotLinked,
)
from account_lifecycle.services.identity import PASSWORD_PROVIDER, IdentityGateway, IdentityProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OAuthUnlinked:
    message: str
    provider: str


async def unlink_oauth_provider(
    user_id: uuid.UUID,
    provider: str | None,
    *,
    identity: IdentityGateway,
    access_token: str | None = None,
) -> OAuthUnlinked:
    """Detach a social login, refusing whenever it would leave the account without a password."""
    provider_clean = (provider or "").strip().lower()
    if not provider_clean:
        raise MissingInput("OAuth provider name is required.")
    if provider_clean == PASSWORD_PROVIDER:
        raise MissingInput("The password credential cannot be unlinked.")

    try:
        account = await identity.get_account(user_id)
    except IdentityProviderError as exc:
        raise ProviderError(f"Failed to load linked accounts: {exc}", provider=provider_clean) from exc
    if account is None:
        raise AccountNotFound()

    # Checked before any mutating call: the password is the fallback login.
    if not account.has_password:
        raise NoPasswordSet()

    linked = account.find_identity(provider_clean)
    if linked is None:
        raise ProviderNotLinked(f"You do not have a linked account with {provider_clean}.", provider=provider_clean)

    try:
        await identity.unlink_identity(user_id, linked, access_token=access_token)
    except IdentityProviderError as exc:
        logger.warning(
            "oauth_unlink_failed",
            extra={"user_id": str(user_id), "provider": provider_clean, "error": str(exc)},
        )
        raise ProviderError(f"Failed to unlink {provider_clean} account: {exc}", provider=provider_clean) from exc

    metrics.record_oauth_unlinked()
    logger.info("oauth_unlinked", extra={"user_id": str(user_id), "provider": provider_clean})
    return OAuthUnlinked(message=f"{provider_clean} account has been successfully unlinked.", provider=provider_clean)
