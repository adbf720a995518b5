from __future__ import annotations

import enum
from typing import Any

from fastapi import status


class ErrorKind(str, enum.Enum):
    validation_error = "validation_error"
    invalid_token = "invalid_token"
    already_restored = "already_restored"
    deletion_pending = "deletion_pending"
    deletion_in_progress = "deletion_in_progress"
    account_not_found = "account_not_found"
    no_password_set = "no_password_set"
    provider_not_linked = "provider_not_linked"
    provider_error = "provider_error"
    unauthorized = "unauthorized"
    upstream_error = "upstream_error"


class AccountLifecycleError(Exception):
    """Base for every failure a caller of this service can branch on.

    Subclasses pin the error kind and the HTTP status used when the error
    crosses the API boundary. ``context`` is free-form data for logs.
    """

    kind: ErrorKind = ErrorKind.upstream_error
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Account operation failed."

    def __init__(self, message: str | None = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class MissingInput(AccountLifecycleError):
    kind = ErrorKind.validation_error
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "A required field is missing."


class InvalidRestorationToken(AccountLifecycleError):
    kind = ErrorKind.invalid_token
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Invalid or expired restoration token."


class AlreadyRestored(AccountLifecycleError):
    kind = ErrorKind.already_restored
    status_code = status.HTTP_409_CONFLICT
    default_message = "This account has already been restored."


class DeletionAlreadyPending(AccountLifecycleError):
    kind = ErrorKind.deletion_pending
    status_code = status.HTTP_409_CONFLICT
    default_message = "Account deletion is already scheduled."


class DeletionInProgress(AccountLifecycleError):
    kind = ErrorKind.deletion_in_progress
    status_code = status.HTTP_409_CONFLICT
    default_message = "This account is being permanently deleted and can no longer be restored."


class AccountNotFound(AccountLifecycleError):
    kind = ErrorKind.account_not_found
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Account not found."


class NoPasswordSet(AccountLifecycleError):
    kind = ErrorKind.no_password_set
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "You must set a password before unlinking your social account."


class ProviderNotLinked(AccountLifecycleError):
    kind = ErrorKind.provider_not_linked
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "No linked account for this provider."


class ProviderError(AccountLifecycleError):
    kind = ErrorKind.provider_error
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "The identity provider rejected the request."


class SweepUnauthorized(AccountLifecycleError):
    kind = ErrorKind.unauthorized
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class UpstreamError(AccountLifecycleError):
    kind = ErrorKind.upstream_error
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "A dependency is unavailable, please retry."


class DeletionStoreError(UpstreamError):
    default_message = "Failed to update the account deletion records."


class SweepFailed(UpstreamError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Failed to fetch deletion requests."
