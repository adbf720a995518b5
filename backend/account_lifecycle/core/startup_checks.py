from __future__ import annotations

import logging

from account_lifecycle.core.config import settings

logger = logging.getLogger(__name__)

_MIN_CRON_SECRET_LENGTH = 32


def _is_production() -> bool:
    env = (settings.environment or "").strip().lower()
    return env in {"prod", "production"}


def _looks_like_localhost(url: str | None) -> bool:
    value = (url or "").strip().lower()
    if not value:
        return False
    return "localhost" in value or "127.0.0.1" in value


def _append_if(problems: list[str], *, condition: bool, message: str) -> None:
    if condition:
        problems.append(message)


def _validate_core_production_settings(problems: list[str]) -> None:
    secret = (settings.secret_key or "").strip()
    _append_if(
        problems,
        condition=secret in {"", "dev-secret-key"} or len(secret) < 32,
        message="SECRET_KEY must be set to the identity provider's JWT secret (not the dev default).",
    )
    cron_secret = (settings.cron_secret or "").strip()
    _append_if(
        problems,
        condition=len(cron_secret) < _MIN_CRON_SECRET_LENGTH,
        message=f"CRON_SECRET must be set to a random value of at least {_MIN_CRON_SECRET_LENGTH} characters.",
    )
    _append_if(
        problems,
        condition=_looks_like_localhost(settings.frontend_origin),
        message="FRONTEND_ORIGIN must be set to the public site origin (restoration links point there).",
    )
    _append_if(
        problems,
        condition=int(settings.account_deletion_grace_days or 0) < 1,
        message="ACCOUNT_DELETION_GRACE_DAYS must be at least 1.",
    )


def _validate_identity_settings(problems: list[str]) -> None:
    provider = (settings.identity_provider or "").strip().lower()
    _append_if(
        problems,
        condition=provider not in {"local", "supabase"},
        message="IDENTITY_PROVIDER must be one of: local | supabase.",
    )
    if provider != "supabase":
        return
    _append_if(
        problems,
        condition=not (settings.supabase_url or "").strip(),
        message="SUPABASE_URL is required when IDENTITY_PROVIDER=supabase.",
    )
    _append_if(
        problems,
        condition=not (settings.supabase_service_role_key or "").strip(),
        message="SUPABASE_SERVICE_ROLE_KEY is required when IDENTITY_PROVIDER=supabase.",
    )


def _validate_email_settings(problems: list[str]) -> None:
    provider = (settings.email_provider or "").strip().lower()
    if provider == "resend":
        _append_if(
            problems,
            condition=not (settings.resend_api_key or "").strip(),
            message="RESEND_API_KEY is required when EMAIL_PROVIDER=resend.",
        )
        return
    if not settings.smtp_enabled:
        # Deletion still works without email, but nobody receives a restoration link.
        logger.warning("startup_email_disabled", extra={"email_provider": provider})
        return
    _append_if(
        problems,
        condition=_looks_like_localhost(settings.smtp_host),
        message="SMTP_HOST must not point at localhost in production.",
    )


def validate_production_settings() -> None:
    """
    Fail fast on insecure defaults when running in production.

    The sweep endpoint hard-deletes accounts, so a guessable CRON_SECRET is
    treated the same as a leaked admin credential.
    """
    if not _is_production():
        return

    problems: list[str] = []
    _validate_core_production_settings(problems)
    _validate_identity_settings(problems)
    _validate_email_settings(problems)

    if problems:
        raise RuntimeError("Production configuration checks failed:\n- " + "\n- ".join(problems))
