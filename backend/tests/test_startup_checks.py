import pytest

from account_lifecycle.core.config import settings
from account_lifecycle.core.startup_checks import validate_production_settings


def _set_valid_production_baseline(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "environment", "production")
    monkeypatch.setattr(settings, "secret_key", "x" * 48)
    monkeypatch.setattr(settings, "cron_secret", "c" * 40)
    monkeypatch.setattr(settings, "frontend_origin", "https://app.getplanora.app")
    monkeypatch.setattr(settings, "account_deletion_grace_days", 30)
    monkeypatch.setattr(settings, "identity_provider", "supabase")
    monkeypatch.setattr(settings, "supabase_url", "https://project.supabase.co")
    monkeypatch.setattr(settings, "supabase_service_role_key", "service-role")
    monkeypatch.setattr(settings, "email_provider", "resend")
    monkeypatch.setattr(settings, "resend_api_key", "re_live")


def test_valid_production_settings_pass(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_valid_production_baseline(monkeypatch)

    validate_production_settings()


@pytest.mark.parametrize("cron_secret", [None, "", "short-secret"])
def test_production_requires_strong_cron_secret(monkeypatch: pytest.MonkeyPatch, cron_secret) -> None:
    _set_valid_production_baseline(monkeypatch)
    monkeypatch.setattr(settings, "cron_secret", cron_secret)

    with pytest.raises(RuntimeError) as exc:
        validate_production_settings()

    assert "CRON_SECRET" in str(exc.value)


def test_production_rejects_dev_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_valid_production_baseline(monkeypatch)
    monkeypatch.setattr(settings, "secret_key", "dev-secret-key")
    monkeypatch.setattr(settings, "frontend_origin", "http://localhost:5173")
    monkeypatch.setattr(settings, "supabase_service_role_key", "")

    with pytest.raises(RuntimeError) as exc:
        validate_production_settings()

    message = str(exc.value)
    assert "SECRET_KEY" in message
    assert "FRONTEND_ORIGIN" in message
    assert "SUPABASE_SERVICE_ROLE_KEY" in message


def test_non_production_skips_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "environment", "local")
    monkeypatch.setattr(settings, "cron_secret", None)

    validate_production_settings()
