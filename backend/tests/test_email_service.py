import asyncio
import json
import logging
from datetime import datetime, timezone

import httpx
import pytest

from account_lifecycle.core.config import settings
from account_lifecycle.services import email as email_service

SCHEDULED = datetime(2026, 4, 1, 9, 30, tzinfo=timezone.utc)


def test_restoration_url_points_at_frontend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "frontend_origin", "https://app.getplanora.app/")
    monkeypatch.setattr(settings, "restoration_path", "cancel-deletion")

    assert email_service.restoration_url("abc-_123") == "https://app.getplanora.app/cancel-deletion?token=abc-_123"


def test_deletion_email_contains_link_and_date(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "frontend_origin", "https://app.getplanora.app")
    sent = []

    async def fake_send(to_email, subject, text_body, html_body=None, **kwargs):
        sent.append((to_email, subject, text_body, html_body))
        return True

    monkeypatch.setattr(email_service, "send_email", fake_send)

    ok = asyncio.run(email_service.send_account_deletion_scheduled("ana@example.com", "tok-en", SCHEDULED, grace_days=30))

    assert ok is True
    to_email, subject, text_body, html_body = sent[0]
    assert to_email == "ana@example.com"
    assert subject == "Your Planora account deletion has been scheduled"
    assert "https://app.getplanora.app/cancel-deletion?token=tok-en" in text_body
    assert "2026-04-01" in text_body
    assert 'href="https://app.getplanora.app/cancel-deletion?token=tok-en"' in html_body
    assert "<h1>" in html_body


def test_send_email_disabled_returns_false(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "email_provider", "smtp")
    monkeypatch.setattr(settings, "smtp_enabled", False)

    assert asyncio.run(email_service.send_email("ana@example.com", "Hi", "body")) is False


def test_send_email_via_resend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "email_provider", "resend")
    monkeypatch.setattr(settings, "resend_api_key", "re_test")
    captured = []

    async def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"id": "email-1"}, request=request)

    ok = asyncio.run(
        email_service.send_email(
            "ana@example.com", "Subject", "text", "<p>html</p>", transport=httpx.MockTransport(handler)
        )
    )

    assert ok is True
    assert captured[0].headers["authorization"] == "Bearer re_test"
    payload = json.loads(captured[0].content)
    assert payload["to"] == ["ana@example.com"]
    assert payload["html"] == "<p>html</p>"


def test_send_email_swallows_provider_errors(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setattr(settings, "email_provider", "resend")
    monkeypatch.setattr(settings, "resend_api_key", "re_test")

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom", request=request)

    with caplog.at_level(logging.WARNING, logger="account_lifecycle.services.email"):
        ok = asyncio.run(
            email_service.send_email("ana@example.com", "Subject", "text", transport=httpx.MockTransport(handler))
        )
    assert ok is False
    [record] = [r for r in caplog.records if r.name == "account_lifecycle.services.email"]
    assert record.getMessage() == "email_send_failed"
    assert record.subject == "Subject"
    assert "500" in record.error


def test_send_email_via_smtp(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "email_provider", "smtp")
    monkeypatch.setattr(settings, "smtp_enabled", True)
    delivered = []
    monkeypatch.setattr(email_service, "_send_smtp", lambda msg: delivered.append(msg))

    ok = asyncio.run(email_service.send_email("ana@example.com", "Subject", "text", "<p>html</p>"))

    assert ok is True
    assert delivered[0]["To"] == "ana@example.com"
    assert delivered[0]["Subject"] == "Subject"
