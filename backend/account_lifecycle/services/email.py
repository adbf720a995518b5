import asyncio
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from urllib.parse import urlencode

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from account_lifecycle.core.config import settings

logger = logging.getLogger(__name__)

TEMPLATE_PATH = Path(__file__).parent.parent / "templates" / "emails"
env = Environment(loader=FileSystemLoader(TEMPLATE_PATH), autoescape=select_autoescape(["html", "xml", "html.j2"]))


def _build_message(to_email: str, subject: str, text_body: str, html_body: str | None = None) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.smtp_from_email or settings.email_from
    msg["To"] = to_email
    msg.set_content(text_body)
    if html_body:
        msg.add_alternative(html_body, subtype="html")
    return msg


def _send_smtp(msg: EmailMessage) -> None:
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as smtp:
        if settings.smtp_use_tls:
            smtp.starttls()
        if settings.smtp_username and settings.smtp_password:
            smtp.login(settings.smtp_username, settings.smtp_password)
        smtp.send_message(msg)


async def _send_resend(
    to_email: str,
    subject: str,
    text_body: str,
    html_body: str | None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    payload = {"from": settings.email_from, "to": [to_email], "subject": subject, "text": text_body}
    if html_body:
        payload["html"] = html_body
    headers = {"Authorization": f"Bearer {settings.resend_api_key}"}
    async with httpx.AsyncClient(timeout=10.0, headers=headers, transport=transport) as client:
        response = await client.post(settings.resend_api_url, json=payload)
    if response.status_code >= 400:
        raise RuntimeError(f"Resend API error: {response.status_code} {response.text[:500]}")


def email_enabled() -> bool:
    provider = (settings.email_provider or "smtp").strip().lower()
    if provider == "resend":
        return bool(settings.resend_api_key)
    return bool(settings.smtp_enabled)


async def send_email(
    to_email: str,
    subject: str,
    text_body: str,
    html_body: str | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    if not email_enabled():
        logger.warning("email_disabled", extra={"subject": subject})
        return False
    try:
        if (settings.email_provider or "smtp").strip().lower() == "resend":
            await _send_resend(to_email, subject, text_body, html_body, transport=transport)
        else:
            msg = _build_message(to_email, subject, text_body, html_body)
            await asyncio.to_thread(_send_smtp, msg)
        return True
    except Exception as exc:
        logger.warning("email_send_failed", extra={"subject": subject, "error": str(exc)})
        return False


def restoration_url(token: str) -> str:
    base = (settings.frontend_origin or "").rstrip("/")
    path = "/" + (settings.restoration_path or "/cancel-deletion").lstrip("/")
    return f"{base}{path}?{urlencode({'token': token})}"


def render_template(template_name: str, context: dict) -> tuple[str, str]:
    base_text = env.get_template("base.txt.j2")
    base_html = env.get_template("base.html.j2")
    body_text = env.get_template(template_name).render(**context)
    body_html = env.get_template(template_name.replace(".txt.j2", ".html.j2")).render(**context)
    return base_text.render(body=body_text), base_html.render(body=body_html)


async def send_account_deletion_scheduled(
    to_email: str, token: str, scheduled_for: datetime, *, grace_days: int
) -> bool:
    subject = "Your Planora account deletion has been scheduled"
    context = {
        "restoration_url": restoration_url(token),
        "scheduled_for": scheduled_for.strftime("%Y-%m-%d"),
        "grace_days": grace_days,
    }
    text_body, html_body = render_template("account_deletion_scheduled.txt.j2", context)
    return await send_email(to_email, subject, text_body, html_body)
