"""Transactional email delivery through the Resend HTTP API."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from photovault.config import get_settings

from api.services.email_template_service import render_email

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
SEND_TIMEOUT_SECONDS = 15.0


class EmailDeliveryError(RuntimeError):
    """The email provider rejected or failed to accept a message."""


def email_is_configured() -> bool:
    settings = get_settings()
    return bool(settings.resend_api_key.strip() and settings.email_from.strip())


def _normalize_text(value: Any) -> str:
    return str(value or "").strip()


async def send_email(
    *,
    to_email: str,
    subject: str,
    text_body: str,
    html_body: str | None = None,
    tags: dict[str, str] | None = None,
) -> bool:
    """Send one message. Returns False when delivery is not configured."""
    if not email_is_configured():
        logger.info("Email delivery is not configured; skipping send")
        return False

    settings = get_settings()
    recipient = _normalize_text(to_email).lower()
    if not recipient:
        raise EmailDeliveryError("Recipient address is empty")

    payload: dict[str, Any] = {
        "from": settings.email_from,
        "to": [recipient],
        "subject": _normalize_text(subject),
        "text": text_body,
    }
    if html_body:
        payload["html"] = html_body
    if tags:
        payload["tags"] = [{"name": key, "value": value} for key, value in tags.items()]

    try:
        async with httpx.AsyncClient(timeout=SEND_TIMEOUT_SECONDS) as client:
            resp = await client.post(
                RESEND_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {settings.resend_api_key}"},
            )
    except httpx.HTTPError as exc:
        raise EmailDeliveryError(f"Email provider unreachable: {exc}") from exc

    if resp.status_code >= 400:
        raise EmailDeliveryError(f"Email provider returned {resp.status_code}: {resp.text[:200]}")
    return True


async def send_template_email(
    *,
    to_email: str,
    template_key: str,
    context: dict[str, Any] | None = None,
) -> bool:
    subject, text_body, html_body = render_email(template_key, context)
    return await send_email(
        to_email=to_email,
        subject=subject,
        text_body=text_body,
        html_body=html_body,
        tags={"template": template_key},
    )
