"""Transactional and drip email templates with placeholder rendering."""

from __future__ import annotations

import html
import re
from typing import Any

from photovault.config import get_settings

UNSUBSCRIBE_FOOTER = (
    "\n\n--\nYou are receiving this because you have a {{site_name}} account.\n"
    "Unsubscribe: {{unsubscribe_link}}"
)

EMAIL_TEMPLATES: dict[str, dict[str, str]] = {
    "photographer_welcome": {
        "subject": "Welcome to PhotoVault, {{name}}",
        "text_body": (
            "Hi {{name}},\n\n"
            "Your PhotoVault account is ready. Connect Stripe and upload your first gallery "
            "to start earning on every client who keeps their photos with us.\n\n"
            "Dashboard: {{site_url}}/photographer/dashboard"
        ),
    },
    "photographer_stripe_nudge": {
        "subject": "One step left before you can get paid",
        "text_body": (
            "Hi {{name}},\n\n"
            "You signed up yesterday but Stripe isn't connected yet. Without it we can't "
            "send you your share of client payments.\n\n"
            "Connect Stripe: {{site_url}}/photographer/settings"
        ),
    },
    "photographer_gallery_nudge": {
        "subject": "Upload your first gallery",
        "text_body": (
            "Hi {{name}},\n\n"
            "Your first gallery is the moment PhotoVault starts working for you. "
            "Drop a finished shoot in and send the link to your client.\n\n"
            "Upload: {{site_url}}/photographer/galleries"
        ),
    },
    "photographer_passive_income_math": {
        "subject": "The math on passive income",
        "text_body": (
            "Hi {{name}},\n\n"
            "{{progress_line}}\n\n"
            "Every client who keeps their gallery pays a small storage fee each month, "
            "and half of it goes to you. Ten clients is a bill paid. A hundred is rent."
        ),
    },
    "photographer_founder_checkin": {
        "subject": "Quick check-in",
        "text_body": (
            "Hi {{name}},\n\n"
            "You've been with us two weeks. {{status_message}}\n\n"
            "Just reply to this email, it comes straight to me."
        ),
    },
    "client_getting_started": {
        "subject": "Getting started with your gallery",
        "text_body": (
            "Hi {{name}},\n\n"
            "Your photos are safe with us. You can view, download and share them any time.\n\n"
            "Your galleries: {{site_url}}/client/dashboard"
        ),
    },
    "client_why_storage_matters": {
        "subject": "Why we keep your photos for you",
        "text_body": (
            "Hi {{name}},\n\n"
            "Phones get lost and hard drives fail. Your gallery stays here in full "
            "resolution for as long as your plan is active."
        ),
    },
    "client_more_photographers": {
        "subject": "Working with another photographer?",
        "text_body": (
            "Hi {{name}},\n\n"
            "Any photographer can deliver to your PhotoVault account. "
            "Send them to {{site_url}} and keep every shoot in one place."
        ),
    },
    "gallery_payment_receipt": {
        "subject": "Your gallery is ready: {{gallery_name}}",
        "text_body": (
            "Hi {{name}},\n\n"
            "Thanks for your payment of {{amount}}. {{gallery_name}} is now unlocked.\n\n"
            "View it here: {{access_link}}"
        ),
    },
    "payment_failed": {
        "subject": "We couldn't process your payment",
        "text_body": (
            "Hi {{name}},\n\n"
            "Your latest payment of {{amount}} for {{gallery_name}} did not go through. "
            "Your photos stay available for {{grace_period_days}} more days.\n\n"
            "Update your payment method: {{site_url}}/client/billing"
        ),
    },
    "access_restored": {
        "subject": "Access restored: {{gallery_name}}",
        "text_body": (
            "Hi {{name}},\n\n"
            "Your payment went through and {{gallery_name}} from {{photographer_name}} "
            "is available again.\n\n"
            "View it here: {{access_link}}"
        ),
    },
}

_PLACEHOLDER_PATTERN = re.compile(r"{{\s*([a-zA-Z0-9_]+)\s*}}")


def _render_template(template: str, context: dict[str, Any], *, escape: bool = False) -> str:
    if not template:
        return ""

    def _replace(match: re.Match[str]) -> str:
        key = str(match.group(1) or "").strip()
        value = context.get(key, "")
        rendered = str(value if value is not None else "")
        return html.escape(rendered) if escape else rendered

    return _PLACEHOLDER_PATTERN.sub(_replace, template)


def _text_to_html(text_body: str) -> str:
    paragraphs = [part.strip() for part in text_body.split("\n\n") if part.strip()]
    return "".join(f"<p>{part.replace(chr(10), '<br>')}</p>" for part in paragraphs)


def render_email(
    template_key: str,
    context: dict[str, Any] | None = None,
) -> tuple[str, str, str]:
    """Return (subject, text_body, html_body) for a template."""
    normalized_key = str(template_key or "").strip().lower()
    template = EMAIL_TEMPLATES.get(normalized_key)
    if template is None:
        raise ValueError(f"Unknown email template: {template_key}")

    settings = get_settings()
    local_context: dict[str, Any] = {
        "site_name": "PhotoVault",
        "site_url": settings.site_url.rstrip("/"),
        "name": "there",
        **(context or {}),
    }
    text_template = template["text_body"]
    if local_context.get("unsubscribe_link"):
        text_template += UNSUBSCRIBE_FOOTER

    subject = _render_template(template["subject"], local_context)
    text_body = _render_template(text_template, local_context)
    html_body = _text_to_html(_render_template(text_template, local_context, escape=True))
    return subject, text_body, html_body
