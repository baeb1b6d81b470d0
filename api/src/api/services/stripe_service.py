"""Stripe webhook signature verification."""

from __future__ import annotations

import json
import logging
from typing import Any

import stripe
from photovault.config import get_settings

logger = logging.getLogger(__name__)


class WebhookNotConfigured(RuntimeError):
    """No webhook signing secret is configured."""


class InvalidWebhook(ValueError):
    """Signature or payload failed verification."""


def verify_webhook_signature(payload: bytes, sig_header: str) -> dict[str, Any]:
    """Verify the Stripe-Signature header over the raw body, then parse the event.

    Verification happens on the exact bytes received; the body is only parsed
    once the signature has been accepted.
    """
    settings = get_settings()
    secret = settings.stripe_webhook_secret.strip()
    if not secret:
        raise WebhookNotConfigured("Stripe webhook secret is not configured")
    if not sig_header:
        raise InvalidWebhook("Missing Stripe-Signature header")

    try:
        payload_str = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidWebhook("Webhook body is not valid UTF-8") from exc

    try:
        stripe.WebhookSignature.verify_header(
            payload_str,
            sig_header,
            secret,
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )
    except stripe.SignatureVerificationError as exc:
        raise InvalidWebhook("Invalid webhook signature") from exc

    try:
        event = json.loads(payload_str)
    except json.JSONDecodeError as exc:
        raise InvalidWebhook("Webhook body is not valid JSON") from exc
    if not isinstance(event, dict):
        raise InvalidWebhook("Webhook body is not an event object")
    return event
