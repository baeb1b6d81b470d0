"""Stripe webhook endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from api.errors import UpstreamUnavailable, ValidationError, ok
from api.services.stripe_service import WebhookNotConfigured
from api.services.webhook_ingestor import Duplicate, Rejected, ingest

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        result = await ingest(db, payload, sig_header)
    except WebhookNotConfigured as exc:
        raise UpstreamUnavailable(str(exc)) from exc

    if isinstance(result, Rejected):
        raise ValidationError(result.reason)
    if isinstance(result, Duplicate):
        return ok({"status": "duplicate_ignored", "event_id": result.event_id})
    return ok({"status": "processed", "event_id": result.event_id, "message": result.message})
