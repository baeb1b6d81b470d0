"""Scheduler entry points."""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Request
from photovault.config import get_settings

from api.errors import Unauthenticated, ok
from api.services.drip_service import run_drip_batch

logger = logging.getLogger(__name__)
router = APIRouter()


def _require_cron_secret(request: Request) -> None:
    secret = get_settings().cron_secret
    if not secret:
        return
    supplied = request.headers.get("Authorization", "")
    if not hmac.compare_digest(supplied.encode(), f"Bearer {secret}".encode()):
        logger.warning("Rejected cron request with missing or invalid secret")
        raise Unauthenticated("Invalid cron secret")


@router.api_route("/drip-emails", methods=["GET", "POST"])
async def drip_emails(request: Request):
    _require_cron_secret(request)
    result = await run_drip_batch()
    return ok(result.as_dict())
