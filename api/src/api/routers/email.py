"""Email preference links."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from api.errors import NotFound, ok
from api.services.drip_service import suppress_by_token

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/unsubscribe")
async def unsubscribe(token: uuid.UUID, db: AsyncSession = Depends(get_db)):
    if not await suppress_by_token(db, token):
        raise NotFound("Unsubscribe link is invalid or expired")
    logger.info("Drip sequence suppressed via unsubscribe link")
    return ok({"unsubscribed": True})
