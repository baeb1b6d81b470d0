"""Health checks."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from photovault.config import get_settings
from photovault.database import get_session
from sqlalchemy import text

from api.services.auth_provider import check_health as check_auth_provider

logger = logging.getLogger(__name__)
router = APIRouter()

NO_CACHE_HEADERS = {"Cache-Control": "no-cache, no-store, must-revalidate"}


async def _check_database() -> str:
    async def _ping() -> None:
        async with get_session() as session:
            await session.execute(text("SELECT 1"))

    try:
        await asyncio.wait_for(_ping(), timeout=get_settings().upstream_timeout_seconds)
    except TimeoutError:
        return "unreachable"
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        return "error"
    return "ok"


@router.get("/health")
async def health_check():
    return JSONResponse(
        content={"status": "ok", "service": "photovault-api"},
        headers=NO_CACHE_HEADERS,
    )


@router.get("/health/ready")
async def readiness_check():
    database, auth_provider = await asyncio.gather(_check_database(), check_auth_provider())
    services = {"database": database, "auth_provider": auth_provider}
    ready = database == "ok" and auth_provider in ("ok", "not_configured")
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "services": services},
        headers=NO_CACHE_HEADERS,
    )
