"""Session introspection and sign-out."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, get_optional_principal
from api.errors import ok
from api.services import session as session_service
from api.services.access import Deny, authorize, route_for
from api.services.auth_provider import Principal

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/session")
async def get_session_info(
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
):
    if principal is None:
        return ok({"authenticated": False})

    data: dict[str, object] = {
        "authenticated": True,
        "user_id": str(principal.id),
        "email": principal.email,
        "verified": principal.verified,
        "role": None,
        "dashboard": None,
    }
    decision = await authorize(db, principal)
    if isinstance(decision, Deny):
        data["reason"] = decision.reason
        return ok(data)

    data["role"] = decision.role
    data["dashboard"] = route_for(decision.role)
    return ok(data)


@router.post("/logout")
async def logout(request: Request):
    response = JSONResponse(content=ok({"signed_out": True}))
    had_session = await session_service.logout(request, response)
    if had_session:
        logger.info("Session signed out")
    return response
