"""FastAPI dependency injection."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable

from fastapi import Depends, Request
from photovault.database import get_session_factory
from sqlalchemy.ext.asyncio import AsyncSession

from api.errors import Forbidden, NotProvisioned, Unauthenticated
from api.services import session as session_service
from api.services.access import DENY_NOT_PROVISIONED, Allow, Deny, authorize
from api.services.auth_provider import Principal

CSRF_HEADER_NAME = "x-csrf-token"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_optional_principal(request: Request) -> Principal | None:
    return await session_service.resolve(request)


async def get_principal(
    principal: Principal | None = Depends(get_optional_principal),
) -> Principal:
    if principal is None:
        raise Unauthenticated()
    return principal


def _raise_for_deny(decision: Deny) -> None:
    if decision.reason == DENY_NOT_PROVISIONED:
        raise NotProvisioned()
    if decision.reason == "forbidden":
        raise Forbidden("Insufficient role permissions")
    raise Forbidden(decision.reason.capitalize())


def require_role(role: str | None = None) -> Callable[..., Awaitable[Allow]]:
    """Dependency that resolves the caller and gates on ``role`` (admin always passes)."""

    async def _dependency(
        principal: Principal = Depends(get_principal),
        db: AsyncSession = Depends(get_db),
    ) -> Allow:
        decision = await authorize(db, principal, role)
        if isinstance(decision, Deny):
            _raise_for_deny(decision)
        return decision

    return _dependency


require_user = require_role()
require_admin = require_role("admin")
require_photographer = require_role("photographer")
require_client = require_role("client")
