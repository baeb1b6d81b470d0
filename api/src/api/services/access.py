"""Role resolution and access decisions."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from photovault.config import get_settings
from photovault.models import UserProfile
from sqlalchemy.ext.asyncio import AsyncSession

from api.services.auth_provider import Principal

logger = logging.getLogger(__name__)

ROLES = ("admin", "photographer", "client")

DASHBOARDS = {
    "admin": "/admin/dashboard",
    "photographer": "/photographer/dashboard",
    "client": "/client/dashboard",
}

DENY_NOT_PROVISIONED = "profile not provisioned"
DENY_DISABLED = "account disabled"
DENY_FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Allow:
    role: str
    profile: UserProfile
    principal: Principal


@dataclass(frozen=True)
class Deny:
    reason: str


def route_for(role: str) -> str:
    """Dashboard path for a role. Unknown roles fall back to the client dashboard."""
    return DASHBOARDS.get(role, DASHBOARDS["client"])


def resolve_role(principal: Principal, profile: UserProfile) -> str:
    if principal.email and principal.email.lower() in get_settings().admin_email_set:
        return "admin"
    return profile.user_type


async def authorize(
    db: AsyncSession,
    principal: Principal,
    required_role: str | None = None,
) -> Allow | Deny:
    profile = await db.get(UserProfile, principal.id)
    if profile is None:
        return Deny(DENY_NOT_PROVISIONED)
    if profile.disabled_at is not None:
        return Deny(DENY_DISABLED)

    role = resolve_role(principal, profile)
    if required_role is not None and role not in (required_role, "admin"):
        logger.info("Denied %s access to %s area", role, required_role)
        return Deny(DENY_FORBIDDEN)
    return Allow(role=role, profile=profile, principal=principal)
