"""Admin user management."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query
from photovault.models import AuditLog, UserProfile
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, require_admin
from api.errors import NotFound, ValidationError, ok
from api.services.access import Allow

router = APIRouter()


class UserUpdateRequest(BaseModel):
    user_type: Literal["admin", "photographer", "client"] | None = None
    disabled: bool | None = None
    full_name: str | None = Field(default=None, max_length=200)
    business_name: str | None = Field(default=None, max_length=200)


def _serialize_profile(profile: UserProfile) -> dict:
    return {
        "id": str(profile.id),
        "email": profile.email,
        "user_type": profile.user_type,
        "full_name": profile.full_name,
        "business_name": profile.business_name,
        "stripe_connected": bool(profile.stripe_connect_account_id),
        "disabled": profile.disabled_at is not None,
        "disabled_at": profile.disabled_at.isoformat() if profile.disabled_at else None,
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
    }


@router.get("/users")
async def list_users(
    q: str | None = None,
    user_type: Literal["admin", "photographer", "client"] | None = None,
    include_disabled: bool = True,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    access: Allow = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    del access
    query = select(UserProfile).order_by(UserProfile.created_at.desc())
    if q:
        term = q.strip().lower()
        query = query.where(
            func.lower(UserProfile.email).contains(term)
            | func.lower(UserProfile.full_name).contains(term)
        )
    if user_type:
        query = query.where(UserProfile.user_type == user_type)
    if not include_disabled:
        query = query.where(UserProfile.disabled_at.is_(None))

    result = await db.execute(query.limit(limit).offset(offset))
    return ok([_serialize_profile(profile) for profile in result.scalars().all()])


@router.patch("/users/{user_id}")
async def update_user(
    user_id: uuid.UUID,
    req: UserUpdateRequest,
    access: Allow = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    changes = req.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No changes provided")
    if user_id == access.profile.id and (
        req.disabled or req.user_type not in (None, "admin")
    ):
        raise ValidationError("Admins cannot disable or demote themselves")

    profile = await db.get(UserProfile, user_id)
    if profile is None:
        raise NotFound("User not found")

    audit: dict[str, object] = {}
    if req.user_type is not None and req.user_type != profile.user_type:
        audit["user_type"] = {"from": profile.user_type, "to": req.user_type}
        profile.user_type = req.user_type
    if req.disabled is not None and req.disabled != (profile.disabled_at is not None):
        profile.disabled_at = datetime.now(UTC) if req.disabled else None
        audit["disabled"] = req.disabled
    if "full_name" in changes:
        profile.full_name = req.full_name
    if "business_name" in changes:
        profile.business_name = req.business_name
    profile.updated_at = datetime.now(UTC)

    if audit:
        db.add(
            AuditLog(
                actor_id=access.profile.id,
                action="user.update",
                target_type="user_profile",
                target_id=str(profile.id),
                detail=audit,
            )
        )
    await db.flush()
    return ok(_serialize_profile(profile))
