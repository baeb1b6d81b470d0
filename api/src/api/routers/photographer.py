"""Photographer dashboard data."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query
from photovault.models import Client, Gallery, Payout
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, require_photographer
from api.errors import ok
from api.services import side_effects
from api.services.access import Allow
from api.services.drip_service import enroll_best_effort
from api.services.email_service import send_template_email

router = APIRouter()


def _serialize_client(client: Client) -> dict:
    return {
        "id": str(client.id),
        "name": client.name,
        "email": client.email,
        "status": client.status,
        "user_id": str(client.user_id) if client.user_id else None,
        "created_at": client.created_at.isoformat() if client.created_at else None,
    }


def _serialize_gallery(gallery: Gallery) -> dict:
    return {
        "id": str(gallery.id),
        "name": gallery.name,
        "client_id": str(gallery.client_id) if gallery.client_id else None,
        "photo_count": gallery.photo_count,
        "created_at": gallery.created_at.isoformat() if gallery.created_at else None,
    }


@router.get("/clients")
async def list_clients(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    access: Allow = Depends(require_photographer),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Client)
        .where(Client.photographer_id == access.profile.id)
        .order_by(Client.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return ok([_serialize_client(client) for client in result.scalars().all()])


@router.get("/galleries")
async def list_galleries(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    access: Allow = Depends(require_photographer),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Gallery)
        .where(Gallery.photographer_id == access.profile.id)
        .order_by(Gallery.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return ok([_serialize_gallery(gallery) for gallery in result.scalars().all()])


@router.get("/stats")
async def get_stats(
    access: Allow = Depends(require_photographer),
    db: AsyncSession = Depends(get_db),
):
    photographer_id = access.profile.id
    month_start = datetime.now(UTC).replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    active_clients = (
        await db.execute(
            select(func.count(Client.id)).where(
                Client.photographer_id == photographer_id, Client.status == "active"
            )
        )
    ).scalar_one()
    total_galleries, total_photos = (
        await db.execute(
            select(func.count(Gallery.id), func.coalesce(func.sum(Gallery.photo_count), 0)).where(
                Gallery.photographer_id == photographer_id
            )
        )
    ).one()
    total_payouts, month_payouts = (
        await db.execute(
            select(
                func.coalesce(func.sum(Payout.amount_cents), 0),
                func.coalesce(
                    func.sum(Payout.amount_cents).filter(Payout.created_at >= month_start), 0
                ),
            ).where(Payout.photographer_id == photographer_id)
        )
    ).one()

    return ok(
        {
            "active_clients": int(active_clients or 0),
            "total_galleries": int(total_galleries or 0),
            "total_photos": int(total_photos or 0),
            "total_payouts_cents": int(total_payouts or 0),
            "month_payouts_cents": int(month_payouts or 0),
        }
    )


@router.post("/welcome")
async def send_welcome(
    access: Allow = Depends(require_photographer),
    db: AsyncSession = Depends(get_db),
):
    """Post-signup hook: welcome email plus the onboarding drip sequence."""
    profile = access.profile
    name = profile.full_name or profile.business_name or "there"
    enrolled = await enroll_best_effort(
        db, profile.id, "photographer_post_signup", {"photographer_name": name}
    )
    if not enrolled:
        return ok({"enrolled": False})
    await db.commit()

    to_email = profile.email or access.principal.email
    if to_email:

        async def _send() -> None:
            await send_template_email(
                to_email=to_email, template_key="photographer_welcome", context={"name": name}
            )

        side_effects.dispatch(f"photographer_welcome:{profile.id}", _send)
    return ok({"enrolled": enrolled})
