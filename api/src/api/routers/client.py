"""Client dashboard data."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from photovault.models import Gallery, GalleryAccessGrant, PaymentRecord, Subscription
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, require_client
from api.errors import ok
from api.services.access import Allow

router = APIRouter()


def _iso(value) -> str | None:
    return value.isoformat() if value else None


@router.get("/galleries")
async def list_galleries(
    limit: int = Query(default=100, ge=1, le=500),
    access: Allow = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Gallery, GalleryAccessGrant)
        .join(GalleryAccessGrant, GalleryAccessGrant.gallery_id == Gallery.id)
        .where(
            GalleryAccessGrant.client_user_id == access.profile.id,
            GalleryAccessGrant.status == "paid",
        )
        .order_by(GalleryAccessGrant.granted_at.desc())
        .limit(limit)
    )
    return ok(
        [
            {
                "id": str(gallery.id),
                "name": gallery.name,
                "photo_count": gallery.photo_count,
                "granted_at": _iso(grant.granted_at),
            }
            for gallery, grant in result.all()
        ]
    )


@router.get("/billing")
async def get_billing(
    access: Allow = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    subs = (
        (
            await db.execute(
                select(Subscription)
                .where(Subscription.user_id == access.profile.id)
                .order_by(Subscription.created_at.desc())
            )
        )
        .scalars()
        .all()
    )
    sub_ids = [sub.stripe_subscription_id for sub in subs]
    payments = []
    if sub_ids:
        payments = (
            (
                await db.execute(
                    select(PaymentRecord)
                    .where(PaymentRecord.stripe_subscription_id.in_(sub_ids))
                    .order_by(PaymentRecord.created_at.desc())
                    .limit(50)
                )
            )
            .scalars()
            .all()
        )
    return ok(
        {
            "subscriptions": [
                {
                    "id": str(sub.id),
                    "gallery_id": str(sub.gallery_id) if sub.gallery_id else None,
                    "status": sub.status,
                    "plan_type": sub.plan_type,
                    "current_period_end": _iso(sub.current_period_end),
                    "cancel_at_period_end": sub.cancel_at_period_end,
                    "payment_failure_count": sub.payment_failure_count,
                    "access_suspended": sub.access_suspended,
                }
                for sub in subs
            ],
            "payments": [
                {
                    "invoice_id": payment.stripe_invoice_id,
                    "status": payment.status,
                    "amount_cents": payment.amount_cents,
                    "currency": payment.currency,
                    "paid_at": _iso(payment.paid_at),
                }
                for payment in payments
            ],
        }
    )
