"""Stripe event handlers. One handler per event type, each run inside the
transaction that claimed the event."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from photovault.config import get_settings
from photovault.models import (
    Client,
    Gallery,
    GalleryAccessGrant,
    PaymentRecord,
    Payout,
    Subscription,
    UserProfile,
)
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from api.services.drip_service import enroll_best_effort
from api.services.email_service import send_template_email

logger = logging.getLogger(__name__)

# Failed payments keep access for roughly six months before suspension.
GRACE_PERIOD = timedelta(days=6 * 30)
# A reactivation fee reopens access for a fixed decision window.
REACTIVATION_WINDOW = timedelta(days=30)
DEFAULT_REACTIVATION_FEE_CENTS = 2000

Effect = Callable[[], Awaitable[object]]


@dataclass
class WebhookContext:
    event_id: str
    event_type: str
    account: str | None = None
    effects: list[tuple[str, Effect]] = field(default_factory=list)

    def defer(self, name: str, effect: Effect) -> None:
        """Queue a best-effort effect to run after the transaction commits."""
        self.effects.append((name, effect))


Handler = Callable[[AsyncSession, dict[str, Any], WebhookContext], Awaitable[str]]


def _parse_uuid(value: Any) -> uuid.UUID | None:
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        return uuid.UUID(raw)
    except ValueError:
        return None


def _stripe_id(value: Any) -> str | None:
    """Stripe fields may hold an id string or an expanded object."""
    if isinstance(value, dict):
        value = value.get("id")
    raw = str(value or "").strip()
    return raw or None


def _timestamp(value: Any) -> datetime | None:
    if value in (None, "", 0):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (TypeError, ValueError, OverflowError):
        return None


def _format_amount(amount_cents: int | None, currency: str | None) -> str:
    amount = (amount_cents or 0) / 100
    code = (currency or "usd").upper()
    return f"{amount:.2f} {code}"


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    direct = _stripe_id(invoice.get("subscription"))
    if direct:
        return direct
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return _stripe_id(details.get("subscription"))


async def _profile_by_customer(db: AsyncSession, customer_id: str | None) -> UserProfile | None:
    if not customer_id:
        return None
    result = await db.execute(
        select(UserProfile).where(UserProfile.stripe_customer_id == customer_id)
    )
    return result.scalars().first()


async def _profile_by_email(db: AsyncSession, email: str) -> UserProfile | None:
    result = await db.execute(
        select(UserProfile).where(func.lower(UserProfile.email) == email.strip().lower())
    )
    return result.scalars().first()


async def _resolve_user_id(
    db: AsyncSession, customer_id: str | None, metadata: dict[str, Any]
) -> uuid.UUID | None:
    profile = await _profile_by_customer(db, customer_id)
    if profile is not None:
        return profile.id
    meta_user_id = _parse_uuid(metadata.get("user_id"))
    if meta_user_id is not None and await db.get(UserProfile, meta_user_id) is not None:
        return meta_user_id
    return None


async def _upsert_subscription(
    db: AsyncSession,
    stripe_subscription_id: str,
    values: dict[str, Any],
    *,
    user_id: uuid.UUID | None = None,
    gallery_id: uuid.UUID | None = None,
    overwrite: bool = True,
    update_canceled: bool = False,
) -> None:
    """Insert or update by stripe_subscription_id; never clears a known user or gallery.

    With ``overwrite=False`` an existing row only gains missing links. A canceled
    row is terminal and is left untouched unless ``update_canceled`` is set.
    """
    stmt = pg_insert(Subscription).values(
        stripe_subscription_id=stripe_subscription_id,
        user_id=user_id,
        gallery_id=gallery_id,
        **values,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["stripe_subscription_id"],
        set_={
            **(values if overwrite else {}),
            "stripe_customer_id": func.coalesce(
                Subscription.stripe_customer_id, stmt.excluded.stripe_customer_id
            ),
            "user_id": func.coalesce(Subscription.user_id, stmt.excluded.user_id),
            "gallery_id": func.coalesce(Subscription.gallery_id, stmt.excluded.gallery_id),
            "updated_at": func.now(),
        },
        where=None if update_canceled else Subscription.status != "canceled",
    )
    await db.execute(stmt)


async def _locked_subscription(
    db: AsyncSession, stripe_subscription_id: str
) -> Subscription | None:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.stripe_subscription_id == stripe_subscription_id)
        .with_for_update()
    )
    return result.scalars().first()


async def _record_payment(
    db: AsyncSession,
    invoice: dict[str, Any],
    stripe_subscription_id: str,
    status: str,
) -> bool:
    """Insert the (invoice, status) payment record. False when it already existed."""
    amount = invoice.get("amount_paid") if status == "succeeded" else invoice.get("amount_due")
    transitions = invoice.get("status_transitions") or {}
    stmt = (
        pg_insert(PaymentRecord)
        .values(
            stripe_invoice_id=invoice["id"],
            stripe_subscription_id=stripe_subscription_id,
            status=status,
            amount_cents=int(amount or 0),
            currency=invoice.get("currency"),
            paid_at=_timestamp(transitions.get("paid_at")) if status == "succeeded" else None,
        )
        .on_conflict_do_nothing(index_elements=["stripe_invoice_id", "status"])
        .returning(PaymentRecord.id)
    )
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def _subscriber_context(
    db: AsyncSession, sub: Subscription
) -> tuple[str | None, dict[str, Any]]:
    """Recipient address and template context for subscription emails."""
    profile = await db.get(UserProfile, sub.user_id) if sub.user_id else None
    gallery = await db.get(Gallery, sub.gallery_id) if sub.gallery_id else None
    photographer_name = "Your Photographer"
    if gallery is not None:
        photographer = await db.get(UserProfile, gallery.photographer_id)
        if photographer is not None:
            photographer_name = (
                photographer.business_name or photographer.full_name or photographer_name
            )
    site_url = get_settings().site_url.rstrip("/")
    context = {
        "name": (profile.full_name if profile else None) or "Valued Customer",
        "gallery_name": gallery.name if gallery else "your gallery",
        "photographer_name": photographer_name,
        "access_link": f"{site_url}/gallery/{sub.gallery_id}" if sub.gallery_id else site_url,
    }
    return (profile.email if profile else None), context


def _defer_email(ctx: WebhookContext, template_key: str, to_email: str, context: dict) -> None:
    async def _send() -> None:
        await send_template_email(to_email=to_email, template_key=template_key, context=context)

    ctx.defer(f"{template_key}:{ctx.event_id}", _send)


# --- checkout ---------------------------------------------------------------


async def _apply_gallery_checkout(
    db: AsyncSession,
    session: dict[str, Any],
    metadata: dict[str, Any],
    gallery_id: uuid.UUID,
    ctx: WebhookContext,
) -> str:
    gallery = await db.get(Gallery, gallery_id)
    if gallery is None:
        logger.warning("Checkout %s references unknown gallery %s", session["id"], gallery_id)
        return f"Checkout {session['id']} ignored: gallery {gallery_id} not found"

    customer_email = ""
    customer_name = ""
    client_id = _parse_uuid(metadata.get("client_id") or metadata.get("clientId"))
    if client_id is not None:
        client = await db.get(Client, client_id)
        if client is not None:
            customer_email, customer_name = client.email, client.name
    if not customer_email:
        details = session.get("customer_details") or {}
        customer_email = str(
            details.get("email")
            or metadata.get("client_email")
            or metadata.get("clientEmail")
            or ""
        )
        customer_name = str(details.get("name") or metadata.get("client_name") or customer_name)
    customer_email = customer_email.strip().lower()
    if not customer_email:
        raise ValueError(f"No customer email found in checkout {session['id']}")

    customer_id = _stripe_id(session.get("customer"))
    profile = await _profile_by_email(db, customer_email)
    if profile is not None and customer_id and not profile.stripe_customer_id:
        profile.stripe_customer_id = customer_id

    now = datetime.now(UTC)
    amount_cents = int(session.get("amount_total") or 0)
    stmt = pg_insert(GalleryAccessGrant).values(
        gallery_id=gallery.id,
        client_email=customer_email,
        client_user_id=profile.id if profile else None,
        stripe_checkout_session_id=session["id"],
        status="paid",
        amount_cents=amount_cents,
        granted_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["stripe_checkout_session_id"],
        set_={
            "status": "paid",
            "granted_at": func.coalesce(GalleryAccessGrant.granted_at, stmt.excluded.granted_at),
            "client_user_id": func.coalesce(
                GalleryAccessGrant.client_user_id, stmt.excluded.client_user_id
            ),
        },
    )
    await db.execute(stmt)

    stripe_subscription_id = _stripe_id(session.get("subscription"))
    if stripe_subscription_id:
        await _upsert_subscription(
            db,
            stripe_subscription_id,
            {"stripe_customer_id": customer_id, "status": "incomplete"},
            user_id=profile.id if profile else None,
            gallery_id=gallery.id,
            overwrite=False,
        )

    if profile is not None:
        await enroll_best_effort(
            db,
            profile.id,
            "client_post_payment",
            {"gallery_id": str(gallery.id), "client_name": customer_name},
        )

    site_url = get_settings().site_url.rstrip("/")
    _defer_email(
        ctx,
        "gallery_payment_receipt",
        customer_email,
        {
            "name": customer_name or "there",
            "gallery_name": gallery.name,
            "amount": _format_amount(amount_cents, session.get("currency")),
            "access_link": f"{site_url}/gallery/{gallery.id}",
        },
    )
    return f"Gallery {gallery.id} unlocked for {customer_email}"


async def _apply_reactivation(
    db: AsyncSession, session: dict[str, Any], metadata: dict[str, Any], ctx: WebhookContext
) -> str:
    stripe_subscription_id = _stripe_id(metadata.get("stripe_subscription_id"))
    if not stripe_subscription_id:
        raise ValueError(f"Reactivation checkout {session['id']} has no stripe_subscription_id")

    now = datetime.now(UTC)
    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.stripe_subscription_id == stripe_subscription_id,
            Subscription.status != "canceled",
        )
        .values(
            status="active",
            access_suspended=False,
            access_suspended_at=None,
            payment_failure_count=0,
            last_payment_failure_at=None,
            current_period_start=now,
            current_period_end=now + REACTIVATION_WINDOW,
            updated_at=now,
        )
    )
    if not result.rowcount:
        logger.warning(
            "Reactivation checkout %s matched no open subscription %s",
            session["id"],
            stripe_subscription_id,
        )
        return f"Reactivation for {stripe_subscription_id} ignored: no open subscription"

    await db.execute(
        pg_insert(PaymentRecord)
        .values(
            stripe_invoice_id=_stripe_id(session.get("payment_intent")) or session["id"],
            stripe_subscription_id=stripe_subscription_id,
            status="succeeded",
            amount_cents=int(session.get("amount_total") or DEFAULT_REACTIVATION_FEE_CENTS),
            currency=session.get("currency") or "usd",
            paid_at=now,
        )
        .on_conflict_do_nothing(index_elements=["stripe_invoice_id", "status"])
    )

    sub = await _locked_subscription(db, stripe_subscription_id)
    if sub is not None:
        to_email, context = await _subscriber_context(db, sub)
        if to_email:
            context["photographer_name"] = "PhotoVault"
            _defer_email(ctx, "access_restored", to_email, context)
    logger.info(
        "Subscription %s reactivated until %s",
        stripe_subscription_id,
        (now + REACTIVATION_WINDOW).isoformat(),
    )
    return f"Reactivation completed for subscription {stripe_subscription_id}"


async def handle_checkout_completed(
    db: AsyncSession, session: dict[str, Any], ctx: WebhookContext
) -> str:
    metadata = session.get("metadata") or {}
    purchase_type = metadata.get("purchase_type")
    checkout_type = metadata.get("type")

    if checkout_type == "reactivation":
        return await _apply_reactivation(db, session, metadata, ctx)

    gallery_id = _parse_uuid(metadata.get("gallery_id") or metadata.get("galleryId"))
    if gallery_id is not None:
        return await _apply_gallery_checkout(db, session, metadata, gallery_id, ctx)

    if purchase_type == "subscription":
        user_id = _parse_uuid(metadata.get("user_id"))
        customer_id = _stripe_id(session.get("customer"))
        if user_id is not None and customer_id:
            profile = await db.get(UserProfile, user_id)
            if profile is not None and not profile.stripe_customer_id:
                profile.stripe_customer_id = customer_id
        return f"Subscription checkout completed for user {user_id}; applied by subscription events"

    logger.info("Unhandled checkout type: %s", purchase_type or checkout_type or "unknown")
    return f"Checkout completed, type: {purchase_type or checkout_type or 'unknown'}"


# --- subscriptions -------------------------------------------------------------


def _subscription_values(sub: dict[str, Any]) -> dict[str, Any]:
    items = (sub.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    metadata = sub.get("metadata") or {}
    values: dict[str, Any] = {
        "stripe_customer_id": _stripe_id(sub.get("customer")),
        "status": str(sub.get("status") or "incomplete"),
        "cancel_at_period_end": bool(sub.get("cancel_at_period_end")),
        "canceled_at": _timestamp(sub.get("canceled_at")),
        "current_period_start": _timestamp(
            sub.get("current_period_start") or first_item.get("current_period_start")
        ),
        "current_period_end": _timestamp(
            sub.get("current_period_end") or first_item.get("current_period_end")
        ),
    }
    if metadata.get("plan_type"):
        values["plan_type"] = str(metadata["plan_type"])
    return values


async def _sync_subscription(
    db: AsyncSession, sub: dict[str, Any], *, deleted: bool = False
) -> tuple[str, uuid.UUID | None]:
    stripe_subscription_id = _stripe_id(sub.get("id"))
    if not stripe_subscription_id:
        raise ValueError("Subscription event without an id")
    values = _subscription_values(sub)
    metadata = sub.get("metadata") or {}
    user_id = await _resolve_user_id(db, values["stripe_customer_id"], metadata)
    if deleted:
        values["status"] = "canceled"
        values["cancel_at_period_end"] = False
        values["canceled_at"] = values["canceled_at"] or datetime.now(UTC)
    if user_id is None:
        logger.warning(
            "No user found for Stripe customer %s (subscription %s)",
            values["stripe_customer_id"],
            stripe_subscription_id,
        )
    await _upsert_subscription(
        db,
        stripe_subscription_id,
        values,
        user_id=user_id,
        gallery_id=_parse_uuid(metadata.get("gallery_id")),
        update_canceled=deleted,
    )
    return stripe_subscription_id, user_id


async def handle_subscription_created(
    db: AsyncSession, sub: dict[str, Any], ctx: WebhookContext
) -> str:
    sub_id, user_id = await _sync_subscription(db, sub)
    return f"Created subscription {sub_id} for user {user_id}"


async def handle_subscription_updated(
    db: AsyncSession, sub: dict[str, Any], ctx: WebhookContext
) -> str:
    sub_id, _ = await _sync_subscription(db, sub)
    return f"Subscription {sub_id} updated"


async def handle_subscription_deleted(
    db: AsyncSession, sub: dict[str, Any], ctx: WebhookContext
) -> str:
    sub_id, _ = await _sync_subscription(db, sub, deleted=True)
    return f"Subscription {sub_id} canceled"


# --- invoices -------------------------------------------------------------------


async def _subscription_for_invoice(
    db: AsyncSession, invoice: dict[str, Any], stripe_subscription_id: str, status: str
) -> Subscription:
    sub = await _locked_subscription(db, stripe_subscription_id)
    if sub is not None:
        return sub
    # Invoice arrived before the subscription events; create the record it needs.
    customer_id = _stripe_id(invoice.get("customer"))
    await _upsert_subscription(
        db,
        stripe_subscription_id,
        {"stripe_customer_id": customer_id, "status": status},
        user_id=await _resolve_user_id(db, customer_id, invoice.get("metadata") or {}),
        overwrite=False,
    )
    sub = await _locked_subscription(db, stripe_subscription_id)
    if sub is None:
        raise RuntimeError(f"Subscription {stripe_subscription_id} missing after upsert")
    return sub


def _late_invoice(invoice: dict[str, Any], stripe_subscription_id: str) -> str:
    logger.info(
        "Invoice %s for canceled subscription %s recorded without a state change",
        invoice.get("id"),
        stripe_subscription_id,
    )
    return (
        f"Invoice {invoice.get('id')} recorded; "
        f"subscription {stripe_subscription_id} is canceled"
    )


async def handle_invoice_paid(
    db: AsyncSession, invoice: dict[str, Any], ctx: WebhookContext
) -> str:
    stripe_subscription_id = _invoice_subscription_id(invoice)
    if not stripe_subscription_id:
        return f"Invoice {invoice.get('id')} paid (not subscription-related)"

    await _record_payment(db, invoice, stripe_subscription_id, "succeeded")
    sub = await _subscription_for_invoice(db, invoice, stripe_subscription_id, "active")
    if sub.status == "canceled":
        return _late_invoice(invoice, stripe_subscription_id)
    was_suspended = sub.access_suspended

    sub.status = "active"
    sub.current_period_start = _timestamp(invoice.get("period_start")) or sub.current_period_start
    sub.current_period_end = _timestamp(invoice.get("period_end")) or sub.current_period_end
    sub.payment_failure_count = 0
    sub.last_payment_failure_at = None
    sub.access_suspended = False
    sub.access_suspended_at = None
    sub.updated_at = datetime.now(UTC)

    if was_suspended:
        logger.info("Access restored for subscription %s", stripe_subscription_id)
        to_email, context = await _subscriber_context(db, sub)
        if to_email:
            _defer_email(ctx, "access_restored", to_email, context)
    return f"Payment succeeded for subscription {stripe_subscription_id}"


async def handle_invoice_payment_failed(
    db: AsyncSession, invoice: dict[str, Any], ctx: WebhookContext
) -> str:
    stripe_subscription_id = _invoice_subscription_id(invoice)
    if not stripe_subscription_id:
        return f"Invoice {invoice.get('id')} payment failed (not subscription-related)"

    if not await _record_payment(db, invoice, stripe_subscription_id, "failed"):
        return f"Failure for invoice {invoice['id']} already counted"

    sub = await _subscription_for_invoice(db, invoice, stripe_subscription_id, "past_due")
    if sub.status == "canceled":
        return _late_invoice(invoice, stripe_subscription_id)
    now = datetime.now(UTC)
    # last_payment_failure_at marks the start of the current failure streak.
    streak_start = sub.last_payment_failure_at or now
    elapsed = now - streak_start
    should_suspend = elapsed >= GRACE_PERIOD and not sub.access_suspended

    sub.status = "past_due"
    sub.payment_failure_count = (sub.payment_failure_count or 0) + 1
    if sub.last_payment_failure_at is None:
        sub.last_payment_failure_at = now
    if should_suspend:
        sub.access_suspended = True
        sub.access_suspended_at = now
        logger.info("Suspending access for subscription %s after grace period", sub.id)
    sub.updated_at = now

    to_email, context = await _subscriber_context(db, sub)
    if to_email:
        remaining = max(timedelta(0), GRACE_PERIOD - elapsed)
        context["amount"] = _format_amount(invoice.get("amount_due"), invoice.get("currency"))
        context["grace_period_days"] = remaining.days or GRACE_PERIOD.days
        _defer_email(ctx, "payment_failed", to_email, context)
    return (
        f"Payment failed for subscription {stripe_subscription_id}, "
        f"failure count: {sub.payment_failure_count}, suspended: {should_suspend}"
    )


# --- payouts --------------------------------------------------------------------


async def handle_payout_created(
    db: AsyncSession, payout: dict[str, Any], ctx: WebhookContext
) -> str:
    account = ctx.account or _stripe_id(payout.get("destination"))
    photographer = None
    if account:
        result = await db.execute(
            select(UserProfile).where(UserProfile.stripe_connect_account_id == account)
        )
        photographer = result.scalars().first()
    if photographer is None:
        logger.warning("No photographer for Stripe Connect account %s", account)
        return f"Payout {payout.get('id')} created but photographer not found"

    await db.execute(
        pg_insert(Payout)
        .values(
            photographer_id=photographer.id,
            stripe_payout_id=payout["id"],
            amount_cents=int(payout.get("amount") or 0),
            currency=str(payout.get("currency") or "usd"),
            status=str(payout.get("status") or "pending"),
            arrival_date=_timestamp(payout.get("arrival_date")),
            description=payout.get("description") or "Photographer earnings payout",
        )
        .on_conflict_do_nothing(index_elements=["stripe_payout_id"])
    )
    return f"Payout {payout['id']} recorded for photographer {photographer.id}"


HANDLERS: dict[str, Handler] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_succeeded": handle_invoice_paid,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "payout.created": handle_payout_created,
}
