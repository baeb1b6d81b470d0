"""Idempotent Stripe webhook ingestion.

The event row is claimed with ``INSERT ... ON CONFLICT DO NOTHING`` and the
state transition runs in the same transaction. A failing handler therefore
rolls the claim back and Stripe's retry is processed from scratch; a second
concurrent delivery blocks on the unique index until the first commits and is
then answered as a duplicate.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from photovault.database import get_session
from photovault.models import WebhookEvent, WebhookLog
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from api.services import side_effects
from api.services.stripe_service import InvalidWebhook, verify_webhook_signature
from api.services.webhook_handlers import HANDLERS, WebhookContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Applied:
    event_id: str
    event_type: str
    message: str


@dataclass(frozen=True)
class Duplicate:
    event_id: str
    event_type: str


@dataclass(frozen=True)
class Rejected:
    reason: str


IngestResult = Applied | Duplicate | Rejected


def parse_event(payload: bytes, sig_header: str) -> dict[str, Any]:
    """Verify and shape-check an event. Raises InvalidWebhook."""
    event = verify_webhook_signature(payload, sig_header)

    event_id = str(event.get("id") or "").strip()
    event_type = str(event.get("type") or "").strip()
    data = event.get("data")
    if not event_id or not event_type:
        raise InvalidWebhook("Event is missing id or type")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise InvalidWebhook("Event is missing data.object")
    return event


async def claim_event(db: AsyncSession, event: dict[str, Any]) -> bool:
    """Claim the event for processing. False when it was already processed."""
    stmt = (
        pg_insert(WebhookEvent)
        .values(provider_event_id=event["id"], event_type=event["type"], payload=event)
        .on_conflict_do_nothing(index_elements=["provider_event_id"])
        .returning(WebhookEvent.id)
    )
    if (await db.execute(stmt)).scalar_one_or_none() is not None:
        return True

    result = await db.execute(
        select(WebhookEvent)
        .where(WebhookEvent.provider_event_id == event["id"])
        .with_for_update()
    )
    existing = result.scalars().first()
    # An unprocessed row is an event queued for replay.
    return existing is not None and existing.processed_at is None


async def apply_event(db: AsyncSession, event: dict[str, Any], ctx: WebhookContext) -> str:
    handler = HANDLERS.get(event["type"])
    if handler is None:
        logger.info("Unhandled Stripe event type %s (%s)", event["type"], event["id"])
        return f"Unhandled event type: {event['type']}"
    return await handler(db, event["data"]["object"], ctx)


async def mark_processed(db: AsyncSession, provider_event_id: str, message: str) -> None:
    await db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.provider_event_id == provider_event_id)
        .values(processed_at=datetime.now(UTC), result_message=message)
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _dispatch_effects(ctx: WebhookContext) -> None:
    for name, effect in ctx.effects:
        side_effects.dispatch(name, effect)


async def _process(db: AsyncSession, event: dict[str, Any], started: float) -> Applied:
    ctx = WebhookContext(
        event_id=event["id"],
        event_type=event["type"],
        account=event.get("account"),
    )
    message = await apply_event(db, event, ctx)
    await mark_processed(db, event["id"], message)
    db.add(
        WebhookLog(
            event_id=event["id"],
            event_type=event["type"],
            status="success",
            message=message,
            processing_time_ms=_elapsed_ms(started),
        )
    )
    await db.commit()
    _dispatch_effects(ctx)
    logger.info("Stripe event %s (%s): %s", event["id"], event["type"], message)
    return Applied(event_id=event["id"], event_type=event["type"], message=message)


async def ingest(db: AsyncSession, payload: bytes, sig_header: str) -> IngestResult:
    """Verify, deduplicate and apply one delivery.

    Handler failures propagate after the transaction is rolled back so the
    provider retries the delivery.
    """
    started = time.monotonic()
    try:
        event = parse_event(payload, sig_header)
    except InvalidWebhook as exc:
        logger.warning("Rejected Stripe webhook: %s", exc)
        return Rejected(reason=str(exc))

    if not await claim_event(db, event):
        db.add(
            WebhookLog(
                event_id=event["id"],
                event_type=event["type"],
                status="duplicate",
                processing_time_ms=_elapsed_ms(started),
            )
        )
        logger.info("Stripe duplicate webhook ignored: %s", event["id"])
        return Duplicate(event_id=event["id"], event_type=event["type"])

    try:
        return await _process(db, event, started)
    except Exception as exc:
        await db.rollback()
        await record_failure(event.get("id"), event.get("type", "unknown"), exc, started)
        raise


async def replay(db: AsyncSession, row: WebhookEvent) -> Applied:
    """Re-run a stored event through the dispatcher."""
    started = time.monotonic()
    row.processed_at = None
    await db.flush()
    return await _process(db, row.payload, started)


async def record_failure(
    event_id: str | None, event_type: str, exc: Exception, started: float
) -> None:
    """Write a failure log row outside the rolled-back request transaction."""
    try:
        async with get_session() as session:
            session.add(
                WebhookLog(
                    event_id=event_id,
                    event_type=event_type,
                    status="failed",
                    message=f"{type(exc).__name__}: {exc}"[:2000],
                    processing_time_ms=_elapsed_ms(started),
                )
            )
    except Exception:
        logger.exception("Failed to record webhook failure for %s", event_id)
