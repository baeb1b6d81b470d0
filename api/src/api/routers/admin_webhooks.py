"""Admin inspection and replay of stored webhook events."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from photovault.models import AuditLog, WebhookEvent
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, require_admin
from api.errors import NotFound, ok
from api.services import webhook_ingestor
from api.services.access import Allow

router = APIRouter()


def _serialize_event(event: WebhookEvent, *, include_payload: bool = False) -> dict:
    data = {
        "id": str(event.id),
        "provider_event_id": event.provider_event_id,
        "event_type": event.event_type,
        "received_at": event.received_at.isoformat() if event.received_at else None,
        "processed_at": event.processed_at.isoformat() if event.processed_at else None,
        "result_message": event.result_message,
    }
    if include_payload:
        data["payload"] = event.payload
    return data


@router.get("")
async def list_events(
    event_type: str | None = None,
    unprocessed: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    access: Allow = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    del access
    query = select(WebhookEvent).order_by(WebhookEvent.received_at.desc())
    if event_type:
        query = query.where(WebhookEvent.event_type == event_type)
    if unprocessed:
        query = query.where(WebhookEvent.processed_at.is_(None))
    result = await db.execute(query.limit(limit).offset(offset))
    return ok([_serialize_event(event) for event in result.scalars().all()])


@router.get("/{event_id}")
async def get_event(
    event_id: uuid.UUID,
    access: Allow = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    del access
    event = await db.get(WebhookEvent, event_id)
    if event is None:
        raise NotFound("Webhook event not found")
    return ok(_serialize_event(event, include_payload=True))


@router.post("/{event_id}/replay")
async def replay_event(
    event_id: uuid.UUID,
    access: Allow = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(WebhookEvent).where(WebhookEvent.id == event_id).with_for_update()
    )
    event = result.scalars().first()
    if event is None:
        raise NotFound("Webhook event not found")

    db.add(
        AuditLog(
            actor_id=access.profile.id,
            action="webhook.replay",
            target_type="webhook_event",
            target_id=event.provider_event_id,
            detail={"event_type": event.event_type},
        )
    )
    applied = await webhook_ingestor.replay(db, event)
    return ok({"event_id": applied.event_id, "message": applied.message})
