"""Background maintenance loop (drip batch + abandoned upload cleanup)."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from photovault.config import get_settings
from photovault.database import get_session

from api.services.drip_service import run_drip_batch
from api.services.upload_service import purge_abandoned_uploads

logger = logging.getLogger(__name__)


async def run_maintenance_worker(
    stop_event: asyncio.Event,
    *,
    poll_interval_seconds: float = 60.0,
) -> None:
    settings = get_settings()
    drip_interval = timedelta(seconds=settings.drip_worker_interval_seconds)
    drip_enabled = settings.drip_worker_interval_seconds > 0
    retention_interval = timedelta(hours=24)
    upload_retention = timedelta(hours=max(1, settings.upload_retention_hours))
    last_drip_at: datetime | None = None
    last_retention_at: datetime | None = None

    logger.info("Maintenance worker started (drip scheduler %s)", "on" if drip_enabled else "off")
    try:
        while not stop_event.is_set():
            now = datetime.now(UTC)
            should_drip = drip_enabled and (
                last_drip_at is None or (now - last_drip_at) >= drip_interval
            )
            should_retention = (
                last_retention_at is None or (now - last_retention_at) >= retention_interval
            )

            if should_drip:
                try:
                    await run_drip_batch()
                    last_drip_at = datetime.now(UTC)
                except Exception:
                    logger.exception("Scheduled drip batch failed")

            if should_retention:
                try:
                    async with get_session() as db:
                        await purge_abandoned_uploads(db, older_than=upload_retention)
                    last_retention_at = datetime.now(UTC)
                except Exception:
                    logger.exception("Scheduled upload cleanup failed")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll_interval_seconds)
            except TimeoutError:
                pass
    finally:
        logger.info("Maintenance worker stopped")
