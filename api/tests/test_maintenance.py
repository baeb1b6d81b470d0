"""Tests for the background maintenance loop."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

from api.services import maintenance
from photovault.config import reset_settings_cache


def _fake_session():
    @asynccontextmanager
    async def _get_session():
        yield AsyncMock()

    return _get_session


async def test_purges_uploads_and_skips_drip_when_disabled():
    stop = asyncio.Event()

    async def purge(db, *, older_than):
        stop.set()
        return 0

    with (
        patch.object(maintenance, "get_session", _fake_session()),
        patch.object(maintenance, "purge_abandoned_uploads", new=AsyncMock(side_effect=purge)),
        patch.object(maintenance, "run_drip_batch", new=AsyncMock()) as drip,
    ):
        await asyncio.wait_for(maintenance.run_maintenance_worker(stop), timeout=1)

    drip.assert_not_awaited()


async def test_runs_drip_when_interval_configured(monkeypatch):
    monkeypatch.setenv("DRIP_WORKER_INTERVAL_SECONDS", "30")
    reset_settings_cache()
    stop = asyncio.Event()

    async def drip():
        stop.set()

    with (
        patch.object(maintenance, "get_session", _fake_session()),
        patch.object(maintenance, "purge_abandoned_uploads", new=AsyncMock(return_value=0)),
        patch.object(maintenance, "run_drip_batch", new=AsyncMock(side_effect=drip)) as batch,
    ):
        await asyncio.wait_for(maintenance.run_maintenance_worker(stop), timeout=1)

    batch.assert_awaited_once()


async def test_failed_job_does_not_stop_the_loop():
    stop = asyncio.Event()
    calls = []

    async def purge(db, *, older_than):
        calls.append(1)
        stop.set()
        raise RuntimeError("storage down")

    with (
        patch.object(maintenance, "get_session", _fake_session()),
        patch.object(maintenance, "purge_abandoned_uploads", new=AsyncMock(side_effect=purge)),
    ):
        await asyncio.wait_for(maintenance.run_maintenance_worker(stop), timeout=1)

    assert calls == [1]
