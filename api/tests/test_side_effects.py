"""Tests for best-effort side-effect dispatch."""

from __future__ import annotations

import asyncio

from api.services import side_effects


async def test_effect_retried_until_success():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("transient")

    task = side_effects.dispatch("flaky", flaky, backoff=0)
    assert await task is True
    assert len(calls) == 3


async def test_effect_gives_up_after_max_attempts():
    calls = []

    async def broken():
        calls.append(1)
        raise RuntimeError("down")

    task = side_effects.dispatch("broken", broken, attempts=3, backoff=0)
    assert await task is False
    assert len(calls) == 3


async def test_drain_waits_for_pending_effects():
    done = asyncio.Event()

    async def slow():
        await asyncio.sleep(0.01)
        done.set()

    side_effects.dispatch("slow", slow)
    assert side_effects.pending_count() >= 1
    await side_effects.drain(timeout=1)
    assert done.is_set()
    assert side_effects.pending_count() == 0


async def test_drain_cancels_stuck_effects():
    async def stuck():
        await asyncio.sleep(60)

    task = side_effects.dispatch("stuck", stuck)
    await side_effects.drain(timeout=0.01)
    assert task.cancelled()
