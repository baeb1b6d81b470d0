"""Best-effort dispatch of secondary effects (emails, notifications).

Effects run as background tasks after the caller has moved on. Each effect is
retried a bounded number of times; final failures are logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BASE_BACKOFF_SECONDS = 0.5

_pending: set[asyncio.Task] = set()


async def _run_with_retry(
    name: str,
    effect: Callable[[], Awaitable[object]],
    attempts: int,
    backoff: float,
) -> bool:
    for attempt in range(1, attempts + 1):
        try:
            await effect()
            return True
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if attempt >= attempts:
                logger.error("Side effect %s failed after %d attempts: %s", name, attempt, exc)
                return False
            logger.warning("Side effect %s attempt %d failed: %s", name, attempt, exc)
            await asyncio.sleep(backoff * (2 ** (attempt - 1)))
    return False


def dispatch(
    name: str,
    effect: Callable[[], Awaitable[object]],
    *,
    attempts: int = MAX_ATTEMPTS,
    backoff: float = BASE_BACKOFF_SECONDS,
) -> asyncio.Task:
    """Schedule ``effect`` without awaiting it. ``effect`` is a zero-arg coroutine factory."""
    task = asyncio.create_task(_run_with_retry(name, effect, attempts, backoff))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


def pending_count() -> int:
    return len(_pending)


async def drain(timeout: float = 10.0) -> None:
    """Wait for in-flight effects; cancel whatever is still running after ``timeout``."""
    if not _pending:
        return
    tasks = list(_pending)
    _done, still_running = await asyncio.wait(tasks, timeout=timeout)
    for task in still_running:
        task.cancel()
    if still_running:
        logger.warning("Cancelled %d side effects on shutdown", len(still_running))
        await asyncio.gather(*still_running, return_exceptions=True)
