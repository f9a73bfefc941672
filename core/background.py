"""
Detached tasks for best-effort side channels.

Slot reservation and usage recording are spawned off the critical path.
Their failures must never reach the request that spawned them, so every
detached task funnels its exception into the logger instead.
"""

import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger(__name__)

# Strong references; the event loop only keeps weak ones
_pending: Set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"Background task {task.get_name()} failed: {error}")


def spawn_detached(coro: Awaitable, name: str) -> asyncio.Task:
    """Schedule `coro` without awaiting it."""
    task = asyncio.ensure_future(coro)
    task.set_name(name)
    _pending.add(task)
    task.add_done_callback(_on_done)
    return task


def pending_count() -> int:
    return len(_pending)


async def drain(timeout: float = 5.0) -> None:
    """Wait for outstanding detached tasks (shutdown and tests)."""
    if not _pending:
        return
    await asyncio.wait(list(_pending), timeout=timeout)
