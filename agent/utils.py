"""
agent/utils.py — Shared Agent Utilities

Helpers used by both the orchestrator and the execution engine.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

from observability.logger import get_logger

log = get_logger(__name__)

# Strong references to background tasks; asyncio only keeps weak ones.
_BG_TASKS: set[asyncio.Task] = set()


def fire_and_forget(coro, label: str = "bg_task") -> asyncio.Task:
    """
    Schedule `coro` in the background and log it if it fails.

    Used for work the turn must not wait on: the delayed progress `cleared`
    event and chat-log title bumps.
    """
    task = asyncio.create_task(coro)
    _BG_TASKS.add(task)

    def _on_done(t: asyncio.Task) -> None:
        _BG_TASKS.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            log.warning(
                "bg_task.failed",
                label=label,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    task.add_done_callback(_on_done)
    return task


def now_in(timezone: str) -> datetime:
    """Timezone-aware "now" in the configured IANA zone."""
    return datetime.now(ZoneInfo(timezone))


def clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"
