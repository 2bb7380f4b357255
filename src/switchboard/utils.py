"""Shared utility functions.

Small helpers used across multiple modules: id generation, timestamps,
cron due-checks, background tasks and the resettable idle timer.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo

from croniter import croniter

from switchboard.logger import logger

_id_counter = itertools.count(1)


def generate_message_id(prefix: str = "") -> str:
    """Generate a unique, roughly time-ordered id.

    Millisecond timestamp plus a process-local counter so two ids minted in
    the same millisecond never collide.
    """
    ms = int(datetime.now(UTC).timestamp() * 1000)
    ident = f"{ms}-{next(_id_counter)}"
    return f"{prefix}-{ident}" if prefix else ident


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 string, treating naive values as UTC."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def is_cron_due(schedule: str, last_fired: datetime, now: datetime, timezone: str) -> bool:
    """True when at least one occurrence of *schedule* falls in (last_fired, now].

    The cron expression is evaluated in *timezone*. Raises ValueError for an
    invalid expression.
    """
    if not croniter.is_valid(schedule):
        raise ValueError(f"Invalid cron expression: {schedule}")
    tz = ZoneInfo(timezone)
    cron = croniter(schedule, last_fired.astimezone(tz))
    next_fire: datetime = cron.get_next(datetime)
    return next_fire <= now.astimezone(tz)


def create_background_task(
    coro: Coroutine[Any, Any, Any],
    *,
    name: str | None = None,
) -> asyncio.Task[Any]:
    """Create an asyncio task that logs exceptions instead of swallowing them."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    task.add_done_callback(_log_task_exception)
    return task


# Strong references so fire-and-forget tasks are not garbage collected mid-flight.
_background_tasks: set[asyncio.Task[Any]] = set()


def _log_task_exception(task: asyncio.Task[Any]) -> None:
    """Callback attached to background tasks; logs unhandled exceptions."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        # Pass the exception to exc_info so structlog renders the full
        # traceback.  logger.exception() won't work here because we're
        # in a done-callback, not an except handler.
        logger.error(
            "Background task failed",
            task_name=task.get_name(),
            exc_info=exc,
        )


class IdleTimer:
    """Resettable timer that fires a callback after a period of inactivity.

    The coordinator arms one per invocation and resets it on every progress
    envelope from the worker.
    """

    def __init__(self, timeout: float, callback: Callable[[], None]) -> None:
        self._timeout = timeout
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self._loop = asyncio.get_running_loop()

    def reset(self) -> None:
        """Cancel any pending timer and start a fresh countdown."""
        if self._handle is not None:
            self._handle.cancel()
        self._handle = self._loop.call_later(self._timeout, self._callback)

    def cancel(self) -> None:
        """Cancel the timer without firing the callback."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
