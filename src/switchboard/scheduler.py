"""Recurring task scheduler.

Polls the enabled scheduled tasks on a fixed interval and hands every due
task to the coordinator's callback. Each fire is recorded in the task's
``last_run`` before the callback runs, so an occurrence is never triggered
twice, not even across a restart. Missed occurrences collapse into a single
fire.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from switchboard.config import SCHEDULED_TASK_MARKER
from switchboard.db import get_enabled_tasks, mark_task_fired
from switchboard.logger import logger
from switchboard.types import ScheduledTask
from switchboard.utils import is_cron_due, parse_iso

TaskCallback = Callable[[str, str], Awaitable[None] | None]


def mark_scheduled(prompt: str) -> str:
    """Prefix *prompt* with the scheduled-task marker unless it already has it."""
    if prompt.startswith(SCHEDULED_TASK_MARKER):
        return prompt
    return f"{SCHEDULED_TASK_MARKER} {prompt}"


class TaskScheduler:
    def __init__(
        self,
        callback: TaskCallback,
        *,
        poll_interval: float,
        timezone: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._callback = callback
        self._poll_interval = poll_interval
        self._timezone = timezone
        self._clock = clock or (lambda: datetime.now(UTC))
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.debug("Scheduler already running, skipping duplicate start")
            return
        self._task = asyncio.create_task(self._loop(), name="task-scheduler")
        logger.info("Scheduler started", poll_interval=self._poll_interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Scheduler stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Error in scheduler loop")
            await asyncio.sleep(self._poll_interval)

    def _is_due(self, task: ScheduledTask, now: datetime) -> bool:
        since = task.last_run or task.created_at
        last = parse_iso(since) if since else now
        return is_cron_due(task.schedule, last, now, self._timezone)

    async def tick(self) -> int:
        """Fire every due task once. Returns how many fired."""
        now = self._clock()
        fired = 0
        for task in await get_enabled_tasks():
            try:
                if not self._is_due(task, now):
                    continue
                await mark_task_fired(task.id, now.isoformat())
                logger.info("Scheduled task due", task_id=task.id, group_id=task.group_id)
                result = self._callback(task.group_id, mark_scheduled(task.prompt))
                if inspect.isawaitable(result):
                    await result
                fired += 1
            except Exception:
                logger.exception("Scheduled task failed", task_id=task.id)
        return fired
