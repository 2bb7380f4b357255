"""Tests for the recurring task scheduler.

The scheduler loop is not started; ``tick()`` is driven directly with a
fixed clock.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from switchboard.db import get_task, save_task
from switchboard.scheduler import TaskScheduler, mark_scheduled
from switchboard.types import ScheduledTask

NOW = datetime(2024, 6, 1, 9, 0, 30, tzinfo=UTC)


@pytest.fixture(autouse=True)
async def _setup_db(database):
    pass


def _task(id: str = "t1", **kw) -> ScheduledTask:
    defaults = {
        "group_id": "br:main",
        "schedule": "0 9 * * *",
        "prompt": "morning brief",
        "created_at": "2024-05-31T12:00:00+00:00",
    }
    defaults.update(kw)
    return ScheduledTask(id=id, **defaults)


class Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, group_id: str, prompt: str) -> None:
        self.calls.append((group_id, prompt))


def _scheduler(callback, now: datetime = NOW, timezone: str = "UTC") -> TaskScheduler:
    return TaskScheduler(callback, poll_interval=60, timezone=timezone, clock=lambda: now)


class TestMarkScheduled:
    def test_prefixes_marker(self):
        assert mark_scheduled("check mail") == "[SCHEDULED TASK] check mail"

    def test_marker_not_doubled(self):
        assert mark_scheduled("[SCHEDULED TASK] check mail") == "[SCHEDULED TASK] check mail"


class TestTick:
    async def test_due_task_fires_and_records_last_run(self):
        await save_task(_task())
        rec = Recorder()

        assert await _scheduler(rec).tick() == 1

        assert rec.calls == [("br:main", "[SCHEDULED TASK] morning brief")]
        assert (await get_task("t1")).last_run == NOW.isoformat()

    async def test_fires_once_per_occurrence(self):
        await save_task(_task())
        rec = Recorder()
        scheduler = _scheduler(rec)

        await scheduler.tick()
        await scheduler.tick()

        assert len(rec.calls) == 1

    async def test_not_yet_due(self):
        await save_task(_task(created_at="2024-06-01T09:00:10+00:00"))
        rec = Recorder()

        assert await _scheduler(rec).tick() == 0
        assert rec.calls == []

    async def test_missed_occurrences_collapse_to_one_fire(self):
        await save_task(_task(schedule="* * * * *", last_run="2024-06-01T08:00:00+00:00"))
        rec = Recorder()

        assert await _scheduler(rec).tick() == 1
        assert len(rec.calls) == 1

    async def test_disabled_task_skipped(self):
        await save_task(_task(enabled=False))
        rec = Recorder()

        assert await _scheduler(rec).tick() == 0

    async def test_task_without_timestamps_is_not_due(self):
        await save_task(_task(created_at=""))
        rec = Recorder()

        assert await _scheduler(rec).tick() == 0

    async def test_timezone_applies_to_cron(self):
        # 09:00 in New York is 13:00 UTC (EDT).
        await save_task(_task(created_at="2024-06-01T00:00:00+00:00"))
        rec = Recorder()

        assert await _scheduler(rec, timezone="America/New_York").tick() == 0
        later = datetime(2024, 6, 1, 13, 0, 30, tzinfo=UTC)
        assert await _scheduler(rec, now=later, timezone="America/New_York").tick() == 1

    async def test_invalid_cron_isolated(self):
        await save_task(_task("bad", schedule="not a cron"))
        await save_task(_task("good", created_at="2024-05-31T12:00:01+00:00"))
        rec = Recorder()

        assert await _scheduler(rec).tick() == 1
        assert rec.calls == [("br:main", "[SCHEDULED TASK] morning brief")]

    async def test_callback_failure_isolated(self):
        await save_task(_task("a", group_id="tg:1"))
        await save_task(_task("b", group_id="tg:2", created_at="2024-05-31T12:00:01+00:00"))
        seen: list[str] = []

        async def flaky(group_id: str, prompt: str) -> None:
            seen.append(group_id)
            if group_id == "tg:1":
                raise RuntimeError("boom")

        assert await _scheduler(flaky).tick() == 1
        assert seen == ["tg:1", "tg:2"]
        # Recorded before the callback ran, so the failed fire is not retried.
        assert (await get_task("a")).last_run == NOW.isoformat()

    async def test_sync_callback_supported(self):
        await save_task(_task())
        calls: list[str] = []

        assert await _scheduler(lambda g, p: calls.append(g)).tick() == 1
        assert calls == ["br:main"]


class TestLoop:
    async def test_start_runs_first_tick_immediately(self):
        await save_task(_task())
        rec = Recorder()
        scheduler = _scheduler(rec)

        scheduler.start()
        try:
            for _ in range(50):
                if rec.calls:
                    break
                await asyncio.sleep(0.01)
            assert len(rec.calls) == 1
            assert scheduler.running is True
        finally:
            await scheduler.stop()

        assert scheduler.running is False

    async def test_duplicate_start_ignored(self):
        scheduler = _scheduler(Recorder())
        scheduler.start()
        first = scheduler._task
        scheduler.start()

        assert scheduler._task is first
        await scheduler.stop()

    async def test_stop_when_not_started(self):
        await _scheduler(Recorder()).stop()
