"""Scheduled task CRUD."""

from __future__ import annotations

from switchboard.db._connection import _get_db
from switchboard.types import ScheduledTask


def _row_to_task(row) -> ScheduledTask:
    return ScheduledTask(
        id=row["id"],
        group_id=row["group_id"],
        schedule=row["schedule"],
        prompt=row["prompt"],
        enabled=bool(row["enabled"]),
        last_run=row["last_run"],
        created_at=row["created_at"],
    )


async def save_task(task: ScheduledTask) -> None:
    """Insert or replace a scheduled task."""
    db = _get_db()
    await db.execute(
        """
        INSERT OR REPLACE INTO scheduled_tasks
            (id, group_id, schedule, prompt, enabled, last_run, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            task.id,
            task.group_id,
            task.schedule,
            task.prompt,
            1 if task.enabled else 0,
            task.last_run,
            task.created_at,
        ),
    )
    await db.commit()


async def get_task(task_id: str) -> ScheduledTask | None:
    db = _get_db()
    cursor = await db.execute("SELECT * FROM scheduled_tasks WHERE id = ?", (task_id,))
    row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_task(row)


async def get_all_tasks() -> list[ScheduledTask]:
    """All tasks, oldest first."""
    db = _get_db()
    cursor = await db.execute("SELECT * FROM scheduled_tasks ORDER BY created_at, id")
    return [_row_to_task(row) for row in await cursor.fetchall()]


async def get_enabled_tasks() -> list[ScheduledTask]:
    db = _get_db()
    cursor = await db.execute(
        "SELECT * FROM scheduled_tasks WHERE enabled = 1 ORDER BY created_at, id"
    )
    return [_row_to_task(row) for row in await cursor.fetchall()]


async def set_task_enabled(task_id: str, enabled: bool) -> bool:
    """Returns False when no task has *task_id*."""
    db = _get_db()
    cursor = await db.execute(
        "UPDATE scheduled_tasks SET enabled = ? WHERE id = ?",
        (1 if enabled else 0, task_id),
    )
    await db.commit()
    return cursor.rowcount > 0


async def mark_task_fired(task_id: str, at: str) -> None:
    db = _get_db()
    await db.execute("UPDATE scheduled_tasks SET last_run = ? WHERE id = ?", (at, task_id))
    await db.commit()


async def delete_task(task_id: str) -> bool:
    db = _get_db()
    cursor = await db.execute("DELETE FROM scheduled_tasks WHERE id = ?", (task_id,))
    await db.commit()
    return cursor.rowcount > 0
