"""Persisted key/value configuration."""

from __future__ import annotations

from switchboard.db._connection import _get_db


async def get_config(key: str) -> str | None:
    db = _get_db()
    cursor = await db.execute("SELECT value FROM config WHERE key = ?", (key,))
    row = await cursor.fetchone()
    return row["value"] if row else None


async def set_config(key: str, value: str) -> None:
    db = _get_db()
    await db.execute(
        "INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)",
        (key, value),
    )
    await db.commit()


async def delete_config(key: str) -> None:
    db = _get_db()
    await db.execute("DELETE FROM config WHERE key = ?", (key,))
    await db.commit()
