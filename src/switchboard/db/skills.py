"""Agent skill storage."""

from __future__ import annotations

from switchboard.db._connection import _get_db
from switchboard.types import Skill


def _row_to_skill(row) -> Skill:
    return Skill(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        content=row["content"],
        enabled=bool(row["enabled"]),
    )


async def save_skill(skill: Skill) -> None:
    db = _get_db()
    await db.execute(
        """
        INSERT OR REPLACE INTO skills (id, name, description, content, enabled)
        VALUES (?, ?, ?, ?, ?)
        """,
        (skill.id, skill.name, skill.description, skill.content, 1 if skill.enabled else 0),
    )
    await db.commit()


async def get_skill(skill_id: str) -> Skill | None:
    db = _get_db()
    cursor = await db.execute("SELECT * FROM skills WHERE id = ?", (skill_id,))
    row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_skill(row)


async def get_all_skills() -> list[Skill]:
    db = _get_db()
    cursor = await db.execute("SELECT * FROM skills ORDER BY name, id")
    return [_row_to_skill(row) for row in await cursor.fetchall()]


async def get_enabled_skills() -> list[Skill]:
    db = _get_db()
    cursor = await db.execute("SELECT * FROM skills WHERE enabled = 1 ORDER BY name")
    return [_row_to_skill(row) for row in await cursor.fetchall()]


async def set_skill_enabled(skill_id: str, enabled: bool) -> bool:
    """Returns False when no skill has *skill_id*."""
    db = _get_db()
    cursor = await db.execute(
        "UPDATE skills SET enabled = ? WHERE id = ?", (1 if enabled else 0, skill_id)
    )
    await db.commit()
    return cursor.rowcount > 0


async def update_skill_content(
    skill_id: str, content: str, description: str | None = None
) -> bool:
    """Replace a skill's content, and its description when given."""
    db = _get_db()
    if description is None:
        cursor = await db.execute(
            "UPDATE skills SET content = ? WHERE id = ?", (content, skill_id)
        )
    else:
        cursor = await db.execute(
            "UPDATE skills SET content = ?, description = ? WHERE id = ?",
            (content, description, skill_id),
        )
    await db.commit()
    return cursor.rowcount > 0


async def delete_skill(skill_id: str) -> bool:
    db = _get_db()
    cursor = await db.execute("DELETE FROM skills WHERE id = ?", (skill_id,))
    await db.commit()
    return cursor.rowcount > 0
