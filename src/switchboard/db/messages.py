"""Message storage and retrieval."""

from __future__ import annotations

from switchboard.db._connection import _get_db, atomic_write
from switchboard.types import ConversationTurn, StoredMessage


def _row_to_message(row) -> StoredMessage:
    return StoredMessage(
        id=row["id"],
        group_id=row["group_id"],
        sender=row["sender"],
        content=row["content"],
        timestamp=row["timestamp"],
        channel=row["channel"],
        is_from_me=bool(row["is_from_me"]),
        is_trigger=bool(row["is_trigger"]),
    )


_INSERT = (
    "INSERT OR REPLACE INTO messages "
    "(id, group_id, sender, content, timestamp, channel, is_from_me, is_trigger) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
)


def _message_params(msg: StoredMessage) -> tuple:
    return (
        msg.id,
        msg.group_id,
        msg.sender,
        msg.content,
        msg.timestamp,
        msg.channel,
        1 if msg.is_from_me else 0,
        1 if msg.is_trigger else 0,
    )


async def save_message(msg: StoredMessage) -> None:
    db = _get_db()
    await db.execute(_INSERT, _message_params(msg))
    await db.commit()


async def get_recent_messages(group_id: str, limit: int = 50) -> list[StoredMessage]:
    """Most recent *limit* messages for a group. Oldest first."""
    db = _get_db()
    cursor = await db.execute(
        """
        SELECT * FROM messages
        WHERE group_id = ?
        ORDER BY timestamp DESC, rowid DESC
        LIMIT ?
        """,
        (group_id, limit),
    )
    rows = await cursor.fetchall()
    return [_row_to_message(row) for row in reversed(rows)]


async def build_conversation_messages(group_id: str, window: int = 50) -> list[dict[str, str]]:
    """Render recent history as role-tagged turns for the model.

    Messages from the assistant become ``assistant`` turns; everything else is
    a ``user`` turn prefixed with the sender name. Consecutive turns with the
    same role are merged, since providers expect roles to alternate.
    """
    turns: list[ConversationTurn] = []
    for msg in await get_recent_messages(group_id, window):
        if msg.is_from_me:
            role, content = "assistant", msg.content
        else:
            role, content = "user", f"{msg.sender}: {msg.content}"
        if turns and turns[-1].role == role:
            turns[-1].content = f"{turns[-1].content}\n\n{content}"
        else:
            turns.append(ConversationTurn(role=role, content=content))
    return [turn.to_dict() for turn in turns]


async def clear_group_messages(group_id: str) -> None:
    db = _get_db()
    await db.execute("DELETE FROM messages WHERE group_id = ?", (group_id,))
    await db.commit()


async def replace_group_history(group_id: str, msg: StoredMessage) -> None:
    """Replace a group's entire history with *msg* in one transaction."""
    async with atomic_write() as db:
        await db.execute("DELETE FROM messages WHERE group_id = ?", (group_id,))
        await db.execute(_INSERT, _message_params(msg))
