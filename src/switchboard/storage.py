"""Per-group workspace files (memory, notes) under ``groups_dir``."""

from __future__ import annotations

import asyncio
import re
from pathlib import Path

from switchboard.config import get_settings


def group_folder(group_id: str) -> str:
    """Filesystem-safe folder name for a group id (``tg:42`` → ``tg-42``)."""
    return re.sub(r"[^a-zA-Z0-9_-]", "-", group_id)


def group_dir(group_id: str) -> Path:
    return get_settings().groups_dir / group_folder(group_id)


async def read_group_file(group_id: str, name: str) -> str:
    """Read a file from the group's folder. Raises FileNotFoundError if absent."""
    path = group_dir(group_id) / name
    return await asyncio.to_thread(path.read_text, encoding="utf-8")


async def write_group_file(group_id: str, name: str, content: str) -> None:
    path = group_dir(group_id) / name

    def _write() -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    await asyncio.to_thread(_write)
