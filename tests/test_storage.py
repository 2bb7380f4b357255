"""Tests for per-group workspace files."""

from __future__ import annotations

import pytest

from switchboard.storage import group_dir, group_folder, read_group_file, write_group_file


@pytest.mark.parametrize(
    ("group_id", "folder"),
    [
        ("br:main", "br-main"),
        ("tg:-100123", "tg--100123"),
        ("dc:a/b..c", "dc-a-b--c"),
        ("plain_name-1", "plain_name-1"),
    ],
)
def test_group_folder_is_filesystem_safe(group_id, folder):
    assert group_folder(group_id) == folder


def test_group_dir_under_groups_dir(reset_settings):
    assert group_dir("tg:1") == reset_settings.groups_dir / "tg-1"


async def test_write_then_read():
    await write_group_file("tg:1", "CLAUDE.md", "remember this")

    assert await read_group_file("tg:1", "CLAUDE.md") == "remember this"


async def test_read_missing():
    with pytest.raises(FileNotFoundError):
        await read_group_file("tg:404", "CLAUDE.md")
