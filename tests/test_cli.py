"""Tests for the command-line entry point."""

from __future__ import annotations

import asyncio

import pytest

from switchboard.__main__ import _validate_config, main
from switchboard.config import ConfigKey
from switchboard.crypto import decrypt_value
from switchboard.db import (
    close_database,
    get_all_skills,
    get_all_tasks,
    get_config,
    get_skill,
    init_database,
)


@pytest.fixture(autouse=True)
def _release_test_database():
    """The CLI opens its own on-disk database; drop any in-memory one left behind."""
    import switchboard.db._connection as db_conn

    if db_conn._db is not None:
        db_conn._db.stop()
        if db_conn._db._thread is not None and db_conn._db._thread.is_alive():
            db_conn._db._thread.join(timeout=2)
        db_conn._db = None
    db_conn._write_lock = None


def _run_cli(monkeypatch, *argv: str) -> int:
    monkeypatch.setattr("sys.argv", ["switchboard", *argv])
    with pytest.raises(SystemExit) as exc_info:
        main()
    return exc_info.value.code


def _read(query):
    async def _go():
        await init_database()
        try:
            return await query()
        finally:
            await close_database()

    return asyncio.run(_go())


class TestValidateConfig:
    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("max_tokens", "0"),
            ("max_tokens", "lots"),
            ("provider", "openai"),
            ("assistant_name", "  "),
            ("favourite_colour", "blue"),
        ],
    )
    def test_rejected(self, key, value):
        assert _validate_config(key, value, set()) is not None

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("max_tokens", "4096"),
            ("provider", "ollama"),
            ("assistant_name", "Jarvis"),
            ("model", "claude-opus"),
            ("telegram_bot_token", "123:abc"),
        ],
    )
    def test_accepted(self, key, value):
        assert _validate_config(key, value, {"telegram_bot_token"}) is None


class TestTasksCommand:
    def test_add_then_list(self, monkeypatch, capsys):
        assert _run_cli(monkeypatch, "tasks", "add", "tg:1", "0 9 * * *", "morning brief") == 0
        task_id = capsys.readouterr().out.strip()

        assert _run_cli(monkeypatch, "tasks", "list") == 0
        out = capsys.readouterr().out
        assert task_id in out
        assert "morning brief" in out
        assert "last run: never" in out

    def test_add_rejects_bad_cron(self, monkeypatch, capsys):
        assert _run_cli(monkeypatch, "tasks", "add", "tg:1", "sometimes", "x") == 2
        assert "invalid cron" in capsys.readouterr().err
        assert _read(get_all_tasks) == []

    def test_disable_and_remove(self, monkeypatch, capsys):
        _run_cli(monkeypatch, "tasks", "add", "br:main", "* * * * *", "ping")
        task_id = capsys.readouterr().out.strip()

        assert _run_cli(monkeypatch, "tasks", "disable", task_id) == 0
        assert _read(get_all_tasks)[0].enabled is False

        assert _run_cli(monkeypatch, "tasks", "rm", task_id) == 0
        assert _run_cli(monkeypatch, "tasks", "rm", task_id) == 1

    def test_empty_list(self, monkeypatch, capsys):
        assert _run_cli(monkeypatch, "tasks", "list") == 0
        assert "No scheduled tasks." in capsys.readouterr().out


class TestSkillsCommand:
    @pytest.fixture
    def skill_file(self, tmp_path):
        path = tmp_path / "weather.md"
        path.write_text("Use the weather API.\n", encoding="utf-8")
        return path

    def test_add_then_list(self, monkeypatch, capsys, skill_file):
        argv = ("skills", "add", "Weather", str(skill_file), "--description", "Forecasts")
        assert _run_cli(monkeypatch, *argv) == 0
        skill_id = capsys.readouterr().out.strip()

        assert _run_cli(monkeypatch, "skills", "list") == 0
        out = capsys.readouterr().out
        assert f"{skill_id}  [on ]  Weather" in out
        assert "Forecasts" in out
        assert _read(lambda: get_skill(skill_id)).content == "Use the weather API."

    def test_add_rejects_missing_file(self, monkeypatch, capsys, tmp_path):
        missing = str(tmp_path / "nope.md")
        assert _run_cli(monkeypatch, "skills", "add", "Weather", missing) == 2
        assert "cannot read" in capsys.readouterr().err
        assert _read(get_all_skills) == []

    def test_edit_disable_and_remove(self, monkeypatch, capsys, skill_file, tmp_path):
        _run_cli(monkeypatch, "skills", "add", "Weather", str(skill_file))
        skill_id = capsys.readouterr().out.strip()
        updated = tmp_path / "v2.md"
        updated.write_text("Use the forecast API.", encoding="utf-8")

        assert _run_cli(monkeypatch, "skills", "edit", skill_id, str(updated)) == 0
        assert _run_cli(monkeypatch, "skills", "disable", skill_id) == 0
        skill = _read(lambda: get_skill(skill_id))
        assert skill.content == "Use the forecast API."
        assert skill.enabled is False

        assert _run_cli(monkeypatch, "skills", "rm", skill_id) == 0
        assert _run_cli(monkeypatch, "skills", "enable", skill_id) == 1
        assert "no skill" in capsys.readouterr().err

    def test_empty_list(self, monkeypatch, capsys):
        assert _run_cli(monkeypatch, "skills", "list") == 0
        assert "No skills." in capsys.readouterr().out


class TestConfigCommand:
    def test_plain_value_stored(self, monkeypatch):
        assert _run_cli(monkeypatch, "config", "set", "model", "claude-opus") == 0
        assert _read(lambda: get_config(ConfigKey.MODEL)) == "claude-opus"

    def test_api_key_stored_encrypted(self, monkeypatch):
        assert _run_cli(monkeypatch, "config", "set", "anthropic_api_key", "sk-ant-1") == 0

        stored = _read(lambda: get_config(ConfigKey.ANTHROPIC_API_KEY))
        assert stored != "sk-ant-1"
        assert decrypt_value(stored) == "sk-ant-1"

    def test_invalid_value_rejected(self, monkeypatch, capsys):
        assert _run_cli(monkeypatch, "config", "set", "max_tokens", "-5") == 2
        assert "positive integer" in capsys.readouterr().err
