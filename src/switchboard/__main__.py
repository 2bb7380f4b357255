"""Entry point for `python -m switchboard` / `switchboard`.

Subcommands:
    switchboard                          Run the service (default)
    switchboard tasks list               List scheduled tasks
    switchboard tasks add GROUP CRON PROMPT
    switchboard tasks enable|disable|rm TASK_ID
    switchboard skills list              List agent skills
    switchboard skills add NAME FILE [--description TEXT]
    switchboard skills edit SKILL_ID FILE [--description TEXT]
    switchboard skills enable|disable|rm SKILL_ID
    switchboard config set KEY VALUE     Persist a configuration value
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from croniter import croniter

from switchboard.config import ConfigKey
from switchboard.crypto import encrypt_value
from switchboard.db import (
    close_database,
    delete_skill,
    delete_task,
    get_all_skills,
    get_all_tasks,
    init_database,
    save_skill,
    save_task,
    set_config,
    set_skill_enabled,
    set_task_enabled,
    update_skill_content,
)
from switchboard.plugin import collect_channel_specs, get_plugin_manager
from switchboard.types import ScheduledTask, Skill
from switchboard.utils import generate_message_id, now_iso


def _run() -> None:
    from switchboard.app import SwitchboardApp

    app = SwitchboardApp()
    asyncio.run(app.run())


async def _with_database(action) -> int:
    await init_database()
    try:
        return await action()
    finally:
        await close_database()


async def _tasks(args: argparse.Namespace) -> int:
    match args.action:
        case "list":
            tasks = await get_all_tasks()
            if not tasks:
                print("No scheduled tasks.")
            for t in tasks:
                state = "on " if t.enabled else "off"
                print(f"{t.id}  [{state}]  {t.group_id}  {t.schedule!r}  {t.prompt}")
                print(f"    last run: {t.last_run or 'never'}")
            return 0
        case "add":
            if not croniter.is_valid(args.schedule):
                print(f"Error: invalid cron expression {args.schedule!r}", file=sys.stderr)
                return 2
            task = ScheduledTask(
                id=generate_message_id("task"),
                group_id=args.group_id,
                schedule=args.schedule,
                prompt=args.prompt,
                created_at=now_iso(),
            )
            await save_task(task)
            print(task.id)
            return 0
        case "enable" | "disable":
            if not await set_task_enabled(args.task_id, args.action == "enable"):
                print(f"Error: no task {args.task_id}", file=sys.stderr)
                return 1
            return 0
        case "rm":
            if not await delete_task(args.task_id):
                print(f"Error: no task {args.task_id}", file=sys.stderr)
                return 1
            return 0
    return 2


def _read_skill_file(path: str) -> str | None:
    try:
        content = Path(path).read_text(encoding="utf-8").strip()
    except OSError as exc:
        print(f"Error: cannot read {path}: {exc.strerror}", file=sys.stderr)
        return None
    if not content:
        print(f"Error: {path} is empty", file=sys.stderr)
        return None
    return content


async def _skills(args: argparse.Namespace) -> int:
    match args.action:
        case "list":
            skills = await get_all_skills()
            if not skills:
                print("No skills.")
            for s in skills:
                state = "on " if s.enabled else "off"
                print(f"{s.id}  [{state}]  {s.name}")
                if s.description:
                    print(f"    {s.description}")
            return 0
        case "add":
            content = _read_skill_file(args.file)
            if content is None:
                return 2
            skill = Skill(
                id=generate_message_id("skill"),
                name=args.name,
                content=content,
                description=args.description or "",
            )
            await save_skill(skill)
            print(skill.id)
            return 0
        case "edit":
            content = _read_skill_file(args.file)
            if content is None:
                return 2
            if not await update_skill_content(args.skill_id, content, args.description):
                print(f"Error: no skill {args.skill_id}", file=sys.stderr)
                return 1
            return 0
        case "enable" | "disable":
            if not await set_skill_enabled(args.skill_id, args.action == "enable"):
                print(f"Error: no skill {args.skill_id}", file=sys.stderr)
                return 1
            return 0
        case "rm":
            if not await delete_skill(args.skill_id):
                print(f"Error: no skill {args.skill_id}", file=sys.stderr)
                return 1
            return 0
    return 2


def _validate_config(key: str, value: str, channel_keys: set[str]) -> str | None:
    """Returns an error message, or None when *value* is acceptable for *key*."""
    if key == ConfigKey.MAX_TOKENS:
        if not value.isdigit() or int(value) < 1:
            return "max_tokens must be a positive integer"
    elif key == ConfigKey.PROVIDER:
        if value not in ("anthropic", "ollama"):
            return "provider must be 'anthropic' or 'ollama'"
    elif key == ConfigKey.ASSISTANT_NAME:
        if not value.strip():
            return "assistant_name must not be empty"
    elif key not in {k.value for k in ConfigKey} and key not in channel_keys:
        return f"unknown config key {key!r}"
    return None


async def _config_set(args: argparse.Namespace) -> int:
    specs = collect_channel_specs(get_plugin_manager())
    channel_keys = {k for spec in specs for k in spec.config_keys}
    secret_keys = channel_keys | {ConfigKey.ANTHROPIC_API_KEY.value}
    if error := _validate_config(args.key, args.value, channel_keys):
        print(f"Error: {error}", file=sys.stderr)
        return 2
    value = encrypt_value(args.value) if args.key in secret_keys else args.value
    await set_config(args.key, value)
    print(f"Set {args.key}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="switchboard",
        description="Personal multi-channel assistant",
    )
    sub = parser.add_subparsers(dest="command")

    tasks = sub.add_parser("tasks", help="Manage scheduled tasks")
    tasks_sub = tasks.add_subparsers(dest="action", required=True)
    tasks_sub.add_parser("list", help="List scheduled tasks")
    add = tasks_sub.add_parser("add", help="Add a scheduled task")
    add.add_argument("group_id")
    add.add_argument("schedule", help="Cron expression, e.g. '0 9 * * *'")
    add.add_argument("prompt")
    for action in ("enable", "disable", "rm"):
        p = tasks_sub.add_parser(action, help=f"{action.capitalize()} a scheduled task")
        p.add_argument("task_id")

    skills = sub.add_parser("skills", help="Manage agent skills")
    skills_sub = skills.add_subparsers(dest="action", required=True)
    skills_sub.add_parser("list", help="List agent skills")
    skill_add = skills_sub.add_parser("add", help="Add a skill from a markdown file")
    skill_add.add_argument("name")
    skill_add.add_argument("file")
    skill_add.add_argument("--description")
    skill_edit = skills_sub.add_parser("edit", help="Replace a skill's content from a file")
    skill_edit.add_argument("skill_id")
    skill_edit.add_argument("file")
    skill_edit.add_argument("--description")
    for action in ("enable", "disable", "rm"):
        p = skills_sub.add_parser(action, help=f"{action.capitalize()} a skill")
        p.add_argument("skill_id")

    config = sub.add_parser("config", help="Manage persisted configuration")
    config_sub = config.add_subparsers(dest="action", required=True)
    set_p = config_sub.add_parser("set", help="Set a configuration value")
    set_p.add_argument("key")
    set_p.add_argument("value")

    args = parser.parse_args()

    match args.command:
        case "tasks":
            sys.exit(asyncio.run(_with_database(lambda: _tasks(args))))
        case "skills":
            sys.exit(asyncio.run(_with_database(lambda: _skills(args))))
        case "config":
            sys.exit(asyncio.run(_with_database(lambda: _config_set(args))))
        case _:
            _run()


if __name__ == "__main__":
    main()
