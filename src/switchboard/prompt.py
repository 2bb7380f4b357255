"""System prompt assembly."""

from __future__ import annotations

from switchboard.types import Skill


def build_system_prompt(
    assistant_name: str, memory: str = "", skills: list[Skill] | None = None
) -> str:
    parts = [
        f"You are {assistant_name}, a personal AI assistant reachable from several "
        "chat channels.",
        "",
        "You have access to the following tools:",
        "- **bash**: Execute shell commands in the group workspace.",
        "- **read_file** / **write_file** / **list_files**: Manage files in the group workspace.",
        "- **fetch_url**: Make HTTP requests.",
        "- **update_memory**: Persist important context to CLAUDE.md, "
        "loaded on every conversation.",
        "- **create_task**: Schedule recurring tasks with cron expressions.",
        "",
        "Guidelines:",
        "- Be concise and direct.",
        "- Use tools proactively when they help answer the question.",
        "- Update memory when you learn important preferences or context.",
        "- For scheduled tasks, confirm the schedule with the user.",
        "- Keep internal reasoning inside <internal> tags; it is removed before the user sees it.",
    ]

    if skills:
        parts += ["", "## Agent Skills", "", "The following agent skills extend your capabilities:"]
        for skill in skills:
            parts += ["", f"### {skill.name}", ""]
            if skill.description:
                parts += [skill.description, ""]
            parts.append(skill.content)

    if memory:
        parts += ["", "## Persistent Memory", "", memory]

    return "\n".join(parts)
