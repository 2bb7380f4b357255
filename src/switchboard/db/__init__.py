"""SQLite database layer.

All functions are async using aiosqlite.
Module-level connection, initialized by init_database().

Submodules:
  _connection: schema, init, atomic writes
  messages: conversation history
  tasks: scheduled task CRUD
  config_store: persisted key/value configuration
  skills: agent skills
"""

from switchboard.db._connection import (
    _get_db,
    _init_test_database,
    atomic_write,
    close_database,
    init_database,
)
from switchboard.db.config_store import delete_config, get_config, set_config
from switchboard.db.messages import (
    build_conversation_messages,
    clear_group_messages,
    get_recent_messages,
    replace_group_history,
    save_message,
)
from switchboard.db.skills import (
    delete_skill,
    get_all_skills,
    get_enabled_skills,
    get_skill,
    save_skill,
    set_skill_enabled,
    update_skill_content,
)
from switchboard.db.tasks import (
    delete_task,
    get_all_tasks,
    get_enabled_tasks,
    get_task,
    mark_task_fired,
    save_task,
    set_task_enabled,
)

__all__ = [
    "_get_db",
    "_init_test_database",
    "atomic_write",
    "build_conversation_messages",
    "clear_group_messages",
    "close_database",
    "delete_config",
    "delete_skill",
    "delete_task",
    "get_all_skills",
    "get_all_tasks",
    "get_config",
    "get_enabled_skills",
    "get_enabled_tasks",
    "get_recent_messages",
    "get_skill",
    "get_task",
    "init_database",
    "mark_task_fired",
    "replace_group_history",
    "save_message",
    "save_skill",
    "save_task",
    "set_config",
    "set_skill_enabled",
    "set_task_enabled",
    "update_skill_content",
]
