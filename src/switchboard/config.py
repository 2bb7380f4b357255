"""Centralized configuration.

Two layers:

* ``Settings``: static, process-wide settings from config.toml, .env and
  environment variables (``__`` is the nested delimiter, e.g.
  ``WORKER__TIMEOUT_SECONDS``). Priority (highest wins): init args > env vars
  > .env > config.toml.
* ``RuntimeConfig``: the user-editable assistant configuration (name,
  provider, model, credential). Immutable and versioned: the coordinator loads
  one at startup from the config store and swaps in a new value on every
  successful setter call.

Usage::

    from switchboard.config import get_settings

    s = get_settings()
    print(s.scheduler.poll_interval)
"""

from __future__ import annotations

import os
import re
import sys
from enum import StrEnum
from functools import cached_property, lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

DEFAULT_ASSISTANT_NAME = "Andy"
DEFAULT_GROUP_ID = "br:main"
SCHEDULED_TASK_MARKER = "[SCHEDULED TASK]"
SCHEDULER_SENDER = "Scheduler"
MEMORY_FILE = "CLAUDE.md"

Provider = Literal["anthropic", "ollama"]


class ConfigKey(StrEnum):
    """Keys of the persisted config store owned by the coordinator.

    Channel plugins declare their own credential keys on their ChannelSpec.
    """

    ASSISTANT_NAME = "assistant_name"
    PROVIDER = "provider"
    OLLAMA_URL = "ollama_url"
    ANTHROPIC_API_KEY = "anthropic_api_key"
    MODEL = "model"
    MAX_TOKENS = "max_tokens"


@lru_cache(maxsize=32)
def build_trigger_pattern(name: str) -> re.Pattern[str]:
    """``@<name>`` at the start of the text or after whitespace, at a word boundary."""
    return re.compile(rf"(^|\s)@{re.escape(name)}\b", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models. Unknown keys are rejected."""

    model_config = {"extra": "forbid"}


class AgentConfig(_StrictModel):
    # First-run defaults; values persisted in the config store win.
    name: str = DEFAULT_ASSISTANT_NAME
    provider: Provider = "anthropic"
    model: str = "claude-sonnet-4-6"
    max_tokens: int = 8096
    ollama_url: str = "http://localhost:11434"
    context_window_size: int = 50

    @field_validator("max_tokens", "context_window_size")
    @classmethod
    def clamp_positive(cls, v: int) -> int:
        return max(1, v)


class SchedulerConfig(_StrictModel):
    poll_interval: float = 60.0  # seconds
    timezone: str = ""  # empty → auto-detect


class WorkerConfig(_StrictModel):
    command: list[str] = Field(default_factory=lambda: [sys.executable, "-m", "switchboard.worker"])
    core: str = "switchboard.worker.cores.echo:EchoCore"  # module:Class loaded in the worker
    timeout_seconds: float = 600.0  # 0 disables the invocation watchdog

    @field_validator("core")
    @classmethod
    def validate_core(cls, v: str) -> str:
        module, sep, cls_name = v.partition(":")
        if not sep or not module or not cls_name:
            raise ValueError(f"worker.core must look like 'package.module:ClassName', got {v!r}")
        return v


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


class SecretsConfig(_StrictModel):
    credential_key: SecretStr | None = None  # Fernet key; None → key file under data_dir


class PluginConfig(_StrictModel):
    enabled: bool = True


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    agent: AgentConfig = AgentConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    worker: WorkerConfig = WorkerConfig()
    logging: LoggingConfig = LoggingConfig()
    secrets: SecretsConfig = SecretsConfig()
    plugins: dict[str, PluginConfig] = {}

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def timezone(self) -> str:
        if self.scheduler.timezone:
            return self.scheduler.timezone
        return _detect_timezone()

    @cached_property
    def project_root(self) -> Path:
        return Path.cwd()

    @cached_property
    def data_dir(self) -> Path:
        return (self.project_root / "data").resolve()

    @cached_property
    def groups_dir(self) -> Path:
        return (self.project_root / "groups").resolve()

    @cached_property
    def database_path(self) -> Path:
        return self.data_dir / "switchboard.db"

    @cached_property
    def credential_key_path(self) -> Path:
        return self.data_dir / "credential.key"


# ---------------------------------------------------------------------------
# Runtime (user-editable) configuration
# ---------------------------------------------------------------------------


class RuntimeConfig(BaseModel):
    """Effective assistant configuration.

    Never mutated in place. ``evolve()`` returns the next version; callers
    swap the reference only after the new values have been persisted.
    """

    model_config = ConfigDict(frozen=True)

    assistant_name: str = DEFAULT_ASSISTANT_NAME
    provider: Provider = "anthropic"
    ollama_url: str = "http://localhost:11434"
    api_key: SecretStr = SecretStr("")
    model: str = "claude-sonnet-4-6"
    max_tokens: int = 8096
    version: int = 0

    @classmethod
    def from_settings(cls, s: Settings) -> RuntimeConfig:
        return cls(
            assistant_name=s.agent.name,
            provider=s.agent.provider,
            ollama_url=s.agent.ollama_url,
            model=s.agent.model,
            max_tokens=s.agent.max_tokens,
        )

    @property
    def trigger_pattern(self) -> re.Pattern[str]:
        return build_trigger_pattern(self.assistant_name)

    def is_configured(self) -> bool:
        if self.provider == "ollama":
            return bool(self.ollama_url.strip())
        return bool(self.api_key.get_secret_value())

    def not_configured_message(self) -> str:
        if self.provider == "ollama":
            return (
                "Ollama URL not configured. "
                "Set it with `switchboard config set ollama_url <url>`."
            )
        return (
            "API key not configured. "
            "Set it with `switchboard config set anthropic_api_key <key>`."
        )

    def evolve(self, **changes: object) -> RuntimeConfig:
        return type(self).model_validate({**dict(self), **changes, "version": self.version + 1})


# ---------------------------------------------------------------------------
# Timezone detection
# ---------------------------------------------------------------------------


def _detect_timezone() -> str:
    if tz := os.environ.get("TZ"):
        return tz
    try:
        link = os.readlink("/etc/localtime")
        parts = link.split("zoneinfo/")
        if len(parts) > 1:
            return parts[1]
    except OSError:
        pass  # /etc/localtime missing or not a symlink
    return "UTC"


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
